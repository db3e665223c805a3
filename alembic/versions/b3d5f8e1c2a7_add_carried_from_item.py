"""Trazabilidad del traspaso de pendientes entre versiones del odontograma

Revision ID: b3d5f8e1c2a7
Revises: a7c1e2d9b4f0
Create Date: 2026-10-26 09:41:17.552031

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'b3d5f8e1c2a7'
down_revision: Union[str, None] = 'a7c1e2d9b4f0'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        'treatment_plan_items',
        sa.Column('carried_from_item_id', sa.Uuid(), nullable=True,
                  comment='Ítem de otra versión del que se copió este pendiente'),
    )
    op.create_foreign_key(
        'fk_plan_item_carried_from', 'treatment_plan_items', 'treatment_plan_items',
        ['carried_from_item_id'], ['id'], ondelete='SET NULL',
    )
    op.create_index('idx_plan_item_carried_from', 'treatment_plan_items',
                    ['carried_from_item_id'])


def downgrade() -> None:
    op.drop_index('idx_plan_item_carried_from', table_name='treatment_plan_items')
    op.drop_constraint('fk_plan_item_carried_from', 'treatment_plan_items', type_='foreignkey')
    op.drop_column('treatment_plan_items', 'carried_from_item_id')
