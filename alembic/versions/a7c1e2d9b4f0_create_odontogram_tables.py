"""Odontogramas versionados: dientes, plan de tratamiento y tratamientos realizados

Revision ID: a7c1e2d9b4f0
Revises:
Create Date: 2026-10-19 10:12:41.208113

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'a7c1e2d9b4f0'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade() -> None:
    # 1. Directorio mínimo: clínicas, usuarios y pacientes
    op.create_table(
        'clinics',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('branch_name', sa.String(length=100), nullable=True,
                  comment='Nombre de la sede/sucursal'),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('clinic_id', sa.Uuid(), sa.ForeignKey('clinics.id'), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('role', sa.Enum('SUPER_ADMIN', 'CLINIC_ADMIN', 'DOCTOR', 'RECEPTIONIST',
                                  name='userrole'), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('last_name', sa.String(length=100), nullable=False),
        sa.Column('license_number', sa.String(length=20), nullable=True,
                  comment='Número de colegiatura (COP)'),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_users_clinic_id', 'users', ['clinic_id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_table(
        'patients',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('clinic_id', sa.Uuid(), sa.ForeignKey('clinics.id'), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('last_name', sa.String(length=100), nullable=False),
        sa.Column('birth_date', sa.Date(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_patients_clinic_id', 'patients', ['clinic_id'])

    # 2. Odontogramas versionados
    op.create_table(
        'odontograms',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('clinic_id', sa.Uuid(), sa.ForeignKey('clinics.id'), nullable=False),
        sa.Column('patient_id', sa.Uuid(), sa.ForeignKey('patients.id'), nullable=False),
        sa.Column('doctor_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False,
                  comment='Versión por paciente, empieza en 1 y sin huecos'),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('lock_version', sa.Integer(), nullable=False,
                  comment='Contador de concurrencia optimista (version_id_col)'),
        sa.Column('periodontal_chart', JSON_TYPE, nullable=False),
        sa.Column('exam_notes', sa.String(length=2000), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('patient_id', 'version', name='uq_odontogram_patient_version'),
        sa.CheckConstraint('version >= 1', name='ck_odontogram_version_positive'),
    )
    op.create_index('idx_odontogram_clinic_patient', 'odontograms', ['clinic_id', 'patient_id'])
    op.create_index('idx_odontogram_doctor_created', 'odontograms', ['doctor_id', 'created_at'])

    # 3. Dientes (32 por odontograma)
    op.create_table(
        'tooth_records',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('odontogram_id', sa.Uuid(),
                  sa.ForeignKey('odontograms.id', ondelete='CASCADE'), nullable=False),
        sa.Column('number', sa.SmallInteger(), nullable=False, comment='Numeración Universal 1-32'),
        sa.Column('surfaces', JSON_TYPE, nullable=False),
        sa.Column('mobility', sa.SmallInteger(), nullable=False),
        sa.Column('pocket_depth', JSON_TYPE, nullable=True,
                  comment='Profundidad de sondaje en mm por sitio (0-15)'),
        sa.Column('bleeding', sa.Boolean(), nullable=False),
        sa.Column('plaque', sa.Boolean(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.UniqueConstraint('odontogram_id', 'number', name='uq_tooth_per_odontogram'),
        sa.CheckConstraint('number BETWEEN 1 AND 32', name='ck_tooth_number_range'),
        sa.CheckConstraint('mobility BETWEEN 0 AND 3', name='ck_tooth_mobility_range'),
    )

    # 4. Plan de tratamiento
    op.create_table(
        'treatment_plan_items',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('odontogram_id', sa.Uuid(),
                  sa.ForeignKey('odontograms.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, comment='Orden dentro del plan'),
        sa.Column('tooth', sa.SmallInteger(), nullable=False, comment='Numeración Universal 1-32'),
        sa.Column('procedure', sa.String(length=300), nullable=False),
        sa.Column('priority', sa.Enum('URGENT', 'HIGH', 'MEDIUM', 'LOW',
                                      name='treatmentpriority'), nullable=False),
        sa.Column('estimated_cost', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('estimated_duration', sa.Integer(), nullable=True,
                  comment='Duración estimada en minutos'),
        sa.Column('status', sa.Enum('PLANNED', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED',
                                    name='treatmentstatus'), nullable=False),
        sa.Column('scheduled_date', sa.Date(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_by', sa.Uuid(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('idx_plan_item_odontogram_status', 'treatment_plan_items',
                    ['odontogram_id', 'status'])

    # 5. Tratamientos realizados (INSERT-only)
    op.create_table(
        'completed_treatments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('odontogram_id', sa.Uuid(), sa.ForeignKey('odontograms.id'), nullable=False),
        sa.Column('plan_item_id', sa.Uuid(), nullable=True,
                  comment='Ítem del plan cuya finalización generó este registro'),
        sa.Column('tooth', sa.SmallInteger(), nullable=False),
        sa.Column('procedure', sa.String(length=300), nullable=False),
        sa.Column('date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('cost', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('doctor_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('idx_completed_odontogram_date', 'completed_treatments',
                    ['odontogram_id', 'date'])

    # 6. Audit log
    op.create_table(
        'audit_log',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('clinic_id', sa.Uuid(), sa.ForeignKey('clinics.id'), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('entity', sa.String(length=50), nullable=False),
        sa.Column('entity_id', sa.String(length=36), nullable=False),
        sa.Column('action', sa.String(length=30), nullable=False),
        sa.Column('old_data', JSON_TYPE, nullable=True),
        sa.Column('new_data', JSON_TYPE, nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_audit_log_clinic_id', 'audit_log', ['clinic_id'])
    op.create_index('ix_audit_log_user_id', 'audit_log', ['user_id'])
    op.create_index('ix_audit_log_entity', 'audit_log', ['entity'])
    op.create_index('ix_audit_log_action', 'audit_log', ['action'])

    # Tratamientos realizados: sin UPDATE ni DELETE a nivel de base
    if op.get_bind().dialect.name == 'postgresql':
        op.execute("""
            CREATE OR REPLACE FUNCTION reject_completed_treatment_change() RETURNS trigger AS $$
            BEGIN
                RAISE EXCEPTION 'completed_treatments es INSERT-only';
            END;
            $$ LANGUAGE plpgsql;
        """)
        op.execute("""
            CREATE TRIGGER trg_completed_treatments_insert_only
            BEFORE UPDATE OR DELETE ON completed_treatments
            FOR EACH ROW EXECUTE FUNCTION reject_completed_treatment_change();
        """)


def downgrade() -> None:
    if op.get_bind().dialect.name == 'postgresql':
        op.execute("DROP TRIGGER IF EXISTS trg_completed_treatments_insert_only ON completed_treatments")
        op.execute("DROP FUNCTION IF EXISTS reject_completed_treatment_change()")

    op.drop_table('audit_log')
    op.drop_table('completed_treatments')
    op.drop_table('treatment_plan_items')
    op.drop_table('tooth_records')
    op.drop_table('odontograms')
    op.drop_table('patients')
    op.drop_table('users')
    op.drop_table('clinics')

    if op.get_bind().dialect.name == 'postgresql':
        sa.Enum(name='treatmentstatus').drop(op.get_bind(), checkfirst=True)
        sa.Enum(name='treatmentpriority').drop(op.get_bind(), checkfirst=True)
        sa.Enum(name='userrole').drop(op.get_bind(), checkfirst=True)
