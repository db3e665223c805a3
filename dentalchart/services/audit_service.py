"""
Servicio de Audit Log — registra las operaciones sobre odontogramas.
INSERT-only, nunca se modifica ni elimina.
"""

import enum
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dentalchart.models.audit_log import AuditLog


def _sanitize_value(value):
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, dict):
        return _sanitize_for_json(value)
    if isinstance(value, (list, tuple)):
        return [_sanitize_value(item) for item in value]
    return value


def _sanitize_for_json(data: dict | None) -> dict | None:
    """Convierte tipos no serializables (date, UUID, Decimal, Enum) a JSON."""
    if data is None:
        return None
    return {str(_sanitize_value(key)): _sanitize_value(value) for key, value in data.items()}


async def log_action(
    db: AsyncSession,
    *,
    clinic_id: UUID,
    user_id: UUID | None,
    entity: str,
    entity_id: str,
    action: str,
    old_data: dict | None = None,
    new_data: dict | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> AuditLog:
    """Inserta un registro de auditoría inmutable."""
    entry = AuditLog(
        clinic_id=clinic_id,
        user_id=user_id,
        entity=entity,
        entity_id=str(entity_id),
        action=action,
        old_data=_sanitize_for_json(old_data),
        new_data=_sanitize_for_json(new_data),
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.add(entry)
    await db.flush()
    return entry


async def get_entity_history(
    db: AsyncSession,
    *,
    clinic_id: UUID,
    entity: str,
    entity_id: str,
) -> list[AuditLog]:
    """Eventos de auditoría de una entidad, del más antiguo al más reciente."""
    result = await db.execute(
        select(AuditLog)
        .where(
            AuditLog.clinic_id == clinic_id,
            AuditLog.entity == entity,
            AuditLog.entity_id == str(entity_id),
        )
        .order_by(AuditLog.created_at)
    )
    return list(result.scalars().all())
