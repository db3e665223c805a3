"""
Servicio del plan de tratamiento: alta de ítems, reemplazo completo,
cambios de estado con state machine, traspaso de pendientes entre
versiones y registro de tratamientos realizados (INSERT-only).

El plan se actualiza sobre la versión existente del odontograma; cada
escritura toca la fila del odontograma para que lock_version detecte
actualizaciones concurrentes. Las versiones archivadas son de sólo
lectura hasta que se reactiven.
"""

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dentalchart.core.exceptions import (
    ConflictException,
    InvalidTransitionException,
    NotFoundException,
    ValidationException,
)
from dentalchart.models.odontogram import Odontogram
from dentalchart.models.treatment import (
    UNRESOLVED_STATUSES,
    VALID_TRANSITIONS,
    CompletedTreatment,
    TreatmentPlanItem,
    TreatmentStatus,
    is_valid_transition,
)
from dentalchart.models.user import User
from dentalchart.schemas.odontogram import OdontogramResponse
from dentalchart.schemas.treatment_plan import (
    CompletedTreatmentCreate,
    CompletedTreatmentResponse,
    TreatmentPlanItemCreate,
    TreatmentPlanItemResponse,
    TreatmentStatusChange,
)
from dentalchart.services.audit_service import log_action
from dentalchart.services.odontogram_service import (
    check_lock_version,
    flush_or_conflict,
    load_locked,
    load_odontogram,
    load_version,
    odontogram_to_response,
)

logger = logging.getLogger(__name__)


# ── Helpers ──────────────────────────────────────────

def _ensure_tooth_exists(odontogram: Odontogram, tooth: int) -> None:
    """El ítem debe referirse a uno de los 32 dientes del odontograma."""
    if not odontogram.has_tooth(tooth):
        raise ValidationException(
            f"El diente {tooth} no existe en el odontograma v{odontogram.version} "
            "(numeración válida 1-32)"
        )


def _build_item(data: TreatmentPlanItemCreate, position: int) -> TreatmentPlanItem:
    return TreatmentPlanItem(
        position=position,
        tooth=data.tooth,
        procedure=data.procedure.strip(),
        priority=data.priority,
        estimated_cost=data.estimated_cost,
        estimated_duration=data.estimated_duration,
        status=TreatmentStatus.PLANNED,
        scheduled_date=data.scheduled_date,
        notes=data.notes,
    )


def _next_position(odontogram: Odontogram) -> int:
    return max((i.position for i in odontogram.treatment_plan), default=-1) + 1


def _find_item(odontogram: Odontogram, item_id: UUID) -> TreatmentPlanItem:
    for item in odontogram.treatment_plan:
        if item.id == item_id:
            return item
    raise NotFoundException("Tratamiento", "Tratamiento no encontrado en el plan")


async def _load_for_update(
    db: AsyncSession,
    user: User,
    odontogram_id: UUID,
    expected_lock_version: int | None,
) -> Odontogram:
    """
    Carga el odontograma con el paciente bloqueado. El plan y el registro
    de realizados sólo se editan sobre versiones activas.
    """
    odontogram = await load_locked(db, user.clinic_id, odontogram_id)
    if not odontogram.is_active:
        raise ConflictException(
            f"El odontograma v{odontogram.version} está archivado; "
            "reactívelo o trabaje sobre la versión vigente"
        )
    check_lock_version(odontogram, expected_lock_version)
    return odontogram


async def _carried_source_ids(db: AsyncSession, item_ids: list[UUID]) -> set[UUID]:
    """Ítems de la lista que ya fueron traspasados a otra versión."""
    if not item_ids:
        return set()
    result = await db.execute(
        select(TreatmentPlanItem.carried_from_item_id).where(
            TreatmentPlanItem.carried_from_item_id.in_(item_ids)
        )
    )
    return set(result.scalars().all())


# ── Alta de ítems ────────────────────────────────────

async def add_item(
    db: AsyncSession,
    user: User,
    odontogram_id: UUID,
    data: TreatmentPlanItemCreate,
    expected_lock_version: int | None = None,
    ip_address: str | None = None,
) -> TreatmentPlanItemResponse:
    """Agrega un ítem al plan en estado 'planned'."""
    odontogram = await _load_for_update(db, user, odontogram_id, expected_lock_version)
    _ensure_tooth_exists(odontogram, data.tooth)

    item = _build_item(data, _next_position(odontogram))
    odontogram.treatment_plan.append(item)
    odontogram.touch()
    await flush_or_conflict(db)

    await log_action(
        db,
        clinic_id=user.clinic_id,
        user_id=user.id,
        entity="treatment_plan_item",
        entity_id=str(item.id),
        action="create",
        new_data={
            "odontogram_id": odontogram.id,
            "tooth": item.tooth,
            "procedure": item.procedure,
            "priority": item.priority,
            "estimated_cost": item.estimated_cost,
        },
        ip_address=ip_address,
    )
    return TreatmentPlanItemResponse.model_validate(item)


async def replace_plan(
    db: AsyncSession,
    user: User,
    odontogram_id: UUID,
    items: list[TreatmentPlanItemCreate],
    expected_lock_version: int | None = None,
    ip_address: str | None = None,
) -> OdontogramResponse:
    """
    Reemplaza el plan completo. Operación gruesa y no incremental: los
    ítems existentes se descartan (incluidos los que estén en curso) y
    los nuevos quedan en 'planned'. Para avanzar un ítem usar
    change_status. Los tratamientos realizados no se tocan.
    """
    odontogram = await _load_for_update(db, user, odontogram_id, expected_lock_version)
    for data in items:
        _ensure_tooth_exists(odontogram, data.tooth)

    old_data = {
        "items": [
            {"id": i.id, "tooth": i.tooth, "procedure": i.procedure, "status": i.status}
            for i in odontogram.treatment_plan
        ]
    }
    discarded_in_flight = [
        i.id for i in odontogram.treatment_plan if i.status == TreatmentStatus.IN_PROGRESS
    ]
    if discarded_in_flight:
        logger.warning(
            "Reemplazo de plan en odontograma %s descarta %d ítems en curso",
            odontogram.id, len(discarded_in_flight),
        )

    odontogram.treatment_plan = [_build_item(data, pos) for pos, data in enumerate(items)]
    odontogram.touch()
    await flush_or_conflict(db)

    await log_action(
        db,
        clinic_id=user.clinic_id,
        user_id=user.id,
        entity="odontogram",
        entity_id=str(odontogram.id),
        action="replace_plan",
        old_data=old_data,
        new_data={
            "items": [
                {"id": i.id, "tooth": i.tooth, "procedure": i.procedure}
                for i in odontogram.treatment_plan
            ],
            "discarded_in_progress": discarded_in_flight,
        },
        ip_address=ip_address,
    )

    odontogram = await load_odontogram(db, user.clinic_id, odontogram.id, refresh=True)
    return odontogram_to_response(odontogram)


# ── State machine ────────────────────────────────────

async def change_status(
    db: AsyncSession,
    user: User,
    odontogram_id: UUID,
    item_id: UUID,
    data: TreatmentStatusChange,
    expected_lock_version: int | None = None,
    ip_address: str | None = None,
) -> TreatmentPlanItemResponse:
    """
    Cambia el estado de un ítem usando la state machine.
    Al completar se registran completed_at / completed_by y se agrega
    una entrada al registro de tratamientos realizados.
    """
    odontogram = await _load_for_update(db, user, odontogram_id, expected_lock_version)
    item = _find_item(odontogram, item_id)
    if await _carried_source_ids(db, [item.id]):
        raise ConflictException(
            "El tratamiento fue traspasado a otra versión; actualice la copia vigente"
        )

    if not is_valid_transition(item.status, data.status):
        valid = VALID_TRANSITIONS.get(item.status, [])
        raise InvalidTransitionException(
            item.status.value, data.status.value, [s.value for s in valid]
        )

    old_status = item.status
    item.status = data.status
    if data.notes:
        item.notes = data.notes

    completed_entry = None
    if data.status == TreatmentStatus.COMPLETED:
        now = datetime.now(timezone.utc)
        item.completed_at = now
        item.completed_by = user.id
        completed_entry = CompletedTreatment(
            plan_item_id=item.id,
            tooth=item.tooth,
            procedure=item.procedure,
            date=now,
            cost=data.actual_cost if data.actual_cost is not None else item.estimated_cost,
            doctor_id=user.id,
            notes=data.notes,
        )
        odontogram.completed_treatments.append(completed_entry)

    odontogram.touch()
    await flush_or_conflict(db)

    await log_action(
        db,
        clinic_id=user.clinic_id,
        user_id=user.id,
        entity="treatment_plan_item",
        entity_id=str(item.id),
        action="status_change",
        old_data={"status": old_status},
        new_data={
            "status": data.status,
            "completed_treatment_id": completed_entry.id if completed_entry else None,
        },
        ip_address=ip_address,
    )
    logger.info(
        "Tratamiento %s (diente %s) %s → %s",
        item.id, item.tooth, old_status.value, data.status.value,
    )
    return TreatmentPlanItemResponse.model_validate(item)


# ── Traspaso de pendientes ───────────────────────────

async def carry_forward_plan(
    db: AsyncSession,
    user: User,
    odontogram_id: UUID,
    from_version: int,
    expected_lock_version: int | None = None,
    ip_address: str | None = None,
) -> OdontogramResponse:
    """
    Copia los ítems sin resolver (planned / in-progress) de otra versión
    del mismo paciente a este odontograma como ítems nuevos. No es
    automático: sólo ocurre cuando se invoca.

    Cada copia guarda carried_from_item_id. Los ítems de origen que ya
    fueron traspasados se omiten, así que repetir la llamada no duplica
    nada; el ítem de origen queda reemplazado por su copia.
    """
    target = await _load_for_update(db, user, odontogram_id, expected_lock_version)
    if from_version == target.version:
        raise ValidationException("La versión de origen y destino no pueden ser la misma")
    source = await load_version(db, user.clinic_id, target.patient_id, from_version)

    unresolved = [i for i in source.treatment_plan if i.status in UNRESOLVED_STATUSES]
    already_carried = await _carried_source_ids(db, [i.id for i in unresolved])
    pending = [i for i in unresolved if i.id not in already_carried]
    for item in pending:
        _ensure_tooth_exists(target, item.tooth)

    position = _next_position(target)
    copied = []
    for item in pending:
        clone = TreatmentPlanItem(
            position=position,
            tooth=item.tooth,
            procedure=item.procedure,
            priority=item.priority,
            estimated_cost=item.estimated_cost,
            estimated_duration=item.estimated_duration,
            status=item.status,
            scheduled_date=item.scheduled_date,
            notes=item.notes,
            carried_from_item_id=item.id,
        )
        target.treatment_plan.append(clone)
        copied.append(clone)
        position += 1

    if already_carried:
        logger.info(
            "%d pendientes de v%s ya habían sido traspasados; se omiten",
            len(already_carried), from_version,
        )

    if copied:
        target.touch()
        await flush_or_conflict(db)
        await log_action(
            db,
            clinic_id=user.clinic_id,
            user_id=user.id,
            entity="odontogram",
            entity_id=str(target.id),
            action="carry_forward",
            new_data={
                "from_version": from_version,
                "to_version": target.version,
                "items": [
                    {"id": i.id, "carried_from_item_id": i.carried_from_item_id}
                    for i in copied
                ],
                "skipped": sorted(already_carried, key=str),
            },
            ip_address=ip_address,
        )
        logger.info(
            "%d tratamientos pendientes copiados de v%s a v%s (paciente %s)",
            len(copied), from_version, target.version, target.patient_id,
        )

    target = await load_odontogram(db, user.clinic_id, target.id, refresh=True)
    return odontogram_to_response(target)


# ── Tratamientos realizados ──────────────────────────

async def record_completed_treatment(
    db: AsyncSession,
    user: User,
    odontogram_id: UUID,
    data: CompletedTreatmentCreate,
    ip_address: str | None = None,
) -> CompletedTreatmentResponse:
    """Agrega una entrada al registro de tratamientos realizados (INSERT-only)."""
    odontogram = await _load_for_update(db, user, odontogram_id, None)
    _ensure_tooth_exists(odontogram, data.tooth)

    entry = CompletedTreatment(
        tooth=data.tooth,
        procedure=data.procedure.strip(),
        date=data.date or datetime.now(timezone.utc),
        cost=data.cost,
        doctor_id=user.id,
        notes=data.notes,
    )
    odontogram.completed_treatments.append(entry)
    odontogram.touch()
    await flush_or_conflict(db)

    await log_action(
        db,
        clinic_id=user.clinic_id,
        user_id=user.id,
        entity="completed_treatment",
        entity_id=str(entry.id),
        action="create",
        new_data={
            "odontogram_id": odontogram.id,
            "tooth": entry.tooth,
            "procedure": entry.procedure,
            "cost": entry.cost,
        },
        ip_address=ip_address,
    )
    return CompletedTreatmentResponse.model_validate(entry)
