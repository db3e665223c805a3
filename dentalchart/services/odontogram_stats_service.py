"""
Servicio de estadísticas de odontogramas para el dashboard.

Se calculan al momento de la consulta, sin caché:
- total_odontograms / patients_charted / active_treatments consideran
  sólo versiones no archivadas.
- by_status, estimated_revenue y completion_rate consideran todas las
  versiones, archivadas incluidas; el ingreso estimado suma los ítems
  no cancelados.
- Los ítems ya traspasados a otra versión quedan reemplazados por su
  copia y no se cuentan, para no duplicar pendientes ni ingresos.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dentalchart.models.odontogram import Odontogram
from dentalchart.models.treatment import (
    UNRESOLVED_STATUSES,
    CompletedTreatment,
    TreatmentPlanItem,
    TreatmentStatus,
    carried_item_ids,
)
from dentalchart.schemas.odontogram import OdontogramStats

_CENTS = Decimal("0.01")


def _money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(_CENTS)


async def get_odontogram_stats(
    db: AsyncSession,
    clinic_id: UUID,
    patient_id: UUID | None = None,
) -> OdontogramStats:
    """Calcula los KPIs de odontogramas de una clínica (o de un paciente)."""
    scope = [Odontogram.clinic_id == clinic_id]
    if patient_id is not None:
        scope.append(Odontogram.patient_id == patient_id)
    active_scope = [*scope, Odontogram.is_active.is_(True)]
    not_superseded = TreatmentPlanItem.id.not_in(carried_item_ids())

    # Odontogramas no archivados
    total_result = await db.execute(
        select(func.count(Odontogram.id)).where(*active_scope)
    )
    total_odontograms = total_result.scalar() or 0

    patients_result = await db.execute(
        select(func.count(func.distinct(Odontogram.patient_id))).where(*active_scope)
    )
    patients_charted = patients_result.scalar() or 0

    # Tratamientos activos (planned / in-progress) en versiones no archivadas
    active_result = await db.execute(
        select(func.count(TreatmentPlanItem.id))
        .join(Odontogram, TreatmentPlanItem.odontogram_id == Odontogram.id)
        .where(
            *active_scope,
            TreatmentPlanItem.status.in_(UNRESOLVED_STATUSES),
            not_superseded,
        )
    )
    active_treatments = active_result.scalar() or 0

    # Conteo por estado (todas las versiones)
    status_result = await db.execute(
        select(TreatmentPlanItem.status, func.count(TreatmentPlanItem.id))
        .join(Odontogram, TreatmentPlanItem.odontogram_id == Odontogram.id)
        .where(*scope, not_superseded)
        .group_by(TreatmentPlanItem.status)
    )
    by_status = {status.value: 0 for status in TreatmentStatus}
    for status, count in status_result.all():
        by_status[status.value] = count

    # Ingreso estimado: ítems no cancelados (todas las versiones)
    revenue_result = await db.execute(
        select(func.coalesce(func.sum(TreatmentPlanItem.estimated_cost), 0))
        .join(Odontogram, TreatmentPlanItem.odontogram_id == Odontogram.id)
        .where(
            *scope,
            TreatmentPlanItem.status != TreatmentStatus.CANCELLED,
            not_superseded,
        )
    )
    estimated_revenue = _money(revenue_result.scalar())

    # Ingreso realizado según el registro de tratamientos realizados
    completed_result = await db.execute(
        select(func.coalesce(func.sum(CompletedTreatment.cost), 0))
        .join(Odontogram, CompletedTreatment.odontogram_id == Odontogram.id)
        .where(*scope)
    )
    completed_revenue = _money(completed_result.scalar())

    considered = sum(by_status.values()) - by_status[TreatmentStatus.CANCELLED.value]
    completed = by_status[TreatmentStatus.COMPLETED.value]
    completion_rate = round(completed / considered * 100, 1) if considered > 0 else 0.0

    return OdontogramStats(
        total_odontograms=total_odontograms,
        patients_charted=patients_charted,
        active_treatments=active_treatments,
        by_status=by_status,
        completion_rate=completion_rate,
        estimated_revenue=estimated_revenue,
        completed_revenue=completed_revenue,
    )
