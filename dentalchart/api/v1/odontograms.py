"""
Endpoints del odontograma: versiones por paciente, revisiones,
archivado, plan de tratamiento, tratamientos realizados y KPIs.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from dentalchart.auth.dependencies import require_permission
from dentalchart.core.dentition import fdi_to_universal, quadrant_for
from dentalchart.database import get_db
from dentalchart.models.user import User
from dentalchart.schemas.odontogram import (
    ChartSummary,
    OdontogramCreate,
    OdontogramListItem,
    OdontogramListResponse,
    OdontogramResponse,
    OdontogramRevision,
    OdontogramStats,
    ToothNumberMapping,
)
from dentalchart.schemas.treatment_plan import (
    CarryForwardRequest,
    CompletedTreatmentCreate,
    CompletedTreatmentResponse,
    TreatmentPlanItemCreate,
    TreatmentPlanItemResponse,
    TreatmentPlanReplace,
    TreatmentStatusChange,
)
from dentalchart.services import (
    odontogram_service,
    odontogram_stats_service,
    treatment_plan_service,
)

router = APIRouter()


def _get_client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


# ── Estadísticas y utilidades ────────────────────────

@router.get("/stats/dashboard", response_model=OdontogramStats)
async def get_dashboard_stats(
    patient_id: UUID | None = Query(None),
    user: User = Depends(require_permission("report", "read")),
    db: AsyncSession = Depends(get_db),
):
    """KPIs de odontogramas: versiones, tratamientos activos, ingreso estimado."""
    return await odontogram_stats_service.get_odontogram_stats(
        db, clinic_id=user.clinic_id, patient_id=patient_id
    )


@router.get("/teeth/fdi/{fdi_number}", response_model=ToothNumberMapping)
async def map_fdi_tooth(
    fdi_number: int,
    user: User = Depends(require_permission("odontogram", "read")),
):
    """Equivalencia FDI → numeración Universal 1-32."""
    number = fdi_to_universal(fdi_number)
    return ToothNumberMapping(
        fdi_number=fdi_number, number=number, quadrant=quadrant_for(number)
    )


# ── Versiones ────────────────────────────────────────

@router.get("", response_model=OdontogramListResponse)
async def list_odontograms(
    page: int = Query(1, ge=1, description="Número de página"),
    size: int = Query(10, ge=1, le=100, description="Tamaño de página"),
    patient_id: UUID | None = Query(None),
    doctor_id: UUID | None = Query(None),
    is_active: bool | None = Query(None, description="Filtrar activos / archivados"),
    user: User = Depends(require_permission("odontogram", "read")),
    db: AsyncSession = Depends(get_db),
):
    """Listado paginado de odontogramas de la clínica, del más reciente al más antiguo."""
    return await odontogram_service.list_odontograms(
        db,
        clinic_id=user.clinic_id,
        patient_id=patient_id,
        doctor_id=doctor_id,
        is_active=is_active,
        page=page,
        size=size,
    )


@router.post("", response_model=OdontogramResponse, status_code=201)
async def create_odontogram(
    data: OdontogramCreate,
    request: Request,
    user: User = Depends(require_permission("odontogram", "create")),
    db: AsyncSession = Depends(get_db),
):
    """
    Crea la siguiente versión del odontograma del paciente.
    Sin dientes explícitos se inicializan los 32 sanos.
    """
    return await odontogram_service.create_odontogram(
        db, user=user, data=data, ip_address=_get_client_ip(request)
    )


@router.get("/patient/{patient_id}", response_model=list[OdontogramListItem])
async def list_patient_odontograms(
    patient_id: UUID,
    include_archived: bool = Query(True),
    user: User = Depends(require_permission("odontogram", "read")),
    db: AsyncSession = Depends(get_db),
):
    """Historial de versiones, de la más reciente a la más antigua."""
    return await odontogram_service.list_versions(
        db, clinic_id=user.clinic_id, patient_id=patient_id,
        include_archived=include_archived,
    )


@router.get("/patient/{patient_id}/current", response_model=OdontogramResponse)
async def get_current_odontogram(
    patient_id: UUID,
    user: User = Depends(require_permission("odontogram", "read")),
    db: AsyncSession = Depends(get_db),
):
    """Versión vigente: la más alta no archivada."""
    return await odontogram_service.get_current(
        db, clinic_id=user.clinic_id, patient_id=patient_id
    )


@router.get("/patient/{patient_id}/versions/{version}", response_model=OdontogramResponse)
async def get_odontogram_version(
    patient_id: UUID,
    version: int,
    user: User = Depends(require_permission("odontogram", "read")),
    db: AsyncSession = Depends(get_db),
):
    return await odontogram_service.get_version(
        db, clinic_id=user.clinic_id, patient_id=patient_id, version=version
    )


@router.post(
    "/patient/{patient_id}/revisions",
    response_model=OdontogramResponse,
    status_code=201,
)
async def revise_odontogram(
    patient_id: UUID,
    data: OdontogramRevision,
    request: Request,
    user: User = Depends(require_permission("odontogram", "create")),
    db: AsyncSession = Depends(get_db),
):
    """
    Nueva versión a partir de la vigente (o de base_version) con los
    cambios por diente. La versión de origen no se modifica.
    """
    return await odontogram_service.revise_odontogram(
        db, user=user, patient_id=patient_id, data=data,
        ip_address=_get_client_ip(request),
    )


@router.get("/{odontogram_id}", response_model=OdontogramResponse)
async def get_odontogram(
    odontogram_id: UUID,
    user: User = Depends(require_permission("odontogram", "read")),
    db: AsyncSession = Depends(get_db),
):
    return await odontogram_service.get_odontogram(
        db, clinic_id=user.clinic_id, odontogram_id=odontogram_id
    )


@router.get("/{odontogram_id}/summary", response_model=ChartSummary)
async def get_odontogram_summary(
    odontogram_id: UUID,
    user: User = Depends(require_permission("odontogram", "read")),
    db: AsyncSession = Depends(get_db),
):
    """Conteos por condición, dientes afectados, sangrado y placa."""
    return await odontogram_service.get_summary(
        db, clinic_id=user.clinic_id, odontogram_id=odontogram_id
    )


@router.post("/{odontogram_id}/archive", response_model=OdontogramResponse)
async def archive_odontogram(
    odontogram_id: UUID,
    request: Request,
    user: User = Depends(require_permission("odontogram", "archive")),
    db: AsyncSession = Depends(get_db),
):
    """Archiva la versión (nunca se elimina)."""
    return await odontogram_service.set_active(
        db, user=user, odontogram_id=odontogram_id, active=False,
        ip_address=_get_client_ip(request),
    )


@router.post("/{odontogram_id}/activate", response_model=OdontogramResponse)
async def activate_odontogram(
    odontogram_id: UUID,
    request: Request,
    user: User = Depends(require_permission("odontogram", "archive")),
    db: AsyncSession = Depends(get_db),
):
    return await odontogram_service.set_active(
        db, user=user, odontogram_id=odontogram_id, active=True,
        ip_address=_get_client_ip(request),
    )


# ── Plan de tratamiento ──────────────────────────────

@router.post(
    "/{odontogram_id}/treatment-plan",
    response_model=TreatmentPlanItemResponse,
    status_code=201,
)
async def add_treatment_item(
    odontogram_id: UUID,
    data: TreatmentPlanItemCreate,
    request: Request,
    expected_lock_version: int | None = Query(None),
    user: User = Depends(require_permission("treatment_plan", "update")),
    db: AsyncSession = Depends(get_db),
):
    return await treatment_plan_service.add_item(
        db, user=user, odontogram_id=odontogram_id, data=data,
        expected_lock_version=expected_lock_version,
        ip_address=_get_client_ip(request),
    )


@router.put("/{odontogram_id}/treatment-plan", response_model=OdontogramResponse)
async def replace_treatment_plan(
    odontogram_id: UUID,
    data: TreatmentPlanReplace,
    request: Request,
    expected_lock_version: int | None = Query(None),
    user: User = Depends(require_permission("treatment_plan", "update")),
    db: AsyncSession = Depends(get_db),
):
    """
    Reemplaza el plan completo. Los ítems existentes, incluidos los en
    curso, se descartan; usar expected_lock_version para no pisar
    cambios de otro usuario.
    """
    return await treatment_plan_service.replace_plan(
        db, user=user, odontogram_id=odontogram_id, items=data.items,
        expected_lock_version=expected_lock_version,
        ip_address=_get_client_ip(request),
    )


@router.patch(
    "/{odontogram_id}/treatment-plan/{item_id}/status",
    response_model=TreatmentPlanItemResponse,
)
async def change_treatment_status(
    odontogram_id: UUID,
    item_id: UUID,
    data: TreatmentStatusChange,
    request: Request,
    expected_lock_version: int | None = Query(None),
    user: User = Depends(require_permission("treatment_plan", "update")),
    db: AsyncSession = Depends(get_db),
):
    """planned → in-progress → completed; cancelled desde planned o in-progress."""
    return await treatment_plan_service.change_status(
        db, user=user, odontogram_id=odontogram_id, item_id=item_id, data=data,
        expected_lock_version=expected_lock_version,
        ip_address=_get_client_ip(request),
    )


@router.post(
    "/{odontogram_id}/treatment-plan/carry-forward",
    response_model=OdontogramResponse,
)
async def carry_forward_treatments(
    odontogram_id: UUID,
    data: CarryForwardRequest,
    request: Request,
    expected_lock_version: int | None = Query(None),
    user: User = Depends(require_permission("treatment_plan", "update")),
    db: AsyncSession = Depends(get_db),
):
    """Copia los tratamientos pendientes de otra versión del paciente."""
    return await treatment_plan_service.carry_forward_plan(
        db, user=user, odontogram_id=odontogram_id, from_version=data.from_version,
        expected_lock_version=expected_lock_version,
        ip_address=_get_client_ip(request),
    )


# ── Tratamientos realizados ──────────────────────────

@router.post(
    "/{odontogram_id}/completed-treatments",
    response_model=CompletedTreatmentResponse,
    status_code=201,
)
async def record_completed_treatment(
    odontogram_id: UUID,
    data: CompletedTreatmentCreate,
    request: Request,
    user: User = Depends(require_permission("completed_treatment", "create")),
    db: AsyncSession = Depends(get_db),
):
    return await treatment_plan_service.record_completed_treatment(
        db, user=user, odontogram_id=odontogram_id, data=data,
        ip_address=_get_client_ip(request),
    )
