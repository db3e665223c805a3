"""
Schemas para Odontogram — ficha dental versionada (numeración Universal 1-32).
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from dentalchart.core.dentition import Quadrant
from dentalchart.models.odontogram import (
    MAX_MOBILITY,
    MAX_POCKET_DEPTH_MM,
    OverallHealth,
    SurfaceCondition,
    SurfaceName,
)
from dentalchart.schemas.treatment_plan import (
    CompletedTreatmentResponse,
    TreatmentPlanItemResponse,
)


# ── Dientes ──────────────────────────────────────────

class SurfaceState(BaseModel):
    condition: SurfaceCondition = SurfaceCondition.HEALTHY
    material: str | None = Field(None, max_length=100)
    notes: str | None = Field(None, max_length=500)


class ToothSurfaces(BaseModel):
    """Las 5 superficies; las omitidas quedan sanas."""
    mesial: SurfaceState = Field(default_factory=SurfaceState)
    distal: SurfaceState = Field(default_factory=SurfaceState)
    occlusal: SurfaceState = Field(default_factory=SurfaceState)
    buccal: SurfaceState = Field(default_factory=SurfaceState)
    lingual: SurfaceState = Field(default_factory=SurfaceState)


class PocketDepth(BaseModel):
    """Profundidad de sondaje en mm por sitio."""
    mesial: float | None = Field(None, ge=0, le=MAX_POCKET_DEPTH_MM)
    distal: float | None = Field(None, ge=0, le=MAX_POCKET_DEPTH_MM)
    buccal: float | None = Field(None, ge=0, le=MAX_POCKET_DEPTH_MM)
    lingual: float | None = Field(None, ge=0, le=MAX_POCKET_DEPTH_MM)


class ToothRecordIn(BaseModel):
    """Diente completo (para crear un odontograma con datos explícitos)."""
    number: int = Field(..., description="Numeración Universal 1-32")
    surfaces: ToothSurfaces = Field(default_factory=ToothSurfaces)
    mobility: int = Field(0, ge=0, le=MAX_MOBILITY)
    pocket_depth: PocketDepth | None = None
    bleeding: bool = False
    plaque: bool = False
    notes: str | None = Field(None, max_length=2000)


class ToothPatch(BaseModel):
    """Cambios parciales sobre un diente al generar una revisión."""
    number: int = Field(..., description="Numeración Universal 1-32")
    surfaces: dict[SurfaceName, SurfaceState] | None = Field(
        None, description="Sólo las superficies que cambian"
    )
    mobility: int | None = Field(None, ge=0, le=MAX_MOBILITY)
    pocket_depth: PocketDepth | None = None
    bleeding: bool | None = None
    plaque: bool | None = None
    notes: str | None = Field(None, max_length=2000)


class ToothRecordResponse(BaseModel):
    number: int
    fdi_number: int
    quadrant: Quadrant
    surfaces: dict[SurfaceName, SurfaceState]
    mobility: int
    pocket_depth: dict[str, float] | None = None
    bleeding: bool
    plaque: bool
    notes: str | None = None

    model_config = {"from_attributes": True}


# ── Resumen periodontal ──────────────────────────────

class PeriodontalChart(BaseModel):
    """Valoración periodontal ingresada por el doctor (no se calcula)."""
    overall_health: OverallHealth = OverallHealth.GOOD
    general_notes: str | None = Field(None, max_length=2000)
    recommendations: list[str] = Field(default_factory=list)


# ── Creación / revisión ──────────────────────────────

class OdontogramCreate(BaseModel):
    patient_id: UUID
    version: int | None = Field(
        None, ge=1, description="Opcional; si se envía debe ser la siguiente versión"
    )
    teeth: list[ToothRecordIn] | None = Field(
        None, description="32 dientes explícitos; si se omite se inicializan sanos"
    )
    periodontal_chart: PeriodontalChart = Field(default_factory=PeriodontalChart)
    exam_notes: str | None = Field(None, max_length=2000)
    deactivate_previous: bool = Field(
        False, description="Archivar explícitamente las versiones anteriores"
    )


class OdontogramRevision(BaseModel):
    """Nueva versión a partir de la actual, aplicando cambios por diente."""
    base_version: int | None = Field(
        None, ge=1, description="Versión de origen; por defecto la actual"
    )
    teeth: list[ToothPatch] = Field(default_factory=list)
    periodontal_chart: PeriodontalChart | None = Field(
        None, description="Si se omite se copia el de la versión de origen"
    )
    exam_notes: str | None = Field(None, max_length=2000)
    deactivate_previous: bool = False


# ── Respuestas ───────────────────────────────────────

class OdontogramResponse(BaseModel):
    id: UUID
    clinic_id: UUID
    patient_id: UUID
    doctor_id: UUID
    doctor_name: str | None = None
    version: int
    is_active: bool
    lock_version: int
    periodontal_chart: PeriodontalChart
    exam_notes: str | None = None
    teeth: list[ToothRecordResponse]
    treatment_plan: list[TreatmentPlanItemResponse] = []
    completed_treatments: list[CompletedTreatmentResponse] = []
    created_at: datetime
    updated_at: datetime


class OdontogramListItem(BaseModel):
    """Fila del historial de versiones de un paciente."""
    id: UUID
    patient_id: UUID
    doctor_id: UUID
    doctor_name: str | None = None
    version: int
    is_active: bool
    created_at: datetime
    treatment_count: int = 0
    progress: float = Field(0.0, description="% de tratamientos completados (sin cancelados)")
    teeth_affected: list[int] = []


class OdontogramListResponse(BaseModel):
    """Respuesta paginada del listado de odontogramas de la clínica."""
    items: list[OdontogramListItem]
    total: int
    page: int
    size: int
    pages: int


class ChartSummary(BaseModel):
    """Conteos descriptivos del odontograma; no infiere el estado periodontal."""
    odontogram_id: UUID
    version: int
    surface_conditions: dict[SurfaceCondition, int]
    teeth_affected: list[int] = []
    teeth_with_caries: list[int] = []
    missing_teeth: list[int] = []
    mobile_teeth: list[int] = []
    bleeding_teeth: int = 0
    plaque_teeth: int = 0
    bleeding_percentage: float = 0.0
    plaque_percentage: float = 0.0
    max_pocket_depth: float | None = None
    mean_pocket_depth: float | None = None
    overall_health: OverallHealth


class ToothNumberMapping(BaseModel):
    fdi_number: int
    number: int
    quadrant: Quadrant


# ── Estadísticas ─────────────────────────────────────

class OdontogramStats(BaseModel):
    """KPIs de odontogramas para el dashboard."""
    total_odontograms: int = 0
    patients_charted: int = 0
    active_treatments: int = 0
    by_status: dict[str, int] = {}
    completion_rate: float = Field(0.0, description="% completados sobre no cancelados")
    estimated_revenue: Decimal = Decimal("0.00")
    completed_revenue: Decimal = Decimal("0.00")
