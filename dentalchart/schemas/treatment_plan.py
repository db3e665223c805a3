"""
Schemas para el plan de tratamiento y los tratamientos realizados.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from dentalchart.models.treatment import TreatmentPriority, TreatmentStatus


class TreatmentPlanItemCreate(BaseModel):
    tooth: int = Field(..., description="Numeración Universal 1-32")
    procedure: str = Field(..., min_length=1, max_length=300)
    priority: TreatmentPriority = TreatmentPriority.MEDIUM
    estimated_cost: Decimal | None = Field(None, ge=0, max_digits=12, decimal_places=2)
    estimated_duration: int | None = Field(None, ge=0, description="Minutos")
    scheduled_date: date | None = None
    notes: str | None = Field(None, max_length=2000)


class TreatmentPlanReplace(BaseModel):
    """
    Reemplazo completo del plan. Sobrescribe la lista entera: los ítems
    existentes (incluidos los en curso) se descartan.
    """
    items: list[TreatmentPlanItemCreate]


class TreatmentStatusChange(BaseModel):
    status: TreatmentStatus
    actual_cost: Decimal | None = Field(
        None, ge=0, max_digits=12, decimal_places=2,
        description="Costo real al completar; por defecto el estimado",
    )
    notes: str | None = Field(None, max_length=2000)


class CarryForwardRequest(BaseModel):
    from_version: int = Field(..., ge=1, description="Versión de la que se copian los pendientes")


class TreatmentPlanItemResponse(BaseModel):
    id: UUID
    tooth: int
    procedure: str
    priority: TreatmentPriority
    estimated_cost: Decimal | None = None
    estimated_duration: int | None = None
    status: TreatmentStatus
    scheduled_date: date | None = None
    notes: str | None = None
    completed_at: datetime | None = None
    completed_by: UUID | None = None
    carried_from_item_id: UUID | None = None

    model_config = {"from_attributes": True}


class CompletedTreatmentCreate(BaseModel):
    tooth: int = Field(..., description="Numeración Universal 1-32")
    procedure: str = Field(..., min_length=1, max_length=300)
    date: datetime | None = None
    cost: Decimal | None = Field(None, ge=0, max_digits=12, decimal_places=2)
    notes: str | None = Field(None, max_length=2000)


class CompletedTreatmentResponse(BaseModel):
    id: UUID
    plan_item_id: UUID | None = None
    tooth: int
    procedure: str
    date: datetime
    cost: Decimal | None = None
    doctor_id: UUID
    notes: str | None = None

    model_config = {"from_attributes": True}
