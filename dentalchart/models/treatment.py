"""
Modelos TreatmentPlanItem y CompletedTreatment.

TreatmentPlanItem sigue una state machine de estados:
    planned → in-progress → completed
    planned → cancelled
    in-progress → cancelled

CompletedTreatment es el registro clínico/facturable de lo realizado.
INSERT-only: una vez escrito no se modifica ni elimina.
"""

import enum
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    Uuid,
    event,
    inspect,
    select,
)
from sqlalchemy.orm import Mapped, aliased, mapped_column, relationship

from dentalchart.core.exceptions import ConflictException
from dentalchart.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TreatmentPriority(str, enum.Enum):
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TreatmentStatus(str, enum.Enum):
    """Estados de un ítem del plan de tratamiento."""
    PLANNED = "planned"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# ── Transiciones válidas de la state machine ─────────
VALID_TRANSITIONS: dict[TreatmentStatus, list[TreatmentStatus]] = {
    TreatmentStatus.PLANNED: [
        TreatmentStatus.IN_PROGRESS,
        TreatmentStatus.CANCELLED,
    ],
    TreatmentStatus.IN_PROGRESS: [
        TreatmentStatus.COMPLETED,
        TreatmentStatus.CANCELLED,
    ],
    # Estados terminales: no tienen transiciones
    TreatmentStatus.COMPLETED: [],
    TreatmentStatus.CANCELLED: [],
}

UNRESOLVED_STATUSES = (TreatmentStatus.PLANNED, TreatmentStatus.IN_PROGRESS)


def is_valid_transition(current: TreatmentStatus, new: TreatmentStatus) -> bool:
    """Verifica si una transición de estado es válida."""
    return new in VALID_TRANSITIONS.get(current, [])


class TreatmentPlanItem(Base):
    __tablename__ = "treatment_plan_items"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    odontogram_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("odontograms.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0,
        comment="Orden dentro del plan"
    )

    tooth: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, comment="Numeración Universal 1-32"
    )
    procedure: Mapped[str] = mapped_column(String(300), nullable=False)
    priority: Mapped[TreatmentPriority] = mapped_column(
        Enum(TreatmentPriority, name="treatmentpriority"),
        nullable=False, default=TreatmentPriority.MEDIUM,
    )
    estimated_cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    estimated_duration: Mapped[int | None] = mapped_column(
        Integer, comment="Duración estimada en minutos"
    )
    status: Mapped[TreatmentStatus] = mapped_column(
        Enum(TreatmentStatus, name="treatmentstatus"),
        nullable=False, default=TreatmentStatus.PLANNED,
    )
    scheduled_date: Mapped[date | None] = mapped_column(Date)
    notes: Mapped[str | None] = mapped_column(Text)

    # ── Traspaso entre versiones ─────────────────────
    carried_from_item_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey(
            "treatment_plan_items.id", ondelete="SET NULL", name="fk_plan_item_carried_from"
        ),
        comment="Ítem de otra versión del que se copió este pendiente"
    )

    # ── Cierre ───────────────────────────────────────
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id")
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    odontogram: Mapped["Odontogram"] = relationship(  # noqa: F821
        "Odontogram", back_populates="treatment_plan"
    )

    __table_args__ = (
        Index("idx_plan_item_odontogram_status", "odontogram_id", "status"),
        Index("idx_plan_item_carried_from", "carried_from_item_id"),
    )

    @property
    def is_resolved(self) -> bool:
        return self.status not in UNRESOLVED_STATUSES

    def __repr__(self) -> str:
        return f"<TreatmentPlanItem tooth={self.tooth} {self.procedure!r} [{self.status.value}]>"


class CompletedTreatment(Base):
    __tablename__ = "completed_treatments"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    odontogram_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("odontograms.id"), nullable=False
    )
    plan_item_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, comment="Ítem del plan cuya finalización generó este registro"
    )

    tooth: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    procedure: Mapped[str] = mapped_column(String(300), nullable=False)
    date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    doctor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    odontogram: Mapped["Odontogram"] = relationship(  # noqa: F821
        "Odontogram", back_populates="completed_treatments"
    )

    __table_args__ = (
        Index("idx_completed_odontogram_date", "odontogram_id", "date"),
    )

    def __repr__(self) -> str:
        return f"<CompletedTreatment tooth={self.tooth} {self.procedure!r}>"


# ── INSERT-only ──────────────────────────────────────
@event.listens_for(CompletedTreatment, "before_update")
def _reject_completed_treatment_update(mapper, connection, target: CompletedTreatment) -> None:
    state = inspect(target)
    changed = [attr.key for attr in state.attrs if attr.history.has_changes()]
    if changed:
        raise ConflictException(
            f"Los tratamientos realizados no se pueden modificar (campos: {', '.join(changed)})"
        )


@event.listens_for(CompletedTreatment, "before_delete")
def _reject_completed_treatment_delete(mapper, connection, target: CompletedTreatment) -> None:
    raise ConflictException("Los tratamientos realizados no se pueden eliminar")


def carried_item_ids():
    """
    Subconsulta con los ítems ya traspasados a otra versión. Esos ítems
    quedan reemplazados por su copia y no cuentan en los KPIs.
    """
    copy = aliased(TreatmentPlanItem)
    return select(copy.carried_from_item_id).where(copy.carried_from_item_id.is_not(None))
