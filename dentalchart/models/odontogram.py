"""
Modelo Odontogram — Ficha dental versionada del paciente.

Cada odontograma es una foto inmutable de los 32 dientes en un momento
dado, identificada por (patient_id, version). Las versiones nunca se
eliminan: se archivan con is_active = False.

Sólo el plan de tratamiento y el registro de tratamientos realizados se
actualizan sobre la versión existente; cualquier cambio en los dientes
genera una versión nueva.
"""

import copy
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    case,
)
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from dentalchart.core.dentition import (
    TOOTH_NUMBERS,
    Quadrant,
    quadrant_for,
    universal_to_fdi,
    validate_tooth_number,
)
from dentalchart.core.exceptions import ValidationException
from dentalchart.database import Base, JSONType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SurfaceName(str, enum.Enum):
    """Superficies examinadas de cada diente."""
    MESIAL = "mesial"
    DISTAL = "distal"
    OCCLUSAL = "occlusal"
    BUCCAL = "buccal"
    LINGUAL = "lingual"


class SurfaceCondition(str, enum.Enum):
    """Condición clínica de una superficie."""
    HEALTHY = "healthy"
    CARIES = "caries"
    FILLING = "filling"
    CROWN = "crown"
    MISSING = "missing"
    IMPLANT = "implant"
    BRIDGE = "bridge"


class PocketSite(str, enum.Enum):
    """Sitios de sondaje periodontal (no incluye oclusal)."""
    MESIAL = "mesial"
    DISTAL = "distal"
    BUCCAL = "buccal"
    LINGUAL = "lingual"


class OverallHealth(str, enum.Enum):
    """Estado periodontal general, ingresado por el doctor."""
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


MAX_MOBILITY = 3
MAX_POCKET_DEPTH_MM = 15


def default_surfaces() -> dict[str, dict]:
    """Las 5 superficies en estado sano, sin material ni notas."""
    return {
        surface.value: {
            "condition": SurfaceCondition.HEALTHY.value,
            "material": None,
            "notes": None,
        }
        for surface in SurfaceName
    }


def default_periodontal_chart() -> dict:
    return {
        "overall_health": OverallHealth.GOOD.value,
        "general_notes": None,
        "recommendations": [],
    }


class ToothRecord(Base):
    """Estado clínico de un diente dentro de un odontograma."""

    __tablename__ = "tooth_records"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    odontogram_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("odontograms.id", ondelete="CASCADE"), nullable=False
    )
    number: Mapped[int] = mapped_column(
        SmallInteger, nullable=False,
        comment="Numeración Universal 1-32"
    )
    surfaces: Mapped[dict] = mapped_column(
        JSONType, nullable=False, default=default_surfaces,
        comment='{"mesial": {"condition": "healthy", "material": null, "notes": null}, ...}'
    )
    mobility: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    pocket_depth: Mapped[dict | None] = mapped_column(
        JSONType, comment="Profundidad de sondaje en mm por sitio (0-15)"
    )
    bleeding: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    plaque: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[str | None] = mapped_column(Text)

    odontogram: Mapped["Odontogram"] = relationship(back_populates="teeth")

    __table_args__ = (
        UniqueConstraint("odontogram_id", "number", name="uq_tooth_per_odontogram"),
        CheckConstraint("number BETWEEN 1 AND 32", name="ck_tooth_number_range"),
        CheckConstraint("mobility BETWEEN 0 AND 3", name="ck_tooth_mobility_range"),
    )

    def __init__(self, **kwargs):
        if "quadrant" in kwargs:
            raise ValidationException(
                "El cuadrante se deriva del número de diente y no puede asignarse"
            )
        kwargs.setdefault("surfaces", default_surfaces())
        kwargs.setdefault("mobility", 0)
        kwargs.setdefault("bleeding", False)
        kwargs.setdefault("plaque", False)
        super().__init__(**kwargs)

    # ── Cuadrante derivado ───────────────────────────
    @hybrid_property
    def quadrant(self) -> Quadrant:
        return quadrant_for(self.number)

    @quadrant.inplace.expression
    @classmethod
    def _quadrant_expression(cls):
        return case(
            (cls.number <= 8, Quadrant.UPPER_RIGHT.value),
            (cls.number <= 16, Quadrant.UPPER_LEFT.value),
            (cls.number <= 24, Quadrant.LOWER_LEFT.value),
            else_=Quadrant.LOWER_RIGHT.value,
        )

    @property
    def fdi_number(self) -> int:
        return universal_to_fdi(self.number)

    @property
    def is_affected(self) -> bool:
        """True si alguna superficie no está sana."""
        return any(
            s["condition"] != SurfaceCondition.HEALTHY.value
            for s in self.surfaces.values()
        )

    # ── Validaciones ─────────────────────────────────
    @validates("number")
    def _validate_number(self, key, value: int) -> int:
        return validate_tooth_number(value)

    @validates("surfaces")
    def _validate_surfaces(self, key, value: dict) -> dict:
        if not isinstance(value, dict):
            raise ValidationException("Las superficies deben ser un objeto")
        expected = {s.value for s in SurfaceName}
        keys = {str(k.value if isinstance(k, SurfaceName) else k) for k in value}
        if keys != expected:
            missing = sorted(expected - keys)
            extra = sorted(keys - expected)
            raise ValidationException(
                f"Superficies incompletas o inválidas. Faltan: {missing or '-'}; "
                f"no reconocidas: {extra or '-'}"
            )
        valid_conditions = {c.value for c in SurfaceCondition}
        normalized = {}
        for surface, state in value.items():
            name = surface.value if isinstance(surface, SurfaceName) else surface
            if not isinstance(state, dict):
                raise ValidationException(
                    f"La superficie {name} debe ser un objeto con condition/material/notes"
                )
            condition = state.get("condition", SurfaceCondition.HEALTHY.value)
            condition = condition.value if isinstance(condition, SurfaceCondition) else condition
            if not isinstance(condition, str) or condition not in valid_conditions:
                raise ValidationException(
                    f"Condición inválida '{condition}' en superficie {name}"
                )
            normalized[name] = {
                "condition": condition,
                "material": state.get("material"),
                "notes": state.get("notes"),
            }
        return normalized

    @validates("mobility")
    def _validate_mobility(self, key, value: int) -> int:
        if (
            isinstance(value, bool)
            or not isinstance(value, int)
            or not 0 <= value <= MAX_MOBILITY
        ):
            raise ValidationException(
                f"Movilidad inválida: {value}. Rango válido: 0-{MAX_MOBILITY}."
            )
        return value

    @validates("pocket_depth")
    def _validate_pocket_depth(self, key, value: dict | None) -> dict | None:
        if value is None:
            return None
        if not isinstance(value, dict):
            raise ValidationException("La profundidad de sondaje debe ser un objeto por sitio")
        valid_sites = {s.value for s in PocketSite}
        normalized = {}
        for site, depth in value.items():
            name = site.value if isinstance(site, PocketSite) else site
            if name not in valid_sites:
                raise ValidationException(f"Sitio de sondaje inválido: '{name}'")
            if depth is None:
                continue
            if isinstance(depth, bool) or not isinstance(depth, (int, float)):
                raise ValidationException(
                    f"Profundidad de sondaje en {name} debe ser numérica (mm), no {depth!r}"
                )
            if not 0 <= depth <= MAX_POCKET_DEPTH_MM:
                raise ValidationException(
                    f"Profundidad de sondaje inválida en {name}: {depth} mm "
                    f"(rango 0-{MAX_POCKET_DEPTH_MM})"
                )
            normalized[name] = depth
        return normalized or None

    # ── Copias ───────────────────────────────────────
    def clone(self) -> "ToothRecord":
        """Copia profunda, sin compartir estructuras con el original."""
        return ToothRecord(
            number=self.number,
            surfaces=copy.deepcopy(self.surfaces),
            mobility=self.mobility,
            pocket_depth=copy.deepcopy(self.pocket_depth),
            bleeding=self.bleeding,
            plaque=self.plaque,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return f"<ToothRecord #{self.number} ({self.quadrant.value})>"


def build_default_teeth() -> list[ToothRecord]:
    """Genera los 32 dientes sanos, numerados 1-32."""
    return [ToothRecord(number=n) for n in TOOTH_NUMBERS]


def validate_full_dentition(teeth: list[ToothRecord]) -> None:
    """Exige exactamente 32 dientes, uno por número."""
    numbers = [t.number for t in teeth]
    if len(numbers) != len(TOOTH_NUMBERS) or set(numbers) != set(TOOTH_NUMBERS):
        duplicates = sorted({n for n in numbers if numbers.count(n) > 1})
        missing = sorted(set(TOOTH_NUMBERS) - set(numbers))
        raise ValidationException(
            f"El odontograma requiere exactamente {len(TOOTH_NUMBERS)} dientes (1-32). "
            f"Recibidos: {len(numbers)}; duplicados: {duplicates or '-'}; "
            f"faltantes: {missing or '-'}"
        )


def initialize_teeth(odontogram: "Odontogram") -> bool:
    """
    Puebla los 32 dientes por defecto si el odontograma está vacío.
    Sobre un odontograma ya poblado no hace nada y retorna False.
    """
    if odontogram.teeth:
        return False
    odontogram.teeth = build_default_teeth()
    return True


class Odontogram(Base):
    __tablename__ = "odontograms"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("clinics.id"), nullable=False
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("patients.id"), nullable=False
    )
    doctor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )

    # ── Versionado ───────────────────────────────────
    version: Mapped[int] = mapped_column(
        Integer, nullable=False,
        comment="Versión por paciente, empieza en 1 y sin huecos"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    lock_version: Mapped[int] = mapped_column(
        Integer, nullable=False,
        comment="Contador de concurrencia optimista (version_id_col)"
    )

    # ── Resumen periodontal (ingresado por el doctor) ─
    periodontal_chart: Mapped[dict] = mapped_column(
        JSONType, nullable=False, default=default_periodontal_chart
    )
    exam_notes: Mapped[str | None] = mapped_column(String(2000))

    # ── Timestamps ───────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    # ── Relaciones ───────────────────────────────────
    teeth: Mapped[list[ToothRecord]] = relationship(
        back_populates="odontogram",
        cascade="all, delete-orphan",
        order_by=ToothRecord.number,
        lazy="selectin",
    )
    treatment_plan: Mapped[list["TreatmentPlanItem"]] = relationship(  # noqa: F821
        "TreatmentPlanItem",
        back_populates="odontogram",
        cascade="all, delete-orphan",
        order_by="TreatmentPlanItem.position",
        lazy="selectin",
    )
    completed_treatments: Mapped[list["CompletedTreatment"]] = relationship(  # noqa: F821
        "CompletedTreatment",
        back_populates="odontogram",
        cascade="save-update, merge",
        order_by="CompletedTreatment.date",
        lazy="selectin",
    )
    doctor: Mapped["User"] = relationship("User", lazy="joined")  # noqa: F821

    # ── Índices ──────────────────────────────────────
    __table_args__ = (
        UniqueConstraint("patient_id", "version", name="uq_odontogram_patient_version"),
        CheckConstraint("version >= 1", name="ck_odontogram_version_positive"),
        Index("idx_odontogram_clinic_patient", "clinic_id", "patient_id"),
        Index("idx_odontogram_doctor_created", "doctor_id", "created_at"),
    )
    __mapper_args__ = {"version_id_col": lock_version, "eager_defaults": True}

    def tooth(self, number: int) -> ToothRecord | None:
        for t in self.teeth:
            if t.number == number:
                return t
        return None

    def has_tooth(self, number: int) -> bool:
        return self.tooth(number) is not None

    def touch(self) -> None:
        """Marca la fila como modificada para forzar el chequeo de lock_version."""
        self.updated_at = _utcnow()

    def __repr__(self) -> str:
        state = "activo" if self.is_active else "archivado"
        return f"<Odontogram patient={self.patient_id} v{self.version} ({state})>"
