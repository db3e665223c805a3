"""
Modelo Clinic — Tenant principal del sistema multi-tenant.
Los odontogramas y pacientes siempre se filtran por clínica.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from dentalchart.database import Base


class Clinic(Base):
    __tablename__ = "clinics"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    branch_name: Mapped[str | None] = mapped_column(
        String(100), comment="Nombre de la sede/sucursal"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    @property
    def display_name(self) -> str:
        """Nombre completo con sucursal si aplica."""
        if self.branch_name:
            return f"{self.name} - {self.branch_name}"
        return self.name

    def __repr__(self) -> str:
        return f"<Clinic {self.display_name}>"
