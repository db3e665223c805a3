"""
Modelos SQLAlchemy — exportar todos para que Alembic los detecte.
"""

from dentalchart.models.clinic import Clinic
from dentalchart.models.user import User
from dentalchart.models.patient import Patient
from dentalchart.models.audit_log import AuditLog
from dentalchart.models.odontogram import Odontogram, ToothRecord
from dentalchart.models.treatment import CompletedTreatment, TreatmentPlanItem

__all__ = [
    "Clinic",
    "User",
    "Patient",
    "AuditLog",
    "Odontogram",
    "ToothRecord",
    "TreatmentPlanItem",
    "CompletedTreatment",
]
