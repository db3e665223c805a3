"""
Tareas Celery sobre odontogramas.
Resumen periódico de KPIs por clínica (programable con Celery Beat).
"""

import asyncio
import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dentalchart.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


async def summarize_clinic_stats(
    session_factory: async_sessionmaker[AsyncSession],
    clinic_id: UUID,
) -> dict:
    """Calcula los KPIs de odontogramas de la clínica y los deja en el log."""
    from dentalchart.services.odontogram_stats_service import get_odontogram_stats

    async with session_factory() as db:
        stats = await get_odontogram_stats(db, clinic_id)

    logger.info(
        "Resumen odontogramas clínica %s: %s versiones activas, "
        "%s tratamientos activos, completados %s%%, ingreso estimado S/%s",
        clinic_id,
        stats.total_odontograms,
        stats.active_treatments,
        stats.completion_rate,
        stats.estimated_revenue,
    )
    return {
        "clinic_id": str(clinic_id),
        **stats.model_dump(mode="json"),
    }


@celery_app.task(name="odontograms.log_stats_summary")
def log_stats_summary_task(clinic_id: str) -> dict:
    """Tarea Celery: resumen de KPIs de odontogramas de una clínica."""
    from dentalchart.database import async_session_factory

    return asyncio.run(summarize_clinic_stats(async_session_factory, UUID(clinic_id)))
