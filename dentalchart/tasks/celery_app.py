"""
Configuración de Celery para tareas asíncronas.
"""

from celery import Celery

from dentalchart.config import get_settings

settings = get_settings()

celery_app = Celery(
    "odontograma",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["dentalchart.tasks.odontogram_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.CELERY_TIMEZONE,
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)
