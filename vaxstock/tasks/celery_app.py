"""
Configuración de Celery para tareas asíncronas y periódicas.
"""

from celery import Celery
from celery.schedules import crontab

from vaxstock.config import get_settings

settings = get_settings()

celery_app = Celery(
    "vaxstock",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "vaxstock.tasks.notification_tasks",
        "vaxstock.tasks.stock_tasks",
        "vaxstock.tasks.vaccination_tasks",
    ],
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

# ── Tareas periódicas ────────────────────────────────
celery_app.conf.beat_schedule = {
    "stock-expiration-warnings": {
        "task": "stock.expiration_warnings",
        "schedule": crontab(hour=6, minute=0),
    },
    "vaccinations-sweep-missed": {
        "task": "vaccinations.sweep_missed",
        "schedule": crontab(minute=15),
    },
    "vaccinations-rebuild-timelines": {
        "task": "vaccinations.rebuild_timelines",
        "schedule": crontab(hour=2, minute=30),
    },
}
