"""Celery configuration"""
from celery import Celery
from celery.schedules import crontab
from proxystats.core.config import settings

celery_app = Celery(
    "proxystats",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "proxystats.tasks.retention_tasks",
    ]
)

celery_app.conf.task_routes = {
    "proxystats.tasks.retention.*": {"queue": "maintenance"},
}

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
)

# Periodic tasks
celery_app.conf.beat_schedule = {
    "auto-cleanup-every-hour": {
        "task": "proxystats.tasks.retention.auto_cleanup",
        "schedule": crontab(minute=5),
    },
}
