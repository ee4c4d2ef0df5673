"""Celery app for the humanmark worker and beat.

Broker and result backend default to REDIS_URL. The only job is the daily
retention pass, humanmark.tasks.cleanup.humanmark_cleanup, scheduled at
03:17 UTC.

Usage:
    from humanmark.celery import celery_app

    celery_app.send_task("humanmark_cleanup", kwargs={"request_id": request_id})
"""

from celery import Celery
from celery.schedules import crontab

from humanmark.config import get_settings

CLEANUP_TASK_NAME = "humanmark_cleanup"

settings = get_settings()

celery_app = Celery("humanmark")

celery_app.conf.update(
    broker_url=settings.effective_celery_broker_url,
    result_backend=settings.effective_celery_result_backend,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_default_queue="maintenance",
    beat_schedule={
        "humanmark-cleanup-daily": {
            "task": CLEANUP_TASK_NAME,
            "schedule": crontab(hour=3, minute=17),
        },
    },
)
