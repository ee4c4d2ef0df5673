"""Celery worker and beat entrypoint.

Run with:
    celery -A apps.worker.main:celery_app worker --loglevel=info
    celery -A apps.worker.main:celery_app beat --loglevel=info

Tasks are registered by explicit import - no autodiscovery. Beat runs the
daily retention pass defined in humanmark.celery.
"""

from celery.signals import worker_process_init

from humanmark.celery import celery_app
from humanmark.logging import configure_logging, get_logger

# Import tasks to register them with Celery
from humanmark.tasks import humanmark_cleanup  # noqa: F401


@worker_process_init.connect
def setup_worker_logging(**kwargs):
    """Use the same structured JSON logging as the API in worker processes."""
    configure_logging()
    get_logger(__name__).info("celery_worker_started")


__all__ = ["celery_app"]
