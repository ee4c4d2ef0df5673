"""Daily retention job.

1. Compute the retention horizon: max(HUMANMARK_FLOW_RETENTION_DAYS,
   ceil(longest reverify window / 1 day)).
2. In one transaction: expire stale pending flows newer than the cutoff, then
   delete every flow created before the cutoff.
3. Prune daily metric counters older than the same cutoff.

Step 2 failing fails the job. Step 3 failing is logged and ignored.
"""

from datetime import UTC, datetime, timedelta

from sqlalchemy.orm import Session

from humanmark.celery import CLEANUP_TASK_NAME, celery_app
from humanmark.config import Settings, get_settings
from humanmark.db.session import get_session_factory, transaction
from humanmark.logging import clear_task_context, configure_task_logging, get_logger
from humanmark.services import flows, metrics

logger = get_logger(__name__)


def run_cleanup(
    db: Session,
    settings: Settings,
    *,
    redis_client=None,
    now: datetime | None = None,
) -> dict:
    """Run one retention pass.

    Returns:
        {"skipped": True} when the feature is disabled, otherwise
        {"marked_expired", "deleted", "retention_days_used"}.
    """
    if not settings.enabled:
        logger.debug("cleanup_skipped_disabled")
        return {"skipped": True}

    now = now if now is not None else datetime.now(UTC)
    retention_days = flows.compute_retention_days(
        settings.flow_retention_days, settings.max_reverify_minutes
    )
    cutoff = now - timedelta(days=retention_days)

    with transaction(db):
        marked_expired = flows.sweep_expire(db, now=now, not_before=cutoff)
        deleted = flows.purge_older_than(db, cutoff)

    if marked_expired or deleted:
        logger.info(
            "cleanup_completed",
            marked_expired=marked_expired,
            deleted=deleted,
            retention_days=retention_days,
        )

    if redis_client is not None:
        try:
            metrics.prune_older_than(redis_client, cutoff.date())
        except Exception as e:
            logger.error("metrics_cleanup_failed", error=str(e))

    return {
        "marked_expired": marked_expired,
        "deleted": deleted,
        "retention_days_used": retention_days,
    }


def _redis_client(settings: Settings):
    if not settings.redis_url:
        return None
    import redis

    return redis.Redis.from_url(settings.redis_url, decode_responses=True, socket_timeout=5)


@celery_app.task(bind=True, max_retries=0, name=CLEANUP_TASK_NAME)
def humanmark_cleanup(self, request_id: str | None = None) -> dict:
    """Celery entrypoint for the daily retention pass."""
    configure_task_logging(
        request_id=request_id, task_name=CLEANUP_TASK_NAME, task_id=self.request.id
    )
    settings = get_settings()
    db = get_session_factory()()
    try:
        return run_cleanup(db, settings, redis_client=_redis_client(settings))
    except Exception as e:
        logger.error("cleanup_failed", error_type=type(e).__name__, error=str(e))
        raise
    finally:
        db.close()
        clear_task_context()
