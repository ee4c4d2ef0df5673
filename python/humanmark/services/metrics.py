"""Daily event counters for external reporting.

Counters live in Redis as `humanmark:metrics:{key}:{YYYY-MM-DD}`. They are
written by an event subscriber and read only by reports; nothing in the
verification path depends on them.
"""

from datetime import UTC, date, datetime, timedelta
from typing import Any

from humanmark.logging import get_logger
from humanmark.services.events import Event

logger = get_logger(__name__)

METRICS_KEY_PREFIX = "humanmark:metrics"

EVENT_TOTAL_KEYS: dict[Event, str] = {
    Event.FLOW_CREATED: "flows_created",
    Event.FLOW_COMPLETED: "flows_completed",
    Event.FLOW_EXPIRED: "flows_expired",
    Event.VERIFICATION_COMPLETED: "verifications_completed",
    Event.VERIFICATION_FAILED: "verifications_failed",
    Event.VERIFICATION_BYPASSED: "verifications_bypassed",
    Event.RATE_LIMITED: "rate_limits_hit",
}

EVENT_CONTEXT_SUFFIX: dict[Event, str] = {
    Event.FLOW_CREATED: "created",
    Event.FLOW_COMPLETED: "completed",
    Event.FLOW_EXPIRED: "expired",
    Event.VERIFICATION_COMPLETED: "verified",
    Event.VERIFICATION_FAILED: "failed",
    Event.VERIFICATION_BYPASSED: "bypassed",
}


def metrics_key(key: str, day: date) -> str:
    return f"{METRICS_KEY_PREFIX}:{key}:{day.isoformat()}"


def counter_keys_for(event: Event, payload: dict[str, Any]) -> list[str]:
    """Counter names an event increments (without prefix or date)."""
    keys = [EVENT_TOTAL_KEYS[event]]

    context = payload.get("context")
    if context and event in EVENT_CONTEXT_SUFFIX:
        keys.append(f"context_{context}_{EVENT_CONTEXT_SUFFIX[event]}")

    if event == Event.VERIFICATION_BYPASSED and payload.get("reason"):
        keys.append(f"bypass_reason_{payload['reason']}")

    if event == Event.RATE_LIMITED and payload.get("limit_type"):
        keys.append(f"rate_limit_{payload['limit_type']}")

    return keys


class DailyCounters:
    """Event subscriber incrementing per-day counters in Redis."""

    def __init__(self, redis_client, clock=None):
        self._redis = redis_client
        self._clock = clock or (lambda: datetime.now(UTC))

    def __call__(self, event: Event, payload: dict[str, Any]) -> None:
        today = self._clock().date()
        pipe = self._redis.pipeline()
        for key in counter_keys_for(event, payload):
            pipe.incr(metrics_key(key, today))
        pipe.execute()


def get_daily_counts(redis_client, key: str, start: date, end: date) -> dict[date, int]:
    """Return counts for each day in [start, end]; missing days are 0."""
    days = []
    day = start
    while day <= end:
        days.append(day)
        day += timedelta(days=1)

    if not days:
        return {}

    values = redis_client.mget([metrics_key(key, d) for d in days])
    return {d: int(v) if v is not None else 0 for d, v in zip(days, values, strict=True)}


def prune_older_than(redis_client, cutoff: date) -> int:
    """Delete counter keys dated before the cutoff. Returns keys deleted."""
    stale = []
    for raw_key in redis_client.scan_iter(match=f"{METRICS_KEY_PREFIX}:*"):
        key = raw_key.decode() if isinstance(raw_key, bytes) else raw_key
        try:
            day = date.fromisoformat(key.rsplit(":", 1)[1])
        except (IndexError, ValueError):
            logger.debug("metrics_key_unparseable", key_name=key)
            continue
        if day < cutoff:
            stale.append(raw_key)

    if stale:
        redis_client.delete(*stale)

    logger.info("metrics_pruned", deleted=len(stale), cutoff=cutoff.isoformat())
    return len(stale)
