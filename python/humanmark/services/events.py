"""Observability events.

The core emits events; it never aggregates them. Each event is logged as
`humanmark.<name>` and handed to registered subscribers (for example the
daily counters in humanmark.services.metrics). Subscriber failures are logged
and swallowed.

Every event carries `user_id` (None for anonymous) and `anonymous`.
"""

from collections.abc import Callable
from enum import Enum
from typing import Any

from humanmark.logging import get_logger

logger = get_logger(__name__)


class Event(str, Enum):
    FLOW_CREATED = "flow_created"
    FLOW_COMPLETED = "flow_completed"
    FLOW_EXPIRED = "flow_expired"
    VERIFICATION_COMPLETED = "verification_completed"
    VERIFICATION_FAILED = "verification_failed"
    VERIFICATION_BYPASSED = "verification_bypassed"
    RATE_LIMITED = "rate_limited"


class BypassReason(str, Enum):
    STAFF = "staff"
    TRUST_LEVEL = "trust_level"
    RECENT_VERIFICATION = "recent_verification"


Subscriber = Callable[[Event, dict[str, Any]], None]

_subscribers: list[Subscriber] = []


def subscribe(subscriber: Subscriber) -> None:
    if subscriber not in _subscribers:
        _subscribers.append(subscriber)


def unsubscribe(subscriber: Subscriber) -> None:
    if subscriber in _subscribers:
        _subscribers.remove(subscriber)


def clear_subscribers() -> None:
    """Remove all subscribers. Useful for testing."""
    _subscribers.clear()


def emit(event: Event, *, user_id: int | None = None, **fields: Any) -> dict[str, Any]:
    """Emit an event and return the payload that was dispatched."""
    payload: dict[str, Any] = {"user_id": user_id, "anonymous": user_id is None}
    for key, value in fields.items():
        payload[key] = value.value if isinstance(value, Enum) else value

    logger.info(f"humanmark.{event.value}", **payload)

    for subscriber in list(_subscribers):
        try:
            subscriber(event, payload)
        except Exception as e:
            logger.warning(
                "event_subscriber_failed",
                event_name=event.value,
                error_type=type(e).__name__,
                error=str(e),
            )

    return payload
