"""Policy evaluator: does this actor need to verify for this context?

Evaluation order (first match wins):
1. Feature disabled                      -> not required
2. Staff actor, staff bypass enabled     -> not required (bypassed: staff)
3. trust_level >= bypass trust level     -> not required (bypassed: trust_level)
4. Context not protected                 -> not required
5. Completed flow within reverify window -> not required (bypassed: recent_verification)
6. Otherwise                             -> required

Anonymous actors (None) never match 2, 3 or 5.
"""

from datetime import datetime

from sqlalchemy.orm import Session

from humanmark.auth.middleware import Actor
from humanmark.config import Settings
from humanmark.logging import get_logger
from humanmark.services import flows
from humanmark.services.events import BypassReason, Event, emit

logger = get_logger(__name__)


def _bypass(reason: BypassReason, actor: Actor, context: str, emit_events: bool, **extra) -> bool:
    logger.info("verification_bypassed", reason=reason.value, user_id=actor.id, context=context)
    if emit_events:
        emit(
            Event.VERIFICATION_BYPASSED,
            user_id=actor.id,
            context=context,
            reason=reason,
            **extra,
        )
    return False


def required(
    db: Session,
    context: str,
    actor: Actor | None,
    settings: Settings,
    *,
    emit_events: bool = True,
    now: datetime | None = None,
) -> bool:
    """Decide whether verification is required for (context, actor)."""
    context = str(context)

    if not settings.enabled:
        return False

    if actor is not None and actor.is_staff and settings.bypass_staff:
        return _bypass(BypassReason.STAFF, actor, context, emit_events)

    if actor is not None and actor.trust_level >= settings.bypass_trust_level:
        return _bypass(
            BypassReason.TRUST_LEVEL,
            actor,
            context,
            emit_events,
            trust_level=actor.trust_level,
        )

    if not settings.is_context_protected(context):
        return False

    if actor is not None and flows.recent_completed(
        db, actor.id, context, settings.reverify_minutes(context), now=now
    ):
        return _bypass(BypassReason.RECENT_VERIFICATION, actor, context, emit_events)

    if settings.debug_mode:
        logger.debug(
            "verification_required",
            user_id=actor.id if actor else None,
            context=context,
        )
    return True
