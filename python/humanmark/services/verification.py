"""Content-creation hook.

The host calls verify_action before persisting a post, topic or message and
aborts content creation if it raises. Stripping the consumed receipt from
the host's own params is the host's job.
"""

from datetime import datetime

from sqlalchemy.orm import Session

from humanmark.auth.middleware import Actor
from humanmark.config import Settings
from humanmark.db.models import FlowContext
from humanmark.errors import ApiError, ApiErrorCode
from humanmark.services import orchestrator, policy


def determine_content_context(
    settings: Settings, *, is_first_post: bool, is_private_message: bool
) -> FlowContext | None:
    """Map a host post to the context it is protected under, if any.

    Replies are `post`. A first post opens a topic, or a message in a private
    conversation; a private first post falls back to `topic` protection when
    messages are not protected.
    """
    if not is_first_post:
        return FlowContext.post if settings.protect_posts else None
    if is_private_message and settings.protect_messages:
        return FlowContext.message
    if settings.protect_topics:
        return FlowContext.topic
    return None


def verify_action(
    db: Session,
    *,
    context: str,
    actor: Actor | None,
    receipt: str | None,
    settings: Settings,
    redis_client=None,
    now: datetime | None = None,
) -> dict:
    """Gate a content action on verification.

    Returns:
        {"verified": True, "required": False} when policy exempts the action,
        {"verified": True, "required": True, "flow_id": ...} after completing
        the receipt's flow.

    Raises:
        ApiError: E_VERIFICATION_REQUIRED when a receipt is needed but absent,
            otherwise whatever complete_flow raises.
    """
    if not policy.required(db, context, actor, settings, emit_events=True, now=now):
        return {"verified": True, "required": False}

    if not receipt:
        raise ApiError(ApiErrorCode.E_VERIFICATION_REQUIRED, "Human verification is required")

    result = orchestrator.complete_flow(
        db,
        receipt=receipt,
        context=context,
        actor=actor,
        settings=settings,
        redis_client=redis_client,
        now=now,
    )
    return {"verified": True, "required": True, "flow_id": result["flow_id"]}
