"""Flow orchestrator: the create and complete use cases.

Create:
    policy -> rate limits -> provider challenge -> pending row -> flow_created

Complete:
    receipt -> (challenge lock) -> lookup -> actor binding -> context binding
    -> status / expiry -> conditional complete -> flow_completed +
    verification_completed

Every failure leaves as an ApiError with a stable code. Failures while
completing also emit verification_failed. Anything unexpected is logged
server-side and surfaced as E_INTERNAL.
"""

from datetime import UTC, datetime

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from humanmark.auth.middleware import Actor
from humanmark.config import Settings
from humanmark.db.models import Flow, FlowStatus, as_utc
from humanmark.errors import ApiError, ApiErrorCode
from humanmark.logging import get_logger
from humanmark.services import flows, policy
from humanmark.services.challenge_client import (
    ChallengeClient,
    ChallengeIssued,
    ChallengeProviderError,
)
from humanmark.services.events import Event, emit
from humanmark.services.flow_lock import flow_lock
from humanmark.services.rate_limit import RateLimiter
from humanmark.services.receipts import InvalidReceiptError, verify_receipt
from humanmark.services.redact import challenge_prefix, safe_kv

logger = get_logger(__name__)

# Deliberately identical for "absent" and "not yours"
FLOW_NOT_FOUND_MESSAGE = "Verification flow not found"


def _flow_not_found() -> ApiError:
    return ApiError(ApiErrorCode.E_FLOW_NOT_FOUND, FLOW_NOT_FOUND_MESSAGE)


def _internal_error(operation: str, exc: Exception, settings: Settings) -> ApiError:
    logger.error(
        "orchestrator_unexpected_error",
        operation=operation,
        error_type=type(exc).__name__,
        error=str(exc),
        exc_info=settings.debug_mode,
    )
    return ApiError(ApiErrorCode.E_INTERNAL, "Verification failed due to an internal error")


def _persist_flow(
    db: Session,
    issued: ChallengeIssued,
    context: str,
    user_id: int | None,
    now: datetime | None,
) -> Flow:
    flow = flows.create_flow_record(
        db,
        challenge=issued.challenge,
        token=issued.token,
        context=context,
        user_id=user_id,
        now=now,
    )
    db.commit()
    return flow


async def create_flow(
    db: Session,
    *,
    context: str,
    actor: Actor | None,
    ip: str | None,
    client: ChallengeClient,
    rate_limiter: RateLimiter,
    settings: Settings,
    now: datetime | None = None,
) -> dict:
    """Start a verification flow if one is required.

    Database and Redis work runs in the threadpool so the event loop keeps
    serving other requests while those calls block.

    Returns:
        {"required": False} or {"required": True, "token": ..., "challenge": ...}

    Raises:
        ApiError: E_RATE_LIMITED, E_PROVIDER_*, E_FLOW_CREATION_FAILED or E_INTERNAL.
    """
    user_id = actor.id if actor else None
    context = str(context)

    try:
        # Bypass events are reported by the content hook, not on every create
        required = await run_in_threadpool(
            policy.required, db, context, actor, settings, emit_events=False, now=now
        )
        if not required:
            return {"required": False}

        await run_in_threadpool(rate_limiter.check_flow_creation, user_id, ip)

        try:
            issued = await client.create_challenge()
        except ChallengeProviderError as e:
            logger.warning(
                "flow_create_provider_failed",
                error_class=e.error_class.value,
                status_code=e.status_code,
                context=context,
            )
            raise e.to_api_error() from e

        try:
            flow = await run_in_threadpool(_persist_flow, db, issued, context, user_id, now)
        except flows.DuplicateChallengeError as e:
            raise ApiError(
                ApiErrorCode.E_FLOW_CREATION_FAILED, "Could not start verification"
            ) from e

    except ApiError:
        raise
    except Exception as e:
        await run_in_threadpool(db.rollback)
        raise _internal_error("create_flow", e, settings) from e

    logger.info(
        "flow_created",
        **safe_kv(
            flow_id=flow.id,
            context=context,
            user_id=user_id,
            challenge_prefix=challenge_prefix(flow.challenge),
            token_length=len(flow.token),
        ),
    )
    emit(Event.FLOW_CREATED, user_id=user_id, flow_id=flow.id, context=context)

    return {"required": True, "token": flow.token, "challenge": flow.challenge}


def complete_flow(
    db: Session,
    *,
    receipt: str | None,
    context: str | None,
    actor: Actor | None,
    settings: Settings,
    redis_client=None,
    now: datetime | None = None,
) -> dict:
    """Complete the flow a receipt was issued for.

    Args:
        context: Expected flow context. None skips the context check.

    Returns:
        {"verified": True, "flow_id": ...}

    Raises:
        ApiError: E_INVALID_RECEIPT, E_FLOW_NOT_FOUND, E_CHALLENGE_ALREADY_USED,
            E_FLOW_EXPIRED or E_INTERNAL.
    """
    user_id = actor.id if actor else None
    context = str(context) if context else None

    try:
        try:
            verified = verify_receipt(receipt, settings.api_secret)
        except InvalidReceiptError as e:
            raise ApiError(ApiErrorCode.E_INVALID_RECEIPT, "Invalid verification receipt") from e

        with flow_lock(redis_client, verified.challenge):
            flow, completed_at = _complete_locked(db, verified.challenge, context, actor, now)

    except ApiError as e:
        emit(
            Event.VERIFICATION_FAILED,
            user_id=user_id,
            context=context,
            error=e.code.value,
        )
        raise
    except Exception as e:
        db.rollback()
        emit(
            Event.VERIFICATION_FAILED,
            user_id=user_id,
            context=context,
            error=ApiErrorCode.E_INTERNAL.value,
        )
        raise _internal_error("complete_flow", e, settings) from e

    duration_seconds = round((completed_at - as_utc(flow.created_at)).total_seconds(), 3)
    logger.info(
        "flow_completed",
        flow_id=flow.id,
        context=flow.context,
        user_id=flow.user_id,
        duration_seconds=duration_seconds,
    )
    emit(
        Event.FLOW_COMPLETED,
        user_id=flow.user_id,
        flow_id=flow.id,
        context=flow.context,
        duration_seconds=duration_seconds,
    )
    emit(
        Event.VERIFICATION_COMPLETED,
        user_id=flow.user_id,
        flow_id=flow.id,
        context=flow.context,
    )

    return {"verified": True, "flow_id": flow.id}


def _complete_locked(
    db: Session,
    challenge: str,
    context: str | None,
    actor: Actor | None,
    now: datetime | None,
) -> tuple[Flow, datetime]:
    flow = flows.find_by_challenge(db, challenge)
    if flow is None:
        logger.info("flow_lookup_missed", challenge_prefix=challenge_prefix(challenge))
        raise _flow_not_found()

    if flow.user_id is not None:
        if actor is None or actor.id != flow.user_id:
            logger.warning("flow_actor_mismatch", flow_id=flow.id)
            raise _flow_not_found()
    elif actor is not None:
        # Anonymous flows are never claimable by a logged-in user
        logger.warning("flow_actor_mismatch", flow_id=flow.id, anonymous_flow=True)
        raise _flow_not_found()

    if context is not None and context != flow.context:
        logger.warning("flow_context_mismatch", flow_id=flow.id)
        raise _flow_not_found()

    if flow.status == FlowStatus.completed.value:
        raise ApiError(
            ApiErrorCode.E_CHALLENGE_ALREADY_USED, "This verification has already been used"
        )

    completed_at = now if now is not None else datetime.now(UTC)

    if flow.status == FlowStatus.failed.value or flows.is_expired(flow, completed_at):
        if flow.status != FlowStatus.failed.value:
            emit(Event.FLOW_EXPIRED, user_id=flow.user_id, flow_id=flow.id, context=flow.context)
        raise ApiError(
            ApiErrorCode.E_FLOW_EXPIRED, "Verification expired. Please verify again."
        )

    won = flows.complete(db, flow.id, now=completed_at)
    db.commit()
    if not won:
        logger.info("flow_completion_race_lost", flow_id=flow.id)
        raise ApiError(
            ApiErrorCode.E_CHALLENGE_ALREADY_USED, "This verification has already been used"
        )

    return flow, completed_at


def find_flow(db: Session, challenge: str) -> Flow:
    """Look up a flow by challenge.

    Raises:
        ApiError(E_FLOW_NOT_FOUND): If no flow has this challenge.
    """
    flow = flows.find_by_challenge(db, challenge)
    if flow is None:
        raise _flow_not_found()
    return flow
