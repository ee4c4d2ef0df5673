"""Flow store: persistence and state transitions for verification flows.

State machine:
    pending -> completed   (complete, one conditional UPDATE)
    pending -> expired     (sweep_expire, bulk conditional UPDATE)
Terminal states never transition again.

Every status write is a single UPDATE guarded by `status = 'pending'` that
also bumps lock_version. Zero affected rows means the flow already left
pending (or a concurrent writer won); that is a normal outcome, not an error.

None of these functions commit. Callers own the transaction.
"""

import math
from datetime import UTC, datetime, timedelta

from sqlalchemy import and_, delete, exists, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from humanmark.db.models import Flow, FlowStatus, as_utc
from humanmark.logging import get_logger
from humanmark.services.redact import challenge_prefix

logger = get_logger(__name__)

EXPIRY_DURATION = timedelta(hours=1)
CHALLENGE_UNIQUE_CONSTRAINT = "uq_humanmark_flows_challenge"
MINUTES_PER_DAY = 1440


class DuplicateChallengeError(Exception):
    """A flow with this challenge already exists."""


# SQLite reports the column, not the constraint name
_DUPLICATE_CHALLENGE_MARKERS = (CHALLENGE_UNIQUE_CONSTRAINT, "humanmark_flows.challenge")


def _is_duplicate_challenge(exc: IntegrityError) -> bool:
    """Whether an insert failed on the challenge unique constraint."""
    diag = getattr(exc.orig, "diag", None)
    if diag is not None and getattr(diag, "constraint_name", None):
        return diag.constraint_name == CHALLENGE_UNIQUE_CONSTRAINT
    msg = str(exc.orig) if exc.orig else str(exc)
    return any(marker in msg for marker in _DUPLICATE_CHALLENGE_MARKERS)


def _now(now: datetime | None) -> datetime:
    return now if now is not None else datetime.now(UTC)


def create_flow_record(
    db: Session,
    *,
    challenge: str,
    token: str,
    context: str,
    user_id: int | None,
    now: datetime | None = None,
) -> Flow:
    """Insert a new pending flow.

    Raises:
        DuplicateChallengeError: If the challenge is already stored (any status).
        IntegrityError: On any other constraint violation.
    """
    flow = Flow(
        challenge=challenge,
        token=token,
        context=str(context),
        user_id=user_id,
        status=FlowStatus.pending.value,
        created_at=_now(now),
        lock_version=0,
    )
    db.add(flow)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        if not _is_duplicate_challenge(exc):
            raise
        logger.warning(
            "flow_duplicate_challenge",
            challenge_prefix=challenge_prefix(challenge),
        )
        raise DuplicateChallengeError(challenge_prefix(challenge)) from exc

    return flow


def complete(db: Session, flow_id: int, *, now: datetime | None = None) -> bool:
    """Atomically move a flow from pending to completed.

    Returns:
        True if this call performed the transition, False if the flow was not
        pending (already completed, expired, or a concurrent completer won).
    """
    result = db.execute(
        update(Flow)
        .where(Flow.id == flow_id, Flow.status == FlowStatus.pending.value)
        .values(
            status=FlowStatus.completed.value,
            completed_at=_now(now),
            lock_version=Flow.lock_version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def find_by_challenge(db: Session, challenge: str) -> Flow | None:
    """Point lookup by challenge."""
    return db.execute(select(Flow).where(Flow.challenge == challenge)).scalar_one_or_none()


def is_expired(flow: Flow, now: datetime | None = None) -> bool:
    """Whether a flow can no longer be completed.

    Computed on read: a pending flow is expired once it is older than
    EXPIRY_DURATION even if the sweep has not marked it yet.
    """
    if flow.status == FlowStatus.expired.value:
        return True
    if flow.status == FlowStatus.completed.value:
        return False
    return _now(now) - as_utc(flow.created_at) > EXPIRY_DURATION


def sweep_expire(
    db: Session,
    *,
    now: datetime | None = None,
    not_before: datetime | None = None,
) -> int:
    """Mark pending flows older than EXPIRY_DURATION as expired.

    Args:
        not_before: Only touch flows created at or after this instant. The
            retention job passes its purge cutoff so rows about to be deleted
            are not rewritten first.

    Returns:
        Number of flows transitioned. Idempotent.
    """
    conditions = [
        Flow.status == FlowStatus.pending.value,
        Flow.created_at < _now(now) - EXPIRY_DURATION,
    ]
    if not_before is not None:
        conditions.append(Flow.created_at >= not_before)

    result = db.execute(
        update(Flow)
        .where(and_(*conditions))
        .values(status=FlowStatus.expired.value, lock_version=Flow.lock_version + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def recent_completed(
    db: Session,
    user_id: int | None,
    context: str,
    within_minutes: int,
    *,
    now: datetime | None = None,
) -> bool:
    """Whether the user completed a flow for this context within the window.

    A zero window means "always re-verify" and anonymous users never qualify.
    """
    if within_minutes <= 0 or user_id is None:
        return False

    since = _now(now) - timedelta(minutes=within_minutes)
    return bool(
        db.execute(
            select(
                exists().where(
                    Flow.user_id == user_id,
                    Flow.context == str(context),
                    Flow.status == FlowStatus.completed.value,
                    Flow.completed_at >= since,
                )
            )
        ).scalar()
    )


def purge_older_than(db: Session, cutoff: datetime) -> int:
    """Hard-delete flows of any status created before the cutoff."""
    result = db.execute(
        delete(Flow)
        .where(Flow.created_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def compute_retention_days(configured_days: int, max_reverify_minutes: int) -> int:
    """Retention horizon floored by the longest reverify window.

    A flow that can still satisfy a reverify lookback is never purged.
    """
    return max(configured_days, math.ceil(max_reverify_minutes / MINUTES_PER_DAY))
