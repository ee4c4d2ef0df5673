"""Distributed completion lock keyed by challenge.

Advisory only: it keeps concurrent completers of one challenge from doing
duplicate work across processes. The conditional UPDATE in
humanmark.services.flows.complete is what guarantees at-most-once completion,
so any Redis problem degrades to running without the lock.
"""

from collections.abc import Iterator
from contextlib import contextmanager

from humanmark.logging import get_logger
from humanmark.services.redact import challenge_prefix

logger = get_logger(__name__)

LOCK_KEY_PREFIX = "humanmark:flow_lock"
LOCK_TIMEOUT_SECONDS = 10
LOCK_BLOCKING_TIMEOUT_SECONDS = 5


def lock_key(challenge: str) -> str:
    return f"{LOCK_KEY_PREFIX}:{challenge}"


@contextmanager
def flow_lock(redis_client, challenge: str) -> Iterator[bool]:
    """Hold the completion lock for a challenge while the block runs.

    Yields:
        True if the lock is held, False if proceeding without it.
    """
    if redis_client is None:
        yield False
        return

    lock = None
    acquired = False
    try:
        lock = redis_client.lock(
            lock_key(challenge),
            timeout=LOCK_TIMEOUT_SECONDS,
            blocking_timeout=LOCK_BLOCKING_TIMEOUT_SECONDS,
        )
        acquired = bool(lock.acquire())
    except Exception as e:
        logger.warning(
            "flow_lock_unavailable",
            challenge_prefix=challenge_prefix(challenge),
            error=str(e),
        )

    if lock is not None and not acquired:
        logger.warning("flow_lock_not_acquired", challenge_prefix=challenge_prefix(challenge))

    try:
        yield acquired
    finally:
        if acquired:
            try:
                lock.release()
            except Exception as e:
                # Lock expired while held; another completer may already own it
                logger.warning(
                    "flow_lock_release_failed",
                    challenge_prefix=challenge_prefix(challenge),
                    error=str(e),
                )
