"""Rate limiting for flow creation using Redis.

Four fixed-window counters, checked in order; the first exceeded limit
aborts and later counters are not touched:
1. per_user_minute (authenticated actors only)
2. per_user_hour   (authenticated actors only)
3. per_ip_minute   (everyone)
4. per_ip_hour     (everyone)

Redis keys:
- humanmark:rate:{limit_type}:{subject}

Each check runs SET NX EX (opens the window) + INCR + TTL in one MULTI, so
the window reset time is fixed by the first attempt in the window.

Fail modes:
- Redis unavailable: fail open (no limits enforced)
"""

from dataclasses import dataclass

from humanmark.config import Settings
from humanmark.errors import RateLimitedError
from humanmark.logging import get_logger
from humanmark.services.events import Event, emit

logger = get_logger(__name__)

KEY_PREFIX = "humanmark:rate"

MINUTE_SECONDS = 60
HOUR_SECONDS = 3600


@dataclass(frozen=True)
class RateLimits:
    per_user_minute: int = 5
    per_user_hour: int = 30
    per_ip_minute: int = 10
    per_ip_hour: int = 100

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimits":
        return cls(
            per_user_minute=settings.max_challenges_per_user_per_minute,
            per_user_hour=settings.max_challenges_per_user_per_hour,
            per_ip_minute=settings.max_challenges_per_ip_per_minute,
            per_ip_hour=settings.max_challenges_per_ip_per_hour,
        )


class RateLimiter:
    """Flow creation rate limiter.

    Thread-safe for use in FastAPI endpoints.
    """

    def __init__(self, redis_client=None, limits: RateLimits | None = None):
        """Initialize rate limiter.

        Args:
            redis_client: Redis client instance (sync). If None, limits are not enforced.
            limits: Thresholds for the four windows.
        """
        self._redis = redis_client
        self._limits = limits or RateLimits()

    @property
    def redis_available(self) -> bool:
        """Whether a Redis client is configured.

        No round trip is made; an unreachable server surfaces in the window
        checks, which fail open.
        """
        return self._redis is not None

    def check_flow_creation(self, user_id: int | None, ip: str | None) -> None:
        """Consume one attempt from every applicable window.

        Raises:
            RateLimitedError: With the seconds until the exceeded window resets.
        """
        if not self.redis_available:
            logger.warning("rate_limit_redis_unavailable", check="flow_creation")
            return  # Fail open

        limits = self._limits
        checks: list[tuple[str, str, int, int]] = []
        if user_id is not None:
            user = str(user_id)
            checks.append(("per_user_minute", user, limits.per_user_minute, MINUTE_SECONDS))
            checks.append(("per_user_hour", user, limits.per_user_hour, HOUR_SECONDS))
        ip_subject = ip or "unknown"
        checks.append(("per_ip_minute", ip_subject, limits.per_ip_minute, MINUTE_SECONDS))
        checks.append(("per_ip_hour", ip_subject, limits.per_ip_hour, HOUR_SECONDS))

        for limit_type, subject, limit, window in checks:
            self._check(limit_type, subject, limit, window, user_id=user_id, ip=ip)

    def _check(
        self,
        limit_type: str,
        subject: str,
        limit: int,
        window_seconds: int,
        *,
        user_id: int | None,
        ip: str | None,
    ) -> None:
        try:
            key = f"{KEY_PREFIX}:{limit_type}:{subject}"

            pipe = self._redis.pipeline()
            pipe.set(key, 0, ex=window_seconds, nx=True)
            pipe.incr(key)
            pipe.ttl(key)
            results = pipe.execute()

            count = int(results[1])
            ttl = int(results[2])
        except Exception as e:
            logger.warning("rate_limit_check_failed", check=limit_type, error=str(e))
            return  # Fail open

        if count > limit:
            retry_after = ttl if ttl > 0 else window_seconds
            logger.warning(
                "rate_limit.blocked",
                limit_type=limit_type,
                limit=limit,
                user_id=user_id,
                retry_after_seconds=retry_after,
            )
            emit(Event.RATE_LIMITED, user_id=user_id, ip=ip, limit_type=limit_type)
            raise RateLimitedError(retry_after=retry_after, limit_type=limit_type)


# Global rate limiter instance (initialized by app startup)
_rate_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    """Get the global rate limiter instance.

    Returns a no-op limiter if not initialized (for testing without Redis).
    """
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter(redis_client=None)
    return _rate_limiter


def set_rate_limiter(limiter: RateLimiter | None) -> None:
    """Set the global rate limiter instance (None resets to the no-op limiter)."""
    global _rate_limiter
    _rate_limiter = limiter
