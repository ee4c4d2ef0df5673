"""FastAPI application factory.

Request path, outermost first:
    RequestIDMiddleware -> ActorMiddleware -> route
RequestIDMiddleware is registered last so that actor-token rejections still
carry X-Request-ID.

Shared resources live on app.state for the app's lifetime:
- httpx_client: pooled client for the challenge provider
- redis_client: rate limits, completion lock, daily counters (None when
  REDIS_URL is unset or unreachable; every consumer degrades without it)
"""

from contextlib import asynccontextmanager

import httpx
import redis
from fastapi import FastAPI

from humanmark import __version__
from humanmark.api.routes import create_api_router
from humanmark.auth.middleware import ActorMiddleware
from humanmark.auth.tokens import HostTokenVerifier
from humanmark.config import Settings, get_settings
from humanmark.logging import configure_logging, get_logger
from humanmark.middleware.request_id import RequestIDMiddleware
from humanmark.responses import register_exception_handlers
from humanmark.services import events
from humanmark.services.metrics import DailyCounters
from humanmark.services.rate_limit import RateLimiter, RateLimits, set_rate_limiter

logger = get_logger(__name__)

PROVIDER_CONNECT_TIMEOUT_SECONDS = 10.0


def create_redis_client(redis_url: str | None):
    """Connect to Redis, or return None when unset or unreachable."""
    if not redis_url:
        return None
    try:
        client = redis.Redis.from_url(redis_url, decode_responses=True, socket_timeout=5)
        client.ping()
    except (redis.RedisError, ValueError) as e:
        logger.warning("redis_client_init_failed", error=str(e))
        return None
    logger.info("redis_client_initialized")
    return client


def _provider_http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            settings.api_timeout_seconds, connect=PROVIDER_CONNECT_TIMEOUT_SECONDS
        ),
        limits=httpx.Limits(max_connections=50, max_keepalive_connections=10),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()

    app.state.httpx_client = _provider_http_client(settings)
    app.state.redis_client = redis_client = create_redis_client(settings.redis_url)

    set_rate_limiter(RateLimiter(redis_client, RateLimits.from_settings(settings)))
    counters = DailyCounters(redis_client) if redis_client is not None else None
    if counters is not None:
        events.subscribe(counters)

    logger.info(
        "humanmark_started",
        env=settings.humanmark_env.value,
        enabled=settings.enabled,
        redis=redis_client is not None,
    )
    try:
        yield
    finally:
        if counters is not None:
            events.unsubscribe(counters)
        set_rate_limiter(None)
        await app.state.httpx_client.aclose()
        if redis_client is not None:
            redis_client.close()
        logger.info("humanmark_stopped")


def create_app(host_token_verifier: HostTokenVerifier | None = None) -> FastAPI:
    """Build the API app.

    Args:
        host_token_verifier: Overrides the verifier built from
            HUMANMARK_HOST_TOKEN_SECRET.
    """
    settings = get_settings()
    configure_logging(debug=settings.debug_mode)

    app = FastAPI(
        title="Humanmark",
        description="Human presence verification for forum content",
        version=__version__,
        lifespan=lifespan,
    )
    register_exception_handlers(app)
    app.include_router(create_api_router())

    app.add_middleware(
        ActorMiddleware,
        verifier=host_token_verifier or HostTokenVerifier(settings.host_token_secret),
    )
    app.add_middleware(RequestIDMiddleware)

    return app
