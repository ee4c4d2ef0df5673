"""FastAPI dependencies for route handlers."""

from fastapi import Request

from humanmark.config import get_settings
from humanmark.db.session import get_db
from humanmark.services.challenge_client import ChallengeClient

__all__ = ["get_db", "get_challenge_client", "get_redis_client", "get_client_ip"]


def get_challenge_client(request: Request) -> ChallengeClient:
    """Provider client over the app's shared httpx.AsyncClient."""
    return ChallengeClient(request.app.state.httpx_client, get_settings())


def get_redis_client(request: Request):
    """Shared Redis client, or None when Redis is not configured or unreachable."""
    return getattr(request.app.state, "redis_client", None)


def get_client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None
