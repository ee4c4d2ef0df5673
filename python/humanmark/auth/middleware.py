"""Actor resolution middleware for FastAPI.

Provides:
- Actor: the acting forum user as seen by the policy engine
- ActorMiddleware: resolves the optional host actor token
- get_actor: Dependency returning the Actor, or None for anonymous requests

No Authorization header means an anonymous actor. A header that is present
but malformed or fails verification is rejected with 401.
"""

from dataclasses import dataclass

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from humanmark.auth.tokens import HostTokenVerifier
from humanmark.errors import ApiError, ApiErrorCode
from humanmark.logging import get_logger, set_user_context
from humanmark.responses import error_response

logger = get_logger(__name__)

AUTHORIZATION_HEADER = "authorization"

# Paths that never resolve an actor
PUBLIC_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}


@dataclass(frozen=True)
class Actor:
    """Authenticated forum user.

    Attributes:
        id: Forum user id.
        trust_level: Forum trust level (0-4).
        is_staff: Whether the user is staff (admin or moderator).
    """

    id: int
    trust_level: int = 0
    is_staff: bool = False


class ActorMiddleware(BaseHTTPMiddleware):
    """Attach request.state.actor (Actor or None) to every request."""

    def __init__(self, app: ASGIApp, verifier: HostTokenVerifier):
        super().__init__(app)
        self.verifier = verifier

    async def dispatch(self, request: Request, call_next) -> JSONResponse:
        request.state.actor = None

        if request.url.path in PUBLIC_PATHS:
            return await call_next(request)

        auth_header = request.headers.get(AUTHORIZATION_HEADER)
        if not auth_header:
            return await call_next(request)

        if not auth_header.lower().startswith("bearer "):
            logger.warning("auth_failure", reason="invalid_header_format")
            return self._error_json_response(
                ApiErrorCode.E_UNAUTHENTICATED, "Invalid authorization header format"
            )

        token = auth_header[7:].strip()
        if not token:
            logger.warning("auth_failure", reason="empty_token")
            return self._error_json_response(
                ApiErrorCode.E_UNAUTHENTICATED, "Invalid authorization header format"
            )

        try:
            claims = self.verifier.verify(token)
        except ApiError as e:
            return self._error_json_response(e.code, e.message)

        actor = Actor(
            id=claims["sub"],
            trust_level=claims["trust_level"],
            is_staff=claims["staff"],
        )
        request.state.actor = actor
        set_user_context(str(actor.id))

        return await call_next(request)

    @staticmethod
    def _error_json_response(code: ApiErrorCode, message: str) -> JSONResponse:
        return JSONResponse(status_code=401, content=error_response(code, message))


def get_actor(request: Request) -> Actor | None:
    """FastAPI dependency: the resolved actor, None when anonymous."""
    return getattr(request.state, "actor", None)
