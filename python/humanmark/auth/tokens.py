"""Host actor tokens.

The host forum identifies the acting user with a short-lived HS256 JWT
signed with HUMANMARK_HOST_TOKEN_SECRET:
- sub: forum user id (string or integer)
- trust_level: 0-4
- staff: bool
- exp: required
"""

import time

import jwt

from humanmark.errors import ApiError, ApiErrorCode
from humanmark.logging import get_logger

logger = get_logger(__name__)

HOST_TOKEN_ALGORITHMS = ["HS256"]
HOST_TOKEN_TTL_SECONDS = 300


class HostTokenVerifier:
    """Verify actor tokens forwarded by the host forum."""

    def __init__(self, secret: str | None):
        self._secret = secret

    def verify(self, token: str) -> dict:
        """Return validated claims.

        Raises:
            ApiError(E_UNAUTHENTICATED): On any verification failure.
        """
        if not self._secret:
            logger.error("host_token_secret_missing")
            raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Actor tokens are not accepted")

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=HOST_TOKEN_ALGORITHMS,
                options={"require": ["exp", "sub"], "verify_sub": False},
            )
        except jwt.InvalidTokenError as e:
            logger.warning("host_token_invalid", error_type=type(e).__name__)
            raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid actor token") from e

        try:
            payload["sub"] = int(payload["sub"])
            payload["trust_level"] = int(payload.get("trust_level", 0))
        except (TypeError, ValueError) as e:
            logger.warning("host_token_invalid", error_type="InvalidClaims")
            raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid actor token") from e
        payload["staff"] = payload.get("staff") is True

        return payload


def mint_host_token(
    secret: str,
    user_id: int,
    *,
    trust_level: int = 0,
    staff: bool = False,
    ttl_seconds: int = HOST_TOKEN_TTL_SECONDS,
) -> str:
    """Mint an actor token. Used by host integrations and tests."""
    now = int(time.time())
    payload = {
        "sub": str(user_id),
        "trust_level": trust_level,
        "staff": staff,
        "iat": now,
        "exp": now + ttl_seconds,
    }
    return jwt.encode(payload, secret, algorithm="HS256")
