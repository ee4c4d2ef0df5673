"""Challenge provider client.

Endpoint: POST {HUMANMARK_API_URL}/api/v1/challenge/create
Headers: hm-api-key, hm-api-secret, Content-Type/Accept: application/json
Request body: {"domain": "<forum domain>"}
Response (200/201): {"challenge": "...", "token": "..."}

Status handling:
- 200/201 with both fields    -> ChallengeIssued
- 200/201 empty/bad JSON/missing fields -> BAD_RESPONSE
- 400, 422                    -> REJECTED (provider's error text)
- 401, 403                    -> UNAUTHORIZED (credentials)
- 429                         -> RATE_LIMITED (Retry-After)
- 5xx and anything else       -> UNAVAILABLE
- httpx timeout               -> TIMEOUT
- other transport errors      -> UNAVAILABLE

No retries here; a failed create is retried by the user starting over.
"""

from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlparse

import httpx

from humanmark.config import Settings
from humanmark.errors import ApiError, ApiErrorCode
from humanmark.logging import get_logger

logger = get_logger(__name__)

CHALLENGE_CREATE_PATH = "/api/v1/challenge/create"
USER_AGENT = "humanmark-forum/1.0"
CONNECT_TIMEOUT_SECONDS = 10.0


class ProviderErrorClass(str, Enum):
    """Normalized provider failure classes."""

    MISCONFIGURED = "misconfigured"
    UNAUTHORIZED = "unauthorized"
    REJECTED = "rejected"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    BAD_RESPONSE = "bad_response"


# Bad credentials surface as a configuration problem
PROVIDER_ERROR_TO_CODE: dict[ProviderErrorClass, ApiErrorCode] = {
    ProviderErrorClass.MISCONFIGURED: ApiErrorCode.E_PROVIDER_MISCONFIGURED,
    ProviderErrorClass.UNAUTHORIZED: ApiErrorCode.E_PROVIDER_MISCONFIGURED,
    ProviderErrorClass.REJECTED: ApiErrorCode.E_PROVIDER_REJECTED,
    ProviderErrorClass.RATE_LIMITED: ApiErrorCode.E_PROVIDER_RATE_LIMITED,
    ProviderErrorClass.UNAVAILABLE: ApiErrorCode.E_PROVIDER_UNAVAILABLE,
    ProviderErrorClass.TIMEOUT: ApiErrorCode.E_PROVIDER_TIMEOUT,
    ProviderErrorClass.BAD_RESPONSE: ApiErrorCode.E_PROVIDER_BAD_RESPONSE,
}


class ChallengeProviderError(Exception):
    """Provider call failed.

    Attributes:
        error_class: The normalized error classification
        message: Human-readable error message
        status_code: Provider HTTP status (if a response was received)
        retry_after: Seconds from the provider's Retry-After header (429 only)
    """

    def __init__(
        self,
        error_class: ProviderErrorClass,
        message: str,
        status_code: int | None = None,
        retry_after: int | None = None,
    ):
        self.error_class = error_class
        self.message = message
        self.status_code = status_code
        self.retry_after = retry_after
        super().__init__(message)

    def to_api_error(self) -> ApiError:
        return ApiError(PROVIDER_ERROR_TO_CODE[self.error_class], self.message, self.retry_after)


@dataclass(frozen=True)
class ChallengeIssued:
    challenge: str
    token: str


def _parse_retry_after(value: str | None) -> int | None:
    if not value:
        return None
    try:
        return max(0, int(value))
    except ValueError:
        return None


def _error_text(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return "Verification request was rejected"
    if isinstance(data, dict):
        text = data.get("error") or data.get("message")
        if isinstance(text, str) and text:
            return text
    return "Verification request was rejected"


class ChallengeClient:
    """Async client for the provider's challenge API.

    The httpx.AsyncClient is shared and owned by the app lifespan.
    """

    def __init__(self, http_client: httpx.AsyncClient, settings: Settings):
        self._client = http_client
        self._settings = settings

    def _validate_config(self) -> str:
        """Return the endpoint URL or raise MISCONFIGURED."""
        if not self._settings.api_key:
            raise ChallengeProviderError(
                ProviderErrorClass.MISCONFIGURED, "HUMANMARK_API_KEY is not configured"
            )
        if not self._settings.api_secret:
            raise ChallengeProviderError(
                ProviderErrorClass.MISCONFIGURED, "HUMANMARK_API_SECRET is not configured"
            )

        url = self._settings.api_url.rstrip("/") + CHALLENGE_CREATE_PATH
        parsed = urlparse(url)
        if parsed.scheme != "https" or not parsed.hostname:
            raise ChallengeProviderError(
                ProviderErrorClass.MISCONFIGURED,
                "HUMANMARK_API_URL must be an https URL with a host",
            )
        return url

    def _build_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "hm-api-key": self._settings.api_key or "",
            "hm-api-secret": self._settings.api_secret or "",
            "User-Agent": USER_AGENT,
        }

    async def create_challenge(self) -> ChallengeIssued:
        """Request a new challenge/token pair.

        Raises:
            ChallengeProviderError: On configuration, transport or response failure.
        """
        url = self._validate_config()
        timeout_s = self._settings.api_timeout_seconds

        try:
            response = await self._client.post(
                url,
                headers=self._build_headers(),
                json={"domain": self._settings.effective_domain},
                timeout=httpx.Timeout(timeout_s, connect=min(CONNECT_TIMEOUT_SECONDS, timeout_s)),
            )
        except httpx.TimeoutException as e:
            logger.error("provider_timeout", timeout_seconds=timeout_s)
            raise ChallengeProviderError(
                ProviderErrorClass.TIMEOUT, "Verification service timed out"
            ) from e
        except httpx.HTTPError as e:
            logger.error("provider_transport_error", error_type=type(e).__name__, error=str(e))
            raise ChallengeProviderError(
                ProviderErrorClass.UNAVAILABLE, "Verification service is unavailable"
            ) from e

        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> ChallengeIssued:
        status = response.status_code

        if status in (200, 201):
            return self._parse_success(response)

        if status in (400, 422):
            message = _error_text(response)
            logger.warning("provider_rejected", status_code=status, error=message)
            raise ChallengeProviderError(ProviderErrorClass.REJECTED, message, status_code=status)

        if status in (401, 403):
            logger.error("provider_unauthorized", status_code=status)
            raise ChallengeProviderError(
                ProviderErrorClass.UNAUTHORIZED,
                "Verification service rejected the configured credentials",
                status_code=status,
            )

        if status == 429:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            logger.warning("provider_rate_limited", retry_after_seconds=retry_after)
            raise ChallengeProviderError(
                ProviderErrorClass.RATE_LIMITED,
                "Verification service is busy. Please try again shortly.",
                status_code=status,
                retry_after=retry_after,
            )

        if 500 <= status <= 599:
            logger.error("provider_server_error", status_code=status)
        else:
            logger.error("provider_unexpected_status", status_code=status)
        raise ChallengeProviderError(
            ProviderErrorClass.UNAVAILABLE,
            "Verification service is unavailable",
            status_code=status,
        )

    def _parse_success(self, response: httpx.Response) -> ChallengeIssued:
        try:
            data = response.json()
        except ValueError as e:
            logger.error("provider_invalid_json", status_code=response.status_code)
            raise ChallengeProviderError(
                ProviderErrorClass.BAD_RESPONSE,
                "Invalid response from verification service",
                status_code=response.status_code,
            ) from e

        if not isinstance(data, dict):
            data = {}
        challenge = data.get("challenge")
        token = data.get("token")
        if not (isinstance(challenge, str) and challenge and isinstance(token, str) and token):
            logger.error("provider_missing_fields", status_code=response.status_code)
            raise ChallengeProviderError(
                ProviderErrorClass.BAD_RESPONSE,
                "Invalid response from verification service",
                status_code=response.status_code,
            )

        if self._settings.debug_mode:
            logger.debug("provider_challenge_issued", status_code=response.status_code)
        return ChallengeIssued(challenge=challenge, token=token)
