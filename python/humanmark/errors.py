"""API error definitions.

All errors surfaced outside the core are ApiError instances carrying a stable
ApiErrorCode. The code set is closed: callers branch on `exc.code`, never on
the human-readable message.
"""

from enum import Enum


class ApiErrorCode(str, Enum):
    """Standardized error codes.

    Format: E_CATEGORY_NAME
    """

    # Validation errors (400)
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_CONTEXT_REQUIRED = "E_CONTEXT_REQUIRED"
    E_INVALID_CONTEXT = "E_INVALID_CONTEXT"

    # Authentication errors (401)
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"

    # Verification policy / flow state errors
    E_VERIFICATION_REQUIRED = "E_VERIFICATION_REQUIRED"  # 403
    E_INVALID_RECEIPT = "E_INVALID_RECEIPT"  # 403
    E_FLOW_NOT_FOUND = "E_FLOW_NOT_FOUND"  # 404
    E_CHALLENGE_ALREADY_USED = "E_CHALLENGE_ALREADY_USED"  # 409
    E_FLOW_EXPIRED = "E_FLOW_EXPIRED"  # 410
    E_RATE_LIMITED = "E_RATE_LIMITED"  # 429

    # Provider errors
    E_PROVIDER_MISCONFIGURED = "E_PROVIDER_MISCONFIGURED"  # 500
    E_PROVIDER_REJECTED = "E_PROVIDER_REJECTED"  # 502
    E_PROVIDER_BAD_RESPONSE = "E_PROVIDER_BAD_RESPONSE"  # 502
    E_PROVIDER_UNAVAILABLE = "E_PROVIDER_UNAVAILABLE"  # 503
    E_PROVIDER_RATE_LIMITED = "E_PROVIDER_RATE_LIMITED"  # 503
    E_PROVIDER_TIMEOUT = "E_PROVIDER_TIMEOUT"  # 504

    # Server errors
    E_FLOW_CREATION_FAILED = "E_FLOW_CREATION_FAILED"  # 500
    E_INTERNAL = "E_INTERNAL"  # 500


# Error code to HTTP status mapping
ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.E_INVALID_REQUEST: 400,
    ApiErrorCode.E_CONTEXT_REQUIRED: 400,
    ApiErrorCode.E_INVALID_CONTEXT: 400,
    ApiErrorCode.E_UNAUTHENTICATED: 401,
    ApiErrorCode.E_VERIFICATION_REQUIRED: 403,
    ApiErrorCode.E_INVALID_RECEIPT: 403,
    ApiErrorCode.E_FLOW_NOT_FOUND: 404,
    ApiErrorCode.E_CHALLENGE_ALREADY_USED: 409,
    ApiErrorCode.E_FLOW_EXPIRED: 410,
    ApiErrorCode.E_RATE_LIMITED: 429,
    ApiErrorCode.E_PROVIDER_MISCONFIGURED: 500,
    ApiErrorCode.E_PROVIDER_REJECTED: 502,
    ApiErrorCode.E_PROVIDER_BAD_RESPONSE: 502,
    ApiErrorCode.E_PROVIDER_UNAVAILABLE: 503,
    ApiErrorCode.E_PROVIDER_RATE_LIMITED: 503,
    ApiErrorCode.E_PROVIDER_TIMEOUT: 504,
    ApiErrorCode.E_FLOW_CREATION_FAILED: 500,
    ApiErrorCode.E_INTERNAL: 500,
}

# Failures the user can recover from by waiting or restarting verification
RECOVERABLE_CODES = frozenset(
    {
        ApiErrorCode.E_RATE_LIMITED,
        ApiErrorCode.E_FLOW_EXPIRED,
        ApiErrorCode.E_PROVIDER_RATE_LIMITED,
        ApiErrorCode.E_PROVIDER_UNAVAILABLE,
        ApiErrorCode.E_PROVIDER_TIMEOUT,
    }
)


class ApiError(Exception):
    """Base exception for API errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
        status_code: HTTP status code (derived from code)
        retry_after: Seconds until the caller may retry (rate limits only)
    """

    def __init__(self, code: ApiErrorCode, message: str, retry_after: int | None = None):
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        self.retry_after = retry_after
        super().__init__(message)

    @property
    def recoverable(self) -> bool:
        """Whether waiting or starting a new flow can succeed."""
        return self.code in RECOVERABLE_CODES


class InvalidRequestError(ApiError):
    """Invalid request error."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)


class RateLimitedError(ApiError):
    """Flow creation refused by a rate limit window."""

    def __init__(self, retry_after: int, limit_type: str):
        self.limit_type = limit_type
        super().__init__(
            ApiErrorCode.E_RATE_LIMITED,
            f"Too many verification attempts. Please wait {retry_after} seconds.",
            retry_after=retry_after,
        )
