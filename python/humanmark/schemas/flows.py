"""Flow and verification Pydantic schemas.

Context is accepted as a free string and validated by parse_context so a
missing or unknown value maps to its own error code rather than the generic
request validation error.
"""

from pydantic import BaseModel, ConfigDict

from humanmark.db.models import FlowContext
from humanmark.errors import ApiErrorCode, InvalidRequestError

VALID_CONTEXTS = {c.value for c in FlowContext}


def parse_context(value: str | None) -> FlowContext:
    """Validate a request context.

    Raises:
        InvalidRequestError(E_CONTEXT_REQUIRED): If missing or blank.
        InvalidRequestError(E_INVALID_CONTEXT): If not post, topic or message.
    """
    if value is None or not value.strip():
        raise InvalidRequestError(ApiErrorCode.E_CONTEXT_REQUIRED, "Context is required")
    value = value.strip()
    if value not in VALID_CONTEXTS:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_CONTEXT,
            "Context must be one of: message, post, topic",
        )
    return FlowContext(value)


# =============================================================================
# Requests
# =============================================================================


class FlowCreateRequest(BaseModel):
    context: str | None = None

    model_config = ConfigDict(extra="ignore")


class VerificationRequest(BaseModel):
    """Content-creation hook over HTTP."""

    context: str | None = None
    receipt: str | None = None

    model_config = ConfigDict(extra="ignore")


# =============================================================================
# Responses
# =============================================================================


class FlowCreateOut(BaseModel):
    """Either {"required": false} or the challenge to present to the user."""

    required: bool
    token: str | None = None
    challenge: str | None = None


class VerificationOut(BaseModel):
    verified: bool
    required: bool
    flow_id: int | None = None
