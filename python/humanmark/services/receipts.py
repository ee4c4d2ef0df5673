"""Receipt verifier.

A receipt is an HS256 JWT signed by the provider with the shared API secret.
Its `sub` claim is the challenge of the flow it completes.

- Algorithm is an explicit allow-list; the token header is never trusted.
- exp / nbf / iat are verified with CLOCK_SKEW_SECONDS leeway.
- Every failure raises the same InvalidReceiptError; the specific reason is
  only logged.
"""

import time
from dataclasses import dataclass
from typing import Any

import jwt

from humanmark.logging import get_logger

logger = get_logger(__name__)

RECEIPT_ALGORITHMS = ["HS256"]
CLOCK_SKEW_SECONDS = 60


class InvalidReceiptError(Exception):
    """Receipt failed verification. Deliberately carries no detail."""

    def __init__(self) -> None:
        super().__init__("Invalid receipt")


@dataclass(frozen=True)
class VerifiedReceipt:
    challenge: str
    claims: dict[str, Any]


def _reject(reason: str, **fields: Any) -> InvalidReceiptError:
    logger.warning("receipt_rejected", reason=reason, **fields)
    return InvalidReceiptError()


def verify_receipt(receipt: str | None, secret: str | None) -> VerifiedReceipt:
    """Verify a receipt and extract its challenge.

    Args:
        receipt: The encoded JWT as received from the browser.
        secret: Provider API secret used to sign receipts.

    Returns:
        VerifiedReceipt with the challenge (always a string) and all claims.

    Raises:
        InvalidReceiptError: On any failure.
    """
    if not receipt:
        raise _reject("blank_receipt")
    if not secret:
        raise _reject("blank_secret")

    try:
        claims = jwt.decode(
            receipt,
            secret,
            algorithms=RECEIPT_ALGORITHMS,
            leeway=CLOCK_SKEW_SECONDS,
            # sub is checked below so integer subjects are accepted
            options={"verify_sub": False},
        )
    except jwt.ExpiredSignatureError as e:
        raise _reject("expired") from e
    except jwt.ImmatureSignatureError as e:
        raise _reject("not_yet_valid") from e
    except jwt.InvalidSignatureError as e:
        raise _reject("bad_signature") from e
    except jwt.InvalidAlgorithmError as e:
        raise _reject("algorithm_not_allowed") from e
    except jwt.InvalidTokenError as e:
        raise _reject("malformed", error_type=type(e).__name__) from e

    iat = claims.get("iat")
    if iat is not None:
        if not isinstance(iat, int | float) or isinstance(iat, bool):
            raise _reject("invalid_iat")
        if iat > time.time() + CLOCK_SKEW_SECONDS:
            raise _reject("issued_in_future")

    subject = claims.get("sub")
    if subject is None or isinstance(subject, bool) or not isinstance(subject, str | int):
        raise _reject("missing_subject")
    challenge = str(subject).strip()
    if not challenge:
        raise _reject("missing_subject")

    return VerifiedReceipt(challenge=challenge, claims=claims)
