"""Redaction and log guard utilities.

Never-log policy:
- Receipts (signed tokens)
- Flow tokens handed to the browser
- Provider API key / secret
- Host actor tokens
- Full challenge identifiers (log an 8-character prefix instead)

Allowed (with suffix):
- _prefix: leading characters of an identifier
- _sha256, _hash: digest of a value
- _length, _chars: length of a value
"""

import os

FORBIDDEN_KEYS = frozenset(
    {
        "receipt",
        "token",
        "challenge",
        "api_key",
        "api_secret",
        "secret",
        "bearer",
        "password",
    }
)

REDACTED_SUFFIXES = ("_prefix", "_sha256", "_hash", "_length", "_chars")

CHALLENGE_PREFIX_CHARS = 8


def challenge_prefix(challenge: str | None) -> str:
    """Return the loggable prefix of a challenge identifier."""
    if not challenge:
        return ""
    return challenge[:CHALLENGE_PREFIX_CHARS] + "..."


def _has_redacted_suffix(key: str) -> bool:
    """Check if key ends with a recognized redacted suffix."""
    return any(key.endswith(suffix) for suffix in REDACTED_SUFFIXES)


def safe_kv(*, _env: str | None = None, **kwargs) -> dict:
    """Validate that no forbidden keys are present unless already redacted.

    Raises ValueError in local/test environments if a forbidden key is used
    without a redacted suffix. In staging/prod, logs a warning instead.

    Usage:
        logger.info("flow_completed", **safe_kv(
            flow_id=flow.id,
            challenge_prefix=challenge_prefix(flow.challenge),  # OK: _prefix suffix
            # receipt=receipt,                                  # BLOCKED
        ))
    """
    violations = [
        key for key in kwargs if key in FORBIDDEN_KEYS and not _has_redacted_suffix(key)
    ]

    if violations:
        msg = f"Forbidden log keys without redacted suffix: {violations}"
        env = _env or os.environ.get("HUMANMARK_ENV", "local")
        if env in ("local", "test"):
            raise ValueError(msg)
        else:
            import structlog

            _logger = structlog.get_logger("humanmark.services.redact")
            _logger.warning("safe_kv_violation", forbidden_keys=violations)

    return kwargs
