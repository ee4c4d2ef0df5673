"""Test helpers.

Provides:
- Settings construction with test defaults
- Receipt minting (including integer-subject receipts PyJWT will not encode)
- Actor token headers
- An in-memory Redis double covering the commands humanmark uses
- Alembic configuration bound to an open connection
"""

import base64
import fnmatch
import hashlib
import hmac
import json
import os
import time
from pathlib import Path
from typing import Any

import jwt
from alembic.config import Config

from humanmark.auth.tokens import mint_host_token
from humanmark.config import Settings

RECEIPT_SECRET = "test-provider-secret-0123456789abcdef0123"
HOST_SECRET = "test-host-token-secret-0123456789abcdef01"

ALEMBIC_INI = Path(__file__).resolve().parents[2] / "migrations" / "alembic.ini"


def get_test_database_url() -> str:
    return os.environ["DATABASE_URL"]


def make_settings(database_url: str = "sqlite://", **overrides: Any) -> Settings:
    """Enabled, fully configured settings unless overridden."""
    values: dict[str, Any] = {
        "humanmark_env": "test",
        "database_url": database_url,
        "enabled": True,
        "api_url": "https://provider.test",
        "api_key": "test-api-key",
        "api_secret": RECEIPT_SECRET,
        "domain": "forum.test",
        "host_token_secret": HOST_SECRET,
    }
    values.update(overrides)
    return Settings(**values)


def mint_receipt(
    challenge: str,
    secret: str = RECEIPT_SECRET,
    *,
    iat: int | None = None,
    expires_in: int | None = 300,
    algorithm: str = "HS256",
    **extra_claims: Any,
) -> str:
    now = int(time.time())
    payload: dict[str, Any] = {"sub": challenge, "iat": now if iat is None else iat}
    if expires_in is not None:
        payload["exp"] = now + expires_in
    payload.update(extra_claims)
    return jwt.encode(payload, secret, algorithm=algorithm)


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def encode_hs256_raw(payload: dict[str, Any], secret: str = RECEIPT_SECRET) -> str:
    """HS256 JWT built by hand, for claim shapes the encoder rejects."""
    header = _b64url(json.dumps({"alg": "HS256", "typ": "JWT"}).encode())
    body = _b64url(json.dumps(payload).encode())
    signing_input = f"{header}.{body}".encode("ascii")
    signature = hmac.new(secret.encode(), signing_input, hashlib.sha256).digest()
    return f"{header}.{body}.{_b64url(signature)}"


def actor_headers(user_id: int, *, trust_level: int = 0, staff: bool = False) -> dict[str, str]:
    token = mint_host_token(HOST_SECRET, user_id, trust_level=trust_level, staff=staff)
    return {"Authorization": f"Bearer {token}"}


class _Pipeline:
    def __init__(self, redis: "InMemoryRedis"):
        self._redis = redis
        self._calls: list[tuple[str, tuple, dict]] = []

    def __getattr__(self, name: str):
        def queue(*args, **kwargs):
            self._calls.append((name, args, kwargs))
            return self

        return queue

    def execute(self) -> list:
        results = [
            getattr(self._redis, name)(*args, **kwargs) for name, args, kwargs in self._calls
        ]
        self._calls = []
        return results


class _Lock:
    def __init__(self, redis: "InMemoryRedis", name: str, timeout: int):
        self._redis = redis
        self._name = name
        self._timeout = timeout

    def acquire(self) -> bool:
        return bool(self._redis.set(self._name, "1", ex=self._timeout, nx=True))

    def release(self) -> None:
        self._redis.delete(self._name)


class InMemoryRedis:
    """Single-process stand-in for the redis-py client in unit tests."""

    def __init__(self):
        self.data: dict[str, Any] = {}
        self.expiry: dict[str, float] = {}

    def _purge(self, key: str) -> None:
        deadline = self.expiry.get(key)
        if deadline is not None and deadline <= time.monotonic():
            self.data.pop(key, None)
            self.expiry.pop(key, None)

    def pipeline(self, transaction: bool = True) -> _Pipeline:
        return _Pipeline(self)

    def set(self, key: str, value: Any, ex: int | None = None, nx: bool = False):
        self._purge(key)
        if nx and key in self.data:
            return None
        self.data[key] = value
        if ex is not None:
            self.expiry[key] = time.monotonic() + ex
        return True

    def get(self, key: str):
        self._purge(key)
        value = self.data.get(key)
        return None if value is None else str(value)

    def mget(self, keys: list[str]) -> list:
        return [self.get(k) for k in keys]

    def incr(self, key: str) -> int:
        self._purge(key)
        self.data[key] = int(self.data.get(key, 0)) + 1
        return self.data[key]

    def ttl(self, key: str) -> int:
        self._purge(key)
        if key not in self.data:
            return -2
        deadline = self.expiry.get(key)
        if deadline is None:
            return -1
        return max(0, int(round(deadline - time.monotonic())))

    def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.expiry.pop(key, None)
        return removed

    def scan_iter(self, match: str = "*"):
        return [k for k in list(self.data) if fnmatch.fnmatchcase(k, match)]

    def lock(self, name: str, timeout: int = 10, blocking_timeout: float | None = None) -> _Lock:
        return _Lock(self, name, timeout)


def alembic_config(connection) -> Config:
    """Alembic config whose migrations run inside `connection`'s transaction."""
    config = Config(str(ALEMBIC_INI))
    config.attributes["connection"] = connection
    return config
