"""HTTP-level tests for the flow and verification endpoints.

The provider client and database session are replaced through FastAPI
dependency overrides; everything else runs as in production.
"""

from unittest.mock import AsyncMock, MagicMock
from uuid import UUID

import pytest
from fastapi.testclient import TestClient

from humanmark.api.deps import get_challenge_client, get_db
from humanmark.app import create_app
from humanmark.config import clear_settings_cache
from humanmark.services import flows
from humanmark.services.challenge_client import (
    ChallengeIssued,
    ChallengeProviderError,
    ProviderErrorClass,
)
from humanmark.services.rate_limit import RateLimiter, RateLimits, set_rate_limiter
from tests.helpers import HOST_SECRET, RECEIPT_SECRET, actor_headers, mint_receipt


@pytest.fixture
def api_env(monkeypatch):
    monkeypatch.setenv("HUMANMARK_ENABLED", "true")
    monkeypatch.setenv("HUMANMARK_API_URL", "https://provider.test")
    monkeypatch.setenv("HUMANMARK_API_KEY", "test-api-key")
    monkeypatch.setenv("HUMANMARK_API_SECRET", RECEIPT_SECRET)
    monkeypatch.setenv("HUMANMARK_HOST_TOKEN_SECRET", HOST_SECRET)
    monkeypatch.delenv("REDIS_URL", raising=False)
    monkeypatch.delenv("HUMANMARK_DEBUG_MODE", raising=False)
    clear_settings_cache()


@pytest.fixture
def provider():
    client = MagicMock()
    client.create_challenge = AsyncMock(
        return_value=ChallengeIssued(challenge="ch-http", token="tok-http")
    )
    return client


@pytest.fixture
def client(api_env, session_factory, provider):
    app = create_app()

    def override_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_challenge_client] = lambda: provider

    with TestClient(app) as test_client:
        yield test_client


class TestCreateFlowEndpoint:
    def test_anonymous_gets_challenge(self, client):
        response = client.post("/humanmark/flows", json={"context": "post"})

        assert response.status_code == 200
        assert response.json() == {
            "data": {"required": True, "token": "tok-http", "challenge": "ch-http"}
        }

    def test_flow_bound_to_actor(self, client, session_factory):
        client.post("/humanmark/flows", json={"context": "topic"}, headers=actor_headers(42))

        db = session_factory()
        try:
            flow = flows.find_by_challenge(db, "ch-http")
            assert flow.user_id == 42
            assert flow.context == "topic"
        finally:
            db.close()

    def test_trusted_actor_not_required(self, client, provider):
        response = client.post(
            "/humanmark/flows",
            json={"context": "post"},
            headers=actor_headers(7, trust_level=4),
        )

        assert response.status_code == 200
        assert response.json() == {"data": {"required": False}}
        provider.create_challenge.assert_not_called()

    @pytest.mark.parametrize("body", [None, {}, {"context": ""}, {"context": "  "}])
    def test_context_required(self, client, body):
        response = client.post("/humanmark/flows", json=body)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_CONTEXT_REQUIRED"

    def test_invalid_context(self, client):
        response = client.post("/humanmark/flows", json={"context": "wiki"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_INVALID_CONTEXT"

    def test_malformed_json(self, client):
        response = client.post(
            "/humanmark/flows",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_INVALID_REQUEST"

    def test_rate_limited_response(self, client, fake_redis):
        set_rate_limiter(RateLimiter(fake_redis, RateLimits(per_ip_minute=1)))

        assert client.post("/humanmark/flows", json={"context": "post"}).status_code == 200
        response = client.post("/humanmark/flows", json={"context": "post"})

        assert response.status_code == 429
        error = response.json()["error"]
        assert error["code"] == "E_RATE_LIMITED"
        assert 0 < error["retry_after_seconds"] <= 60
        assert response.headers["Retry-After"] == str(error["retry_after_seconds"])

    def test_provider_failure_maps_to_status(self, client, provider):
        provider.create_challenge.side_effect = ChallengeProviderError(
            ProviderErrorClass.TIMEOUT, "Verification service timed out"
        )

        response = client.post("/humanmark/flows", json={"context": "post"})

        assert response.status_code == 504
        assert response.json()["error"]["code"] == "E_PROVIDER_TIMEOUT"


class TestVerificationEndpoint:
    def test_receipt_required(self, client):
        response = client.post(
            "/humanmark/verifications",
            json={"context": "post"},
            headers=actor_headers(9),
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "E_VERIFICATION_REQUIRED"

    def test_full_round_trip(self, client):
        headers = actor_headers(9)
        created = client.post("/humanmark/flows", json={"context": "post"}, headers=headers)
        challenge = created.json()["data"]["challenge"]
        receipt = mint_receipt(challenge)

        first = client.post(
            "/humanmark/verifications",
            json={"context": "post", "receipt": receipt},
            headers=headers,
        )
        assert first.status_code == 200
        assert first.json()["data"]["verified"] is True
        assert first.json()["data"]["required"] is True

        # Within the reverify window the next action needs no receipt
        second = client.post(
            "/humanmark/verifications", json={"context": "post"}, headers=headers
        )
        assert second.json()["data"] == {"verified": True, "required": False}

    def test_reused_receipt_conflicts(self, client):
        client.post("/humanmark/flows", json={"context": "message"})
        receipt = mint_receipt("ch-http")
        body = {"context": "message", "receipt": receipt}

        assert client.post("/humanmark/verifications", json=body).status_code == 200
        response = client.post("/humanmark/verifications", json=body)

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "E_CHALLENGE_ALREADY_USED"

    def test_bad_receipt(self, client):
        response = client.post(
            "/humanmark/verifications",
            json={"context": "post", "receipt": "garbage"},
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "E_INVALID_RECEIPT"


class TestActorTokens:
    def test_invalid_token_rejected(self, client):
        response = client.post(
            "/humanmark/flows",
            json={"context": "post"},
            headers={"Authorization": "Bearer not-a-token"},
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "E_UNAUTHENTICATED"
        assert "X-Request-ID" in response.headers

    def test_non_bearer_header_rejected(self, client):
        response = client.post(
            "/humanmark/flows",
            json={"context": "post"},
            headers={"Authorization": "Basic abc"},
        )

        assert response.status_code == 401


class TestHealthAndRequestId:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"data": {"status": "ok", "enabled": True}}

    def test_request_id_generated(self, client):
        response = client.get("/health")

        UUID(response.headers["X-Request-ID"])

    def test_request_id_preserved(self, client):
        response = client.get("/health", headers={"X-Request-ID": "abc_def-123"})

        assert response.headers["X-Request-ID"] == "abc_def-123"

    def test_uuid_request_id_lowercased(self, client):
        upper = "550E8400-E29B-41D4-A716-446655440000"
        response = client.get("/health", headers={"X-Request-ID": upper})

        assert response.headers["X-Request-ID"] == upper.lower()

    @pytest.mark.parametrize("incoming", ["has space", "semi;colon", "x" * 129])
    def test_invalid_request_id_replaced(self, client, incoming):
        response = client.get("/health", headers={"X-Request-ID": incoming})

        UUID(response.headers["X-Request-ID"])

    def test_request_id_in_error_body(self, client):
        response = client.post(
            "/humanmark/flows", json={"context": "wiki"}, headers={"X-Request-ID": "req-42"}
        )

        assert response.json()["error"]["request_id"] == "req-42"
