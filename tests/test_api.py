"""HTTP-level tests: rate limit dependency, error mapping and admin routes."""

from __future__ import annotations

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from ratelimited.core.app_factory import create_app
from ratelimited.core.auth import parse_api_keys, validate_api_key
from ratelimited.core.config import AdminSettings, settings
from ratelimited.core.errors import AuthenticationError, ConfigurationError
from ratelimited.core.rate_limit import PER_API_KEY, PER_CLIENT, RateLimitDependency
from ratelimited.engine.gate import RateLimitingEngine
from ratelimited.engine.policies import PolicyResolver
from ratelimited.engine.types import ConfigurationSource, RetryPolicy

ADMIN = {"X-API-Key": "test-admin-key"}


@pytest.fixture
def app(engine: RateLimitingEngine) -> FastAPI:
    app = create_app(engine)

    per_route = RateLimitDependency(interval_millis=1_000, max_requests=2)
    per_client = RateLimitDependency(interval_millis=1_000, max_requests=1, key_expression=PER_CLIENT)
    per_item = RateLimitDependency(interval_millis=1_000, max_requests=1, key_expression="item:{item_id}")
    per_key = RateLimitDependency(interval_millis=1_000, max_requests=1, key_expression=PER_API_KEY)
    dynamic = RateLimitDependency(
        configuration=ConfigurationSource.DYNAMIC,
        interval_millis=1_000,
        max_requests=1,
        name="reports",
    )
    retrying = RateLimitDependency(
        interval_millis=1_000,
        max_requests=1,
        retry=RetryPolicy(max_attempts=3, backoff_millis=400),
    )

    @app.get("/limited", dependencies=[Depends(per_route)])
    async def limited() -> dict:
        return {"ok": True}

    @app.get("/client", dependencies=[Depends(per_client)])
    async def client_scoped() -> dict:
        return {"ok": True}

    @app.get("/items/{item_id}", dependencies=[Depends(per_item)])
    async def item(item_id: str) -> dict:
        return {"item": item_id}

    @app.get("/keyed", dependencies=[Depends(per_key)])
    async def keyed() -> dict:
        return {"ok": True}

    @app.get("/reports", dependencies=[Depends(dynamic)])
    async def reports() -> dict:
        return {"ok": True}

    @app.get("/patient", dependencies=[Depends(retrying)])
    async def patient() -> dict:
        return {"ok": True}

    return app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


class TestRateLimitDependency:
    def test_returns_429_with_headers_when_exhausted(self, client: TestClient) -> None:
        first = client.get("/limited")
        assert first.status_code == 200
        assert first.headers["X-RateLimit-Limit"] == "2"
        assert first.headers["X-RateLimit-Remaining"] == "1"

        assert client.get("/limited").status_code == 200

        blocked = client.get("/limited")
        assert blocked.status_code == 429
        assert blocked.headers["Retry-After"] == "1"
        assert blocked.headers["X-RateLimit-Limit"] == "2"
        assert blocked.headers["X-RateLimit-Remaining"] == "0"
        body = blocked.json()
        assert body["error"]["code"] == "rate_limit_exceeded"
        assert "request_id" in body["error"]

    def test_window_rollover(self, client: TestClient, clock) -> None:
        client.get("/limited")
        client.get("/limited")
        assert client.get("/limited").status_code == 429

        clock.advance(1_000)

        assert client.get("/limited").status_code == 200

    def test_path_params_available_to_key_expression(self, client: TestClient) -> None:
        assert client.get("/items/a").status_code == 200
        assert client.get("/items/b").status_code == 200
        assert client.get("/items/a").status_code == 429

    def test_per_client_key(self, client: TestClient) -> None:
        assert client.get("/client").status_code == 200
        assert client.get("/client").status_code == 429

    def test_per_api_key(self, client: TestClient) -> None:
        assert client.get("/keyed", headers={"X-API-Key": "k1"}).status_code == 200
        assert client.get("/keyed", headers={"X-API-Key": "k2"}).status_code == 200
        assert client.get("/keyed", headers={"X-API-Key": "k1"}).status_code == 429

    def test_raw_key_not_leaked_in_error(self, client: TestClient) -> None:
        client.get("/keyed", headers={"X-API-Key": "super-secret"})
        blocked = client.get("/keyed", headers={"X-API-Key": "super-secret"})

        assert blocked.status_code == 429
        assert "super-secret" not in blocked.text

    def test_retry_admits_after_rollover(self, client: TestClient, clock) -> None:
        assert client.get("/patient").status_code == 200
        assert client.get("/patient").status_code == 200
        assert clock.sleeps == [0.4, 0.4, 0.4]

    def test_dynamic_override_via_admin_api(self, client: TestClient) -> None:
        assert client.get("/reports").status_code == 200
        assert client.get("/reports").status_code == 429

        put = client.put(
            "/v1/policies/reports",
            json={"interval_millis": 1_000, "max_requests": 3},
            headers=ADMIN,
        )
        assert put.status_code == 200

        assert client.get("/reports").status_code == 200
        assert client.get("/reports").status_code == 200
        assert client.get("/reports").status_code == 429

    def test_unset_limits_fail_at_declaration(self) -> None:
        with pytest.raises(ConfigurationError):
            RateLimitDependency(max_requests=-1, interval_millis=1_000)


class TestPolicyRoutes:
    def test_crud(self, client: TestClient) -> None:
        assert client.get("/v1/policies", headers=ADMIN).json() == []
        assert client.get("/v1/policies/a", headers=ADMIN).status_code == 404

        created = client.put(
            "/v1/policies/a", json={"interval_millis": 500, "max_requests": 2}, headers=ADMIN
        )
        assert created.json() == {"identifier": "a", "interval_millis": 500, "max_requests": 2}
        assert client.get("/v1/policies/a", headers=ADMIN).json()["max_requests"] == 2
        assert len(client.get("/v1/policies", headers=ADMIN).json()) == 1

        assert client.delete("/v1/policies/a", headers=ADMIN).status_code == 204
        assert client.delete("/v1/policies/a", headers=ADMIN).status_code == 404

    @pytest.mark.parametrize(
        "payload",
        [
            {"interval_millis": 0, "max_requests": 1},
            {"interval_millis": 1_000, "max_requests": -1},
            {"interval_millis": 1_000},
        ],
    )
    def test_rejects_invalid_override(self, client: TestClient, payload: dict) -> None:
        assert client.put("/v1/policies/a", json=payload, headers=ADMIN).status_code == 422

    def test_external_store_is_read_only(self, limiter) -> None:
        class ExternalStore:
            def lookup(self, identifier):
                return None

        engine = RateLimitingEngine(limiter, policy_resolver=PolicyResolver(ExternalStore()))
        client = TestClient(create_app(engine))

        assert client.get("/v1/policies", headers=ADMIN).status_code == 409


class TestAdminAuthentication:
    def test_write_without_key_is_unauthorized(self, client: TestClient) -> None:
        put = client.put("/v1/policies/reports", json={"interval_millis": 1_000, "max_requests": 99})

        assert put.status_code == 401
        assert client.delete("/v1/policies/reports").status_code == 401
        assert client.get("/v1/policies").status_code == 401
        assert client.get("/v1/policies", headers=ADMIN).json() == []

    def test_wrong_key_is_forbidden(self, client: TestClient) -> None:
        put = client.put(
            "/v1/policies/reports",
            json={"interval_millis": 1_000, "max_requests": 99},
            headers={"X-API-Key": "guess"},
        )

        assert put.status_code == 403

    def test_rejected_write_does_not_relax_enforcement(self, client: TestClient) -> None:
        client.put("/v1/policies/reports", json={"interval_millis": 1_000, "max_requests": 99})

        assert client.get("/reports").status_code == 200
        assert client.get("/reports").status_code == 429

    def test_auth_can_be_disabled(self, client: TestClient, monkeypatch) -> None:
        monkeypatch.setattr(settings.admin, "api_key_required", False)

        assert client.get("/v1/policies").status_code == 200

    def test_validate_api_key_without_configured_keys(self) -> None:
        with pytest.raises(AuthenticationError) as exc_info:
            validate_api_key("anything", AdminSettings(api_keys=""))
        assert exc_info.value.code == "api_keys_not_configured"

    def test_parse_api_keys_trims_entries(self) -> None:
        assert parse_api_keys(" a, b ,,c ") == {"a", "b", "c"}
        assert parse_api_keys(None) == set()


class TestHealthAndCorrelation:
    def test_health_reports_limiter_stats(self, client: TestClient) -> None:
        client.get("/limited")
        body = client.get("/health").json()

        assert body["status"] == "ok"
        assert body["limiter"]["entries"] == 1
        assert body["limiter"]["allowed"] == 1

    def test_preserves_incoming_request_id_header(self, client: TestClient) -> None:
        resp = client.get("/health", headers={"X-Request-ID": "req-123"})

        assert resp.headers["X-Request-ID"] == "req-123"
        assert resp.headers.get("X-Request-Duration-ms") is not None

    def test_generates_request_id_when_missing(self, client: TestClient) -> None:
        resp = client.get("/health")

        assert resp.headers.get("X-Request-ID")
        assert "X-RateLimit-Limit" not in resp.headers


class TestOpenAPI:
    def test_rate_limited_operations_document_429(self, client: TestClient) -> None:
        schema = client.get("/openapi.json").json()

        assert "429" in schema["paths"]["/limited"]["get"]["responses"]
        assert "429" in schema["paths"]["/items/{item_id}"]["get"]["responses"]
        assert "429" not in schema["paths"]["/health"]["get"]["responses"]
        assert "RateLimitError" in schema["components"]["schemas"]

    def test_tags_metadata(self, client: TestClient) -> None:
        tags = {tag["name"] for tag in client.get("/openapi.json").json()["tags"]}

        assert {"Policies", "Health"} <= tags

    def test_admin_operations_require_api_key(self, client: TestClient) -> None:
        schema = client.get("/openapi.json").json()

        assert schema["paths"]["/v1/policies/{identifier}"]["put"]["security"] == [{"ApiKeyAuth": []}]
        assert "security" not in schema["paths"]["/health"]["get"]
        assert "ApiKeyAuth" in schema["components"]["securitySchemes"]
