"""Tests for global exception handlers.

Validates that engine errors map to consistent HTTP status codes, error
format and rate limit headers, with no information leakage.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from ratelimited.core.errors import (
    AppError,
    AuthenticationError,
    ConfigurationError,
    ExternalLookupError,
    KeyResolutionError,
    RateLimitCancelledError,
    RateLimitExceededError,
)
from ratelimited.core.exception_handlers import general_exception_handler, setup_exception_handlers


@pytest.fixture
def app_with_handlers() -> FastAPI:
    """Create FastAPI app with exception handlers registered."""
    app = FastAPI()
    setup_exception_handlers(app)
    return app


@pytest.fixture
def client(app_with_handlers: FastAPI) -> TestClient:
    """Create test client with handlers enabled."""
    return TestClient(app_with_handlers, raise_server_exceptions=False)


class TestAppErrorHandler:
    """Test handler for AppError and subclasses."""

    def test_rate_limit_exceeded_returns_429_with_headers(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify RateLimitExceededError returns HTTP 429 and advertises the wait."""
        @app_with_handlers.get("/test-exceeded")
        async def test_endpoint():
            raise RateLimitExceededError(
                code="rate_limit_exceeded",
                message="Rate limit exceeded",
                details={"limit": 5, "remaining": 0, "retry_after_millis": 1_500},
            )

        response = client.get("/test-exceeded")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "2"
        assert response.headers["X-RateLimit-Limit"] == "5"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert response.headers["X-RateLimit-Reset"] == "2"
        data = response.json()
        assert data["error"]["code"] == "rate_limit_exceeded"
        assert data["error"]["details"]["limit"] == 5

    def test_cancelled_wait_returns_503(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify RateLimitCancelledError returns HTTP 503."""
        @app_with_handlers.get("/test-cancelled")
        async def test_endpoint():
            raise RateLimitCancelledError(code="rate_limit_wait_cancelled", message="Wait cancelled")

        response = client.get("/test-cancelled")

        assert response.status_code == 503
        assert "Retry-After" not in response.headers
        assert response.json()["error"]["code"] == "rate_limit_wait_cancelled"

    @pytest.mark.parametrize("error_cls", [ConfigurationError, ExternalLookupError])
    def test_server_side_errors_return_500(self, client: TestClient, app_with_handlers: FastAPI, error_cls):
        """Verify misconfiguration and store failures return HTTP 500."""
        @app_with_handlers.get("/test-server-side")
        async def test_endpoint():
            raise error_cls(code="interval_not_set", message="Interval must be set")

        response = client.get("/test-server-side")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "interval_not_set"

    def test_authentication_error_returns_403(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify AuthenticationError returns HTTP 403 Forbidden."""
        @app_with_handlers.get("/test-auth")
        async def test_endpoint():
            raise AuthenticationError(code="invalid_api_key", message="Invalid API key")

        response = client.get("/test-auth")

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "invalid_api_key"

    def test_key_resolution_error_returns_400(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify KeyResolutionError falls back to HTTP 400."""
        @app_with_handlers.get("/test-key")
        async def test_endpoint():
            raise KeyResolutionError(code="key_expression_failed", message="Key expression failed")

        response = client.get("/test-key")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "key_expression_failed"

    def test_error_response_format_is_consistent(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify error responses have consistent JSON structure."""
        @app_with_handlers.get("/test-format")
        async def test_endpoint():
            raise ConfigurationError(code="test", message="test")

        response = client.get("/test-format")
        data = response.json()

        # Required fields always present
        assert "error" in data
        assert "code" in data["error"]
        assert "message" in data["error"]
        assert "request_id" in data["error"]
        assert "details" not in data["error"]


class TestGeneralExceptionHandler:
    """Test fallback handler for unexpected exceptions."""

    def test_unexpected_exception_returns_500(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/test-unexpected")
        async def test_endpoint():
            raise RuntimeError("store connection failed")

        response = client.get("/test-unexpected")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "internal_server_error"
        assert "store connection" not in response.text

    def test_general_exception_handler_never_leaks_stack_trace(self):
        """Verify stack traces are never included in response."""
        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        exc = ValueError("Test error with details")
        response = asyncio.run(general_exception_handler(request, exc))

        response_body = response.body if isinstance(response.body, bytes) else bytes(response.body)
        response_text = response_body.decode()
        data = json.loads(response_text)
        assert response.status_code == 500
        assert "request_id" in data["error"]
        # No traceback indicators
        assert "Traceback" not in response_text
        assert "File \"" not in response_text
        assert "ValueError" not in response_text


class TestErrorHandlerIntegration:
    """Integration tests for exception handler setup."""

    def test_setup_exception_handlers_registers_handlers(self, app_with_handlers: FastAPI):
        assert AppError in app_with_handlers.exception_handlers
        assert Exception in app_with_handlers.exception_handlers

    def test_multiple_handler_setups_does_not_fail(self):
        """Verify calling setup_exception_handlers multiple times is safe."""
        app = FastAPI()

        setup_exception_handlers(app)
        setup_exception_handlers(app)

        assert AppError in app.exception_handlers
