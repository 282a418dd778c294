"""Global exception handlers for consistent error responses.

This module provides FastAPI exception handlers that intercept engine errors
and unexpected failures and return consistent JSON responses with proper HTTP
status codes and traceability.

Design:
- RateLimitExceededError → 429 with Retry-After / X-RateLimit-* headers
- AuthenticationError → 403 (admin key rejected)
- RateLimitCancelledError → 503 (the request gave up waiting, not rejected by policy)
- ConfigurationError / ExternalLookupError → 500 (server-side misconfiguration)
- Other AppError → 400
- Unexpected Exception → generic 500 (safety net)
- All responses include request_id for distributed tracing
"""

import logging
import math

from fastapi import Request
from fastapi.responses import JSONResponse

from ratelimited.core.config import settings
from ratelimited.core.errors import (
    AppError,
    AuthenticationError,
    ConfigurationError,
    ExternalLookupError,
    RateLimitCancelledError,
    RateLimitExceededError,
)
from ratelimited.core.logging import get_request_id

logger = logging.getLogger(__name__)


def _status_for(exc: AppError) -> int:
    if isinstance(exc, RateLimitExceededError):
        return 429
    if isinstance(exc, AuthenticationError):
        return 403
    if isinstance(exc, RateLimitCancelledError):
        return 503
    if isinstance(exc, (ConfigurationError, ExternalLookupError)):
        return 500
    return 400


def _rate_limit_headers(exc: RateLimitExceededError) -> dict[str, str]:
    details = exc.details or {}
    retry_after = math.ceil(details.get("retry_after_millis", 0) / 1000)
    headers = {"Retry-After": str(retry_after)}
    if "limit" in details:
        headers["X-RateLimit-Limit"] = str(details["limit"])
        headers["X-RateLimit-Remaining"] = str(details.get("remaining", 0))
        headers["X-RateLimit-Reset"] = str(retry_after)
    return headers


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle engine errors with consistent JSON format.

    All responses include:
    - error.code: Machine-readable error code
    - error.message: Human-readable message
    - error.request_id: For distributed tracing
    - error.details: Optional structured context (never the raw key)

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    status_code = _status_for(exc)

    log = logger.error if status_code >= 500 else logger.warning
    log(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": get_request_id(),
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    if exc.details:
        error_content["details"] = exc.details

    headers = None
    if isinstance(exc, RateLimitExceededError) and settings.rate_limit.include_headers:
        headers = _rate_limit_headers(exc)

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
        headers=headers,
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs detailed information for debugging while returning a generic message.
    No stack traces reach the client.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with FastAPI app.

    Order matters: specific handlers registered before general fallback.
    """
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
