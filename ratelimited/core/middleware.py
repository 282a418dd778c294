"""HTTP middleware for request correlation and rate limit headers.

The middleware:
- Accepts an incoming X-Request-ID header (configurable) or generates a UUID
- Stores request_id in contextvars so engine logs carry it
- Echoes request_id and total duration in response headers
- Adds X-RateLimit-Limit / X-RateLimit-Remaining to responses of routes that
  passed a RateLimitDependency (429 responses get theirs from the error handler)

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from ratelimited.core.config import settings
from ratelimited.core.logging import clear_request_id, set_request_id
from ratelimited.engine.types import RateLimitResult


async def request_id_middleware(request: Request, call_next) -> Response:
    """Propagate a correlation id through the request and its logs.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The downstream response with X-Request-ID,
            X-Request-Duration-ms and, when a limit applied, X-RateLimit-* headers.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")

    result: RateLimitResult | None = getattr(request.state, "rate_limit", None)
    if result is not None and settings.rate_limit.include_headers:
        response.headers.setdefault("X-RateLimit-Limit", str(result.limit))
        response.headers.setdefault("X-RateLimit-Remaining", str(result.remaining))
    return response
