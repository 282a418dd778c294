"""Rate limiting dependency for FastAPI routes.

This module wires the engine into the HTTP layer.

Design goals:
- Minimal coupling: routes declare a dependency instance, nothing else.
- Same declaration surface as :func:`ratelimited.engine.gate.rate_limited`.
- Fail at startup: a dependency declared without limits raises on import.

Key derivation for HTTP calls:
- Default key: ``"{METHOD} {route path}"`` (one budget per endpoint).
- Key expressions see the path parameters plus ``client_host``, ``api_key``,
  ``method`` and ``path``, e.g. ``key_expression=PER_CLIENT``.
"""

import logging
from typing import Annotated

from fastapi import Header, Request

from ratelimited.core.logging import hash_key
from ratelimited.engine.gate import RateLimitingEngine, RateLimitSpec, get_default_engine
from ratelimited.engine.types import (
    UNSET,
    CallContext,
    ConfigurationSource,
    RetryPolicy,
)

logger = logging.getLogger(__name__)

PER_CLIENT = "client:{client_host}"
PER_API_KEY = "api_key:{api_key}"


def get_engine(request: Request) -> RateLimitingEngine:
    """Return the engine attached to the app, or the process-wide one."""

    engine = getattr(request.app.state, "rate_limit_engine", None)
    return engine or get_default_engine()


def _call_site(request: Request) -> str:
    route = request.scope.get("route")
    path = getattr(route, "path", None) or request.url.path
    return f"{request.method} {path}"


def build_call_context(request: Request, x_api_key: str | None) -> CallContext:
    """Describe an HTTP request as a guarded call.

    Args:
        request: FastAPI request.
        x_api_key: API key value from the X-API-Key header.

    Returns:
        CallContext keyed by the route template, not the concrete URL.
    """

    client_host = request.client.host if request.client else "unknown"
    kwargs = {
        **request.path_params,
        "client_host": client_host,
        "api_key": x_api_key or "anonymous",
        "method": request.method,
        "path": request.url.path,
    }
    return CallContext(call_site=_call_site(request), target=request, kwargs=kwargs)


class RateLimitDependency:
    """FastAPI dependency enforcing a rate limit on a route.

    Usage:
        limit = RateLimitDependency(interval_millis=60_000, max_requests=10,
                                    key_expression=PER_CLIENT)

        @router.get("/items", dependencies=[Depends(limit)])
        async def list_items(): ...

    Raises (per request):
        RateLimitExceededError: Rendered as HTTP 429 by the exception handlers.
    """

    def __init__(
        self,
        *,
        interval_millis: int = UNSET,
        max_requests: int = UNSET,
        configuration: ConfigurationSource = ConfigurationSource.STATIC,
        enabled: bool = True,
        key: str = "",
        key_expression: str = "",
        retry: RetryPolicy | None = None,
        name: str = "",
        engine: RateLimitingEngine | None = None,
    ) -> None:
        self.spec = RateLimitSpec(
            configuration=configuration,
            enabled=enabled,
            interval_millis=interval_millis,
            max_requests=max_requests,
            key=key,
            key_expression=key_expression,
            retry=retry,
            name=name,
        ).validate()
        self._engine = engine

    async def __call__(
        self,
        request: Request,
        x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
    ) -> None:
        engine = self._engine or get_engine(request)
        context = build_call_context(request, x_api_key)

        result = await engine.enforce_async(self.spec, context)
        request.state.rate_limit = result.result

        if result.result is not None:
            logger.info(
                "rate_limit.allowed",
                extra={
                    "call_site": context.call_site,
                    "key_hash": hash_key(result.result.key),
                    "limit": result.result.limit,
                    "remaining": result.result.remaining,
                    "attempts": result.attempts,
                },
            )
