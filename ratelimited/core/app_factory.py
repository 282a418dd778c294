"""Application factory for the FastAPI app.

Centralizes app construction (engine, middleware, handlers, routers) so tests
can build isolated apps with their own engine.
"""

from __future__ import annotations

from fastapi import FastAPI

from ratelimited.api.routes import health_router, policies_router
from ratelimited.core.config import settings
from ratelimited.core.exception_handlers import setup_exception_handlers
from ratelimited.core.logging import configure_logging
from ratelimited.core.middleware import request_id_middleware
from ratelimited.core.openapi import apply_openapi_customizations
from ratelimited.engine.gate import RateLimitingEngine, get_default_engine


def create_app(engine: RateLimitingEngine | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        engine: Engine guarding this app's routes; the process-wide engine if omitted.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="ratelimited",
        description=(
            "Fixed-window rate limiting engine. Exposes health and the dynamic "
            "policy overrides consulted by call sites declared with "
            "configuration=DYNAMIC."
        ),
        version="0.1.0",
    )
    app.state.rate_limit_engine = engine or get_default_engine()

    app.middleware("http")(request_id_middleware)
    setup_exception_handlers(app)

    app.include_router(policies_router, prefix="/v1")
    app.include_router(health_router)

    # OpenAPI customizations (429 responses, tags)
    apply_openapi_customizations(app)

    return app
