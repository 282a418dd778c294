from __future__ import annotations

from ratelimited.api.routes.health import router as health_router
from ratelimited.api.routes.policies import router as policies_router

__all__ = ["health_router", "policies_router"]
