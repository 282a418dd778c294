from __future__ import annotations

from fastapi import APIRouter, Request

from ratelimited.core.rate_limit import get_engine

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request) -> dict:
    """Health check endpoint.

    Reports service status and, for the in-memory limiter, how many keys are
    currently tracked (no keys themselves).
    """

    limiter = get_engine(request).limiter
    stats = getattr(limiter, "stats", None)
    return {"status": "ok", "limiter": stats() if stats else None}
