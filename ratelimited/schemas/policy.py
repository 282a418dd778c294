"""Pydantic schemas for dynamic policy overrides."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from ratelimited.engine.types import RateLimitPolicy


class PolicyOverride(BaseModel):
    """Interval and max requests supplied by the dynamic policy store.

    Both values replace the declared ones together; a partial override is not
    representable.
    """

    model_config = ConfigDict(frozen=True)

    interval_millis: int = Field(
        ..., gt=0, description="Window length in milliseconds."
    )
    max_requests: int = Field(
        ...,
        ge=0,
        description="Admissions per window. 0 blocks every call for the identifier.",
    )

    def to_policy(self) -> RateLimitPolicy:
        return RateLimitPolicy(
            interval_millis=self.interval_millis,
            max_requests=self.max_requests,
            enabled=True,
        )


class PolicyOverrideResponse(PolicyOverride):
    """Stored override as returned by the admin API."""

    identifier: str = Field(..., description="Call-site identifier or rate limit key.")
