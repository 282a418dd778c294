"""Engine-level exception types.

This module defines the errors raised while resolving and enforcing rate
limits, enabling consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    key_hash: str
    call_site: str
    identifier_hash: str
    limit: int
    remaining: int
    reset_at_millis: int
    retry_after_millis: int
    attempts: int
    interval_millis: int
    max_requests: int
    timeout_seconds: float
    error_type: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for engine failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ConfigurationError(AppError):
    """Raised when a rate-limit declaration is structurally invalid.

    Unset interval or max requests, or an empty explicit key. Never degrades
    into "unlimited".
    """


class KeyResolutionError(AppError):
    """Raised when a key expression fails or yields an unusable key."""


class ExternalLookupError(AppError):
    """Raised when the dynamic policy store is unreachable or misbehaves.

    Recovered by the policy resolver, which falls back to the static policy.
    """


class RateLimitExceededError(AppError):
    """Raised by the call gate when a guarded call is rejected by policy."""


class RateLimitCancelledError(AppError):
    """Raised by the call gate when a call gave up while waiting to retry."""


class AuthenticationError(AppError):
    """Raised when an admin request carries no valid API key."""
