"""In-process rate limiting engine.

Public API::

    from ratelimited import RetryPolicy, rate_limited

    @rate_limited(interval_millis=1000, max_requests=5, retry=RetryPolicy(3, 200))
    def fetch(...): ...
"""

from ratelimited.core.errors import (
    AppError,
    ConfigurationError,
    ExternalLookupError,
    KeyResolutionError,
    RateLimitCancelledError,
    RateLimitExceededError,
)
from ratelimited.engine.gate import (
    RateLimitingEngine,
    RateLimitSpec,
    get_default_engine,
    rate_limited,
    set_default_engine,
)
from ratelimited.engine.types import (
    UNSET,
    CallContext,
    ConfigurationSource,
    Decision,
    GuardResult,
    KeyDerivation,
    RateLimitPolicy,
    RateLimitResult,
    RetryPolicy,
)

__all__ = [
    "UNSET",
    "AppError",
    "CallContext",
    "ConfigurationError",
    "ConfigurationSource",
    "Decision",
    "ExternalLookupError",
    "GuardResult",
    "KeyDerivation",
    "KeyResolutionError",
    "RateLimitCancelledError",
    "RateLimitExceededError",
    "RateLimitPolicy",
    "RateLimitResult",
    "RateLimitSpec",
    "RateLimitingEngine",
    "RetryPolicy",
    "get_default_engine",
    "rate_limited",
    "set_default_engine",
]
