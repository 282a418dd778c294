"""Rate limiting adapters.

This package provides a small abstraction layer so the engine can start with an
in-memory limiter and later migrate to Redis or another shared store without
changing the call gate.
"""

from ratelimited.adapters.rate_limit.base import AbstractRateLimiter, WindowState
from ratelimited.adapters.rate_limit.in_memory import (
    InMemoryFixedWindowRateLimiter,
    monotonic_millis,
)

__all__ = [
    "AbstractRateLimiter",
    "InMemoryFixedWindowRateLimiter",
    "WindowState",
    "monotonic_millis",
]
