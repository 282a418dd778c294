"""Rate limiter interfaces.

The engine depends on this abstraction (not the concrete implementation) so the
in-process store can be swapped for a shared one (e.g., Redis) with minimal
changes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from ratelimited.core.errors import ConfigurationError
from ratelimited.engine.types import RateLimitPolicy, RateLimitResult


@dataclass
class WindowState:
    """Tracked window for one key.

    Attributes:
        key: Rate limit key.
        window_start: Clock time (ms) the current window began.
        count: Admissions counted in the current window.
        interval_millis: Interval of the last policy applied, used for eviction.
    """

    key: str
    window_start: int
    count: int
    interval_millis: int


def ensure_enforceable(policy: RateLimitPolicy) -> None:
    """Reject an enabled policy the limiter cannot enforce.

    Raises:
        ConfigurationError: If the interval is not positive or max requests is negative.
    """
    if policy.interval_millis <= 0 or policy.max_requests < 0:
        raise ConfigurationError(
            code="invalid_policy",
            message="Enabled policy requires interval_millis > 0 and max_requests >= 0",
            details={
                "interval_millis": policy.interval_millis,
                "max_requests": policy.max_requests,
            },
        )


class AbstractRateLimiter(ABC):
    """Interface for limiter cores."""

    @abstractmethod
    def now(self) -> int:
        """Current time in milliseconds on the limiter's clock."""
        raise NotImplementedError

    @abstractmethod
    def admit(
        self,
        key: str,
        policy: RateLimitPolicy,
        now: int | None = None,
    ) -> RateLimitResult:
        """Decide whether one call under ``key`` may proceed.

        An ALLOWED result has already been counted against the window.

        Args:
            key: Grouping identity; calls sharing a key share one budget.
            policy: Effective policy for this call.
            now: Clock time in milliseconds; read from the limiter clock if omitted.

        Returns:
            RateLimitResult describing the decision.
        """
        raise NotImplementedError

    @abstractmethod
    def state_of(self, key: str) -> WindowState | None:
        """Return a snapshot of the tracked window for ``key``, if any."""
        raise NotImplementedError

    @abstractmethod
    def evict_idle(self, now: int | None = None) -> int:
        """Drop idle window state and return how many entries were removed."""
        raise NotImplementedError

    @abstractmethod
    def reset(self, key: str | None = None) -> None:
        """Forget the state of one key, or of every key."""
        raise NotImplementedError
