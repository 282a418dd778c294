"""Value types shared by the rate limiting engine.

Policies and results are immutable so they can be handed between threads and
replaced atomically as whole values.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

# Sentinel for "not configured" on interval and max requests.
UNSET = -1


class Decision(str, Enum):
    """Outcome of an admission check."""

    ALLOWED = "allowed"
    DENIED = "denied"


class ConfigurationSource(str, Enum):
    """Where a call site's effective policy comes from.

    STATIC uses the values declared at the call site. DYNAMIC asks the external
    policy store first and falls back to the declared values.
    """

    STATIC = "annotation"
    DYNAMIC = "database"


class KeyDerivation(str, Enum):
    """How the rate limit key of a call is computed."""

    EXPLICIT = "explicit"
    EXPRESSION = "expression"
    DEFAULT = "default"


@dataclass(frozen=True)
class RateLimitPolicy:
    """Effective limit for one call.

    Attributes:
        interval_millis: Window length in milliseconds, or UNSET.
        max_requests: Admissions allowed per window, or UNSET.
        enabled: When False the limiter admits without tracking state.
    """

    interval_millis: int = UNSET
    max_requests: int = UNSET
    enabled: bool = True

    @classmethod
    def disabled(cls) -> RateLimitPolicy:
        return cls(enabled=False)

    @property
    def is_configured(self) -> bool:
        return self.interval_millis > 0 and self.max_requests > 0


@dataclass(frozen=True)
class RetryPolicy:
    """Re-poll behaviour after a denial.

    Attributes:
        max_attempts: Re-polls after the first denial (0 means fail immediately).
        backoff_millis: Wait before the first re-poll.
        multiplier: Growth factor between waits; 1.0 keeps the wait fixed.
        max_backoff_millis: Optional cap on a single wait.
    """

    max_attempts: int = 0
    backoff_millis: int = 0
    multiplier: float = 1.0
    max_backoff_millis: int | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        if self.backoff_millis < 0:
            raise ValueError("backoff_millis must be >= 0")
        if self.multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        if self.max_backoff_millis is not None and self.max_backoff_millis < 0:
            raise ValueError("max_backoff_millis must be >= 0")
        if self.max_backoff_millis is None and self.max_attempts > 0:
            # Waits never shrink, so the last one is the largest.
            try:
                self.delay_for(self.max_attempts - 1)
            except OverflowError as exc:
                raise ValueError(
                    "backoff grows without bound; set max_backoff_millis"
                ) from exc

    def delay_for(self, attempt: int) -> int:
        """Wait in milliseconds before re-poll number ``attempt`` (0-indexed).

        Uses delay = backoff_millis * multiplier ** attempt, capped by
        max_backoff_millis when set.

        Raises:
            OverflowError: If the uncapped delay is not representable.
        """
        if self.backoff_millis == 0:
            return 0
        try:
            delay = self.backoff_millis * (self.multiplier**attempt)
        except OverflowError:
            delay = math.inf
        if self.max_backoff_millis is not None:
            delay = min(delay, self.max_backoff_millis)
        return int(delay)


@dataclass(frozen=True)
class CallContext:
    """What the call gate knows about one invocation.

    Attributes:
        call_site: Stable identity of the guarded operation.
        target: Bound instance for method calls, None otherwise.
        args: Positional arguments of the call (excluding target).
        kwargs: Keyword arguments of the call.
        func: The guarded callable, when there is one.
    """

    call_site: str
    target: Any = None
    args: tuple[Any, ...] = ()
    kwargs: dict[str, Any] = field(default_factory=dict)
    func: Callable[..., Any] | None = None


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a single admission check.

    Attributes:
        decision: ALLOWED or DENIED.
        key: Key the check was made against.
        limit: Max requests per window (0 for a disabled policy).
        remaining: Admissions left in the current window.
        reset_at_millis: Clock time when the current window ends.
        retry_after_millis: Suggested wait when denied, None when allowed.
    """

    decision: Decision
    key: str
    limit: int
    remaining: int
    reset_at_millis: int
    retry_after_millis: int | None = None

    @property
    def allowed(self) -> bool:
        return self.decision is Decision.ALLOWED


@dataclass(frozen=True)
class GuardResult:
    """Final outcome of a guarded call after any retries.

    Attributes:
        decision: ALLOWED or DENIED.
        attempts: Re-polls performed after the first denial.
        cancelled: True when waiting was abandoned through cancellation.
        result: Last limiter result; None for a disabled policy.
    """

    decision: Decision
    attempts: int = 0
    cancelled: bool = False
    result: RateLimitResult | None = None

    @property
    def allowed(self) -> bool:
        return self.decision is Decision.ALLOWED
