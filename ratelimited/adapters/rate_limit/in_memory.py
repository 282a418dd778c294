"""In-memory fixed-window rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: state is split into shards, each guarded by its own lock, so
  admissions for distinct keys rarely contend.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import replace
from typing import Callable

from ratelimited.adapters.rate_limit.base import (
    AbstractRateLimiter,
    WindowState,
    ensure_enforceable,
)
from ratelimited.core.logging import hash_key
from ratelimited.engine.types import Decision, RateLimitPolicy, RateLimitResult

logger = logging.getLogger(__name__)


def monotonic_millis() -> int:
    """Monotonic clock in whole milliseconds."""
    return time.monotonic_ns() // 1_000_000


class _Shard:
    __slots__ = ("lock", "states", "last_sweep", "allowed", "denied", "evictions")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.states: dict[str, WindowState] = {}
        self.last_sweep: int | None = None
        self.allowed = 0
        self.denied = 0
        self.evictions = 0


class InMemoryFixedWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter using a fixed time window per key.

    A key's window starts at its first admission check and lasts
    ``policy.interval_millis``. Up to ``policy.max_requests`` calls are admitted
    per window; the next check at or after the window end starts a fresh one.
    This admits up to twice the limit around a window boundary in exchange for
    O(1) memory and time per key.

    Important:
        This limiter is per-process only. If the service runs with multiple
        workers, each worker enforces its own independent limits.
    """

    def __init__(
        self,
        *,
        shard_count: int = 16,
        retention_intervals: int | None = 10,
        sweep_interval_millis: int = 60_000,
        clock: Callable[[], int] = monotonic_millis,
    ) -> None:
        """Initialize the in-memory rate limiter.

        Args:
            shard_count: Number of independently locked partitions of the key space.
            retention_intervals: Evict a key once its window started this many
                intervals ago; None keeps state forever.
            sweep_interval_millis: Minimum time between opportunistic sweeps of a shard.
            clock: Time source returning milliseconds.

        Raises:
            ValueError: If shard_count, retention_intervals or sweep_interval_millis are invalid.
        """
        if shard_count < 1:
            raise ValueError("shard_count must be >= 1")
        if retention_intervals is not None and retention_intervals < 1:
            raise ValueError("retention_intervals must be >= 1")
        if sweep_interval_millis < 0:
            raise ValueError("sweep_interval_millis must be >= 0")

        self._shards = tuple(_Shard() for _ in range(shard_count))
        self._retention_intervals = retention_intervals
        self._sweep_interval_millis = sweep_interval_millis
        self._clock = clock

    def now(self) -> int:
        return self._clock()

    def _shard_for(self, key: str) -> _Shard:
        return self._shards[hash(key) % len(self._shards)]

    def _is_idle(self, state: WindowState, now: int) -> bool:
        if self._retention_intervals is None:
            return False
        return now - state.window_start >= self._retention_intervals * state.interval_millis

    def _sweep_locked(self, shard: _Shard, now: int) -> int:
        idle_keys = [k for k, state in shard.states.items() if self._is_idle(state, now)]
        for key in idle_keys:
            del shard.states[key]
        shard.evictions += len(idle_keys)
        shard.last_sweep = now
        return len(idle_keys)

    def _maybe_sweep_locked(self, shard: _Shard, now: int) -> None:
        if self._retention_intervals is None:
            return
        if shard.last_sweep is not None and now - shard.last_sweep < self._sweep_interval_millis:
            return
        evicted = self._sweep_locked(shard, now)
        if evicted:
            logger.debug(
                "rate_limit.evicted",
                extra={"evicted": evicted, "remaining_entries": len(shard.states)},
            )

    def admit(
        self,
        key: str,
        policy: RateLimitPolicy,
        now: int | None = None,
    ) -> RateLimitResult:
        """Check and count one call against the window for ``key``.

        Args:
            key: Rate limit key.
            policy: Effective policy; a disabled policy admits without touching state.
            now: Clock time in milliseconds (defaults to the limiter clock).

        Returns:
            RateLimitResult with the decision and window metadata.

        Raises:
            ValueError: If key is empty.
            ConfigurationError: If an enabled policy is not enforceable.
        """
        if not key:
            raise ValueError("key must be a non-empty string")

        if now is None:
            now = self._clock()

        if not policy.enabled:
            return RateLimitResult(
                decision=Decision.ALLOWED,
                key=key,
                limit=0,
                remaining=0,
                reset_at_millis=now,
            )

        ensure_enforceable(policy)
        interval = policy.interval_millis
        shard = self._shard_for(key)

        with shard.lock:
            self._maybe_sweep_locked(shard, now)

            state = shard.states.get(key)
            if state is None:
                state = WindowState(key=key, window_start=now, count=0, interval_millis=interval)
                shard.states[key] = state
            elif now < state.window_start or now - state.window_start >= interval:
                # A clock that stepped back starts a fresh window at now.
                state.window_start = now
                state.count = 0
            state.interval_millis = interval

            reset_at = state.window_start + interval
            if state.count < policy.max_requests:
                state.count += 1
                shard.allowed += 1
                return RateLimitResult(
                    decision=Decision.ALLOWED,
                    key=key,
                    limit=policy.max_requests,
                    remaining=policy.max_requests - state.count,
                    reset_at_millis=reset_at,
                )

            shard.denied += 1
            remaining = max(0, policy.max_requests - state.count)

        logger.debug(
            "rate_limit.window_exhausted",
            extra={"key_hash": hash_key(key), "limit": policy.max_requests},
        )
        return RateLimitResult(
            decision=Decision.DENIED,
            key=key,
            limit=policy.max_requests,
            remaining=remaining,
            reset_at_millis=reset_at,
            retry_after_millis=max(0, reset_at - now),
        )

    def state_of(self, key: str) -> WindowState | None:
        shard = self._shard_for(key)
        with shard.lock:
            state = shard.states.get(key)
            return replace(state) if state is not None else None

    def evict_idle(self, now: int | None = None) -> int:
        """Sweep every shard for idle keys.

        Args:
            now: Clock time in milliseconds (defaults to the limiter clock).

        Returns:
            Number of evicted entries.
        """
        if self._retention_intervals is None:
            return 0
        if now is None:
            now = self._clock()

        evicted = 0
        for shard in self._shards:
            with shard.lock:
                evicted += self._sweep_locked(shard, now)
        return evicted

    def reset(self, key: str | None = None) -> None:
        if key is not None:
            shard = self._shard_for(key)
            with shard.lock:
                shard.states.pop(key, None)
            return

        for shard in self._shards:
            with shard.lock:
                shard.states.clear()

    def stats(self) -> dict[str, int | None]:
        """Return lightweight limiter metrics without exposing keys."""
        entries = allowed = denied = evictions = 0
        for shard in self._shards:
            with shard.lock:
                entries += len(shard.states)
                allowed += shard.allowed
                denied += shard.denied
                evictions += shard.evictions
        return {
            "shards": len(self._shards),
            "retention_intervals": self._retention_intervals,
            "entries": entries,
            "allowed": allowed,
            "denied": denied,
            "evictions": evictions,
        }
