"""Retry-on-rejection around the limiter core.

A denied call with a retry policy waits and re-polls the limiter; nothing is
reserved between polls, so under sustained overload most retries fail until
the window rolls over. Waiting suspends only the calling thread or task.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Awaitable, Callable

from ratelimited.adapters.rate_limit.base import AbstractRateLimiter
from ratelimited.core.logging import hash_key
from ratelimited.engine.types import (
    Decision,
    GuardResult,
    RateLimitPolicy,
    RateLimitResult,
    RetryPolicy,
)

logger = logging.getLogger(__name__)


class RetryCoordinator:
    """Applies a call site's retry policy to limiter denials."""

    def __init__(
        self,
        limiter: AbstractRateLimiter,
        *,
        sleep: Callable[[float], None] = time.sleep,
        async_sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the coordinator.

        Args:
            limiter: Limiter core deciding each poll.
            sleep: Blocking wait in seconds, used when no cancel event is given.
            async_sleep: Awaitable wait in seconds for the asyncio path.
        """
        self._limiter = limiter
        self._sleep = sleep
        self._async_sleep = async_sleep

    @property
    def limiter(self) -> AbstractRateLimiter:
        return self._limiter

    def guard(
        self,
        key: str,
        policy: RateLimitPolicy,
        retry_policy: RetryPolicy | None = None,
        now: int | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> GuardResult:
        """Admit a call, re-polling per ``retry_policy`` while denied.

        Args:
            key: Rate limit key.
            policy: Effective policy.
            retry_policy: Optional retry policy; None fails on the first denial.
            now: Clock time of the first check (later polls re-read the clock).
            cancel_event: Setting it abandons any pending wait.

        Returns:
            GuardResult; ``cancelled`` is True if the wait was abandoned.
        """
        if not policy.enabled:
            return GuardResult(decision=Decision.ALLOWED)

        result = self._limiter.admit(key, policy, now)
        if result.allowed or not _has_retries(retry_policy):
            return _finish(result, attempts=0)

        for attempt in range(retry_policy.max_attempts):
            delay_ms = retry_policy.delay_for(attempt)
            _log_retry(key, attempt, retry_policy, delay_ms)

            if self._wait(delay_ms / 1000, cancel_event):
                _log_cancelled(key, attempt)
                return GuardResult(
                    decision=Decision.DENIED,
                    attempts=attempt,
                    cancelled=True,
                    result=result,
                )

            result = self._limiter.admit(key, policy)
            if result.allowed:
                return _finish(result, attempts=attempt + 1)

        return _finish(result, attempts=retry_policy.max_attempts)

    async def guard_async(
        self,
        key: str,
        policy: RateLimitPolicy,
        retry_policy: RetryPolicy | None = None,
        now: int | None = None,
    ) -> GuardResult:
        """Asyncio variant of :meth:`guard`.

        Cancelling the awaiting task while it waits raises
        ``asyncio.CancelledError``; the call is never admitted by cancellation.
        """
        if not policy.enabled:
            return GuardResult(decision=Decision.ALLOWED)

        result = self._limiter.admit(key, policy, now)
        if result.allowed or not _has_retries(retry_policy):
            return _finish(result, attempts=0)

        for attempt in range(retry_policy.max_attempts):
            delay_ms = retry_policy.delay_for(attempt)
            _log_retry(key, attempt, retry_policy, delay_ms)

            try:
                await self._async_sleep(delay_ms / 1000)
            except asyncio.CancelledError:
                _log_cancelled(key, attempt)
                raise

            result = self._limiter.admit(key, policy)
            if result.allowed:
                return _finish(result, attempts=attempt + 1)

        return _finish(result, attempts=retry_policy.max_attempts)

    def _wait(self, seconds: float, cancel_event: threading.Event | None) -> bool:
        """Wait ``seconds``; return True if cancelled instead."""
        if cancel_event is not None:
            return cancel_event.wait(seconds)
        self._sleep(seconds)
        return False


def _has_retries(retry_policy: RetryPolicy | None) -> bool:
    return retry_policy is not None and retry_policy.max_attempts > 0


def _finish(result: RateLimitResult, *, attempts: int) -> GuardResult:
    if not result.allowed and attempts:
        logger.info(
            "rate_limit.retries_exhausted",
            extra={"key_hash": hash_key(result.key), "attempts": attempts},
        )
    return GuardResult(decision=result.decision, attempts=attempts, result=result)


def _log_retry(key: str, attempt: int, retry_policy: RetryPolicy, delay_ms: int) -> None:
    logger.debug(
        "rate_limit.retry",
        extra={
            "key_hash": hash_key(key),
            "attempt": attempt + 1,
            "max_attempts": retry_policy.max_attempts,
            "delay_ms": delay_ms,
        },
    )


def _log_cancelled(key: str, attempt: int) -> None:
    logger.info(
        "rate_limit.retry_cancelled",
        extra={"key_hash": hash_key(key), "attempt": attempt + 1},
    )
