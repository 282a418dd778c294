"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment is set before anything imports the settings module.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("RATELIMIT_KEY_RESOLUTION_MODE", "strict")
os.environ.setdefault("RATELIMIT_DYNAMIC_LOOKUP_TIMEOUT_SECONDS", "0.2")
os.environ.setdefault("LOG_FORMAT", "json")
os.environ.setdefault("ADMIN_API_KEY_REQUIRED", "true")
os.environ.setdefault("ADMIN_API_KEYS", "test-admin-key")

import pytest  # noqa: E402

from ratelimited.adapters.config_store.in_memory import InMemoryConfigurationStore  # noqa: E402
from ratelimited.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter  # noqa: E402
from ratelimited.engine.gate import RateLimitingEngine, set_default_engine  # noqa: E402
from ratelimited.engine.keys import KeyResolver  # noqa: E402
from ratelimited.engine.policies import PolicyResolver  # noqa: E402
from ratelimited.engine.retry import RetryCoordinator  # noqa: E402


class FakeClock:
    """Deterministic millisecond clock; ``sleep`` advances it instead of blocking."""

    def __init__(self, start: int = 1_000_000) -> None:
        self.current = start
        self.sleeps: list[float] = []

    def millis(self) -> int:
        return self.current

    def advance(self, millis: int) -> None:
        self.current += millis

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.current += round(seconds * 1000)

    async def async_sleep(self, seconds: float) -> None:
        self.sleep(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock: FakeClock) -> InMemoryFixedWindowRateLimiter:
    return InMemoryFixedWindowRateLimiter(shard_count=4, clock=clock.millis)


@pytest.fixture
def store() -> InMemoryConfigurationStore:
    return InMemoryConfigurationStore()


@pytest.fixture
def engine(
    clock: FakeClock,
    limiter: InMemoryFixedWindowRateLimiter,
    store: InMemoryConfigurationStore,
):
    """Engine on a fake clock, installed as the process-wide default."""
    built = RateLimitingEngine(
        limiter,
        key_resolver=KeyResolver(lenient=False),
        policy_resolver=PolicyResolver(store, lookup_timeout_seconds=0.2),
        retry_coordinator=RetryCoordinator(
            limiter, sleep=clock.sleep, async_sleep=clock.async_sleep
        ),
    )
    set_default_engine(built)
    yield built
    set_default_engine(None)
    built.close()
