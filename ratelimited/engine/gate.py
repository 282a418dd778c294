"""Call gate: wires key resolution, policy resolution, the limiter and retries.

Application code guards an operation either by calling
``RateLimitingEngine.enforce`` at the top of it or by decorating it with
:func:`rate_limited`::

    @rate_limited(interval_millis=60_000, max_requests=10, key_expression="user:{user_id}")
    def send_message(user_id: str, body: str) -> None:
        ...

Declarations are validated when they are made, so a limit left unset fails at
import time instead of silently disabling protection.
"""

from __future__ import annotations

import functools
import inspect
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from ratelimited.adapters.config_store.base import AbstractConfigurationStore
from ratelimited.adapters.config_store.factory import create_configuration_store
from ratelimited.adapters.rate_limit.base import AbstractRateLimiter
from ratelimited.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from ratelimited.core.config import RateLimitSettings, settings
from ratelimited.core.errors import RateLimitCancelledError, RateLimitExceededError
from ratelimited.core.logging import hash_key
from ratelimited.engine.keys import KeyResolver, call_site_for
from ratelimited.engine.policies import PolicyResolver, validate_static_policy
from ratelimited.engine.retry import RetryCoordinator
from ratelimited.engine.types import (
    UNSET,
    CallContext,
    ConfigurationSource,
    Decision,
    GuardResult,
    KeyDerivation,
    RateLimitPolicy,
    RetryPolicy,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SPEC_ATTR = "__rate_limit_spec__"


@dataclass(frozen=True)
class RateLimitSpec:
    """Declared rate limit of a call site.

    Attributes:
        configuration: STATIC uses the declared values, DYNAMIC consults the policy store first.
        enabled: False exempts the call site entirely.
        interval_millis: Window length; must be set when enabled.
        max_requests: Admissions per window; must be set when enabled.
        key: Explicit key shared by every call (takes precedence over key_expression).
        key_expression: Template evaluated per call to compute the key.
        retry: Retry policy applied on denial; None fails immediately.
        name: Identifier used for dynamic lookups; the resolved key when empty.
    """

    configuration: ConfigurationSource = ConfigurationSource.STATIC
    enabled: bool = True
    interval_millis: int = UNSET
    max_requests: int = UNSET
    key: str = ""
    key_expression: str = ""
    retry: RetryPolicy | None = None
    name: str = ""

    @property
    def static_policy(self) -> RateLimitPolicy:
        return RateLimitPolicy(
            interval_millis=self.interval_millis,
            max_requests=self.max_requests,
            enabled=self.enabled,
        )

    @property
    def key_derivation(self) -> KeyDerivation:
        return KeyResolver.variant_for(self.key, self.key_expression)

    def validate(self) -> RateLimitSpec:
        """Fail on an enabled declaration with unset limits.

        Raises:
            ConfigurationError: If interval or max requests are unset.
        """
        if self.enabled:
            validate_static_policy(self.static_policy, self.name or self.key)
        return self


class RateLimitingEngine:
    """Entry point for guarding calls."""

    def __init__(
        self,
        limiter: AbstractRateLimiter | None = None,
        *,
        store: AbstractConfigurationStore | None = None,
        key_resolver: KeyResolver | None = None,
        policy_resolver: PolicyResolver | None = None,
        retry_coordinator: RetryCoordinator | None = None,
        enabled: bool = True,
    ) -> None:
        self._limiter = limiter or InMemoryFixedWindowRateLimiter()
        self._key_resolver = key_resolver or KeyResolver()
        self._policy_resolver = policy_resolver or PolicyResolver(store)
        self._coordinator = retry_coordinator or RetryCoordinator(self._limiter)
        self._enabled = enabled

    @classmethod
    def from_settings(
        cls,
        rate_limit_settings: RateLimitSettings | None = None,
    ) -> RateLimitingEngine:
        """Build an engine from RATELIMIT_* settings."""
        cfg = rate_limit_settings or settings.rate_limit
        limiter = InMemoryFixedWindowRateLimiter(
            shard_count=cfg.shard_count,
            retention_intervals=cfg.retention_intervals,
            sweep_interval_millis=int(cfg.sweep_interval_seconds * 1000),
        )
        return cls(
            limiter,
            key_resolver=KeyResolver(lenient=cfg.key_resolution_mode == "lenient"),
            policy_resolver=PolicyResolver(
                create_configuration_store(cfg),
                lookup_timeout_seconds=cfg.dynamic_lookup_timeout_seconds,
            ),
            enabled=cfg.enabled,
        )

    @property
    def limiter(self) -> AbstractRateLimiter:
        return self._limiter

    @property
    def store(self) -> AbstractConfigurationStore | None:
        return self._policy_resolver.store

    def resolve_key(self, spec: RateLimitSpec, context: CallContext) -> str:
        return self._key_resolver.resolve(
            spec.key_derivation, spec.key, spec.key_expression, context
        )

    def check(
        self,
        spec: RateLimitSpec,
        context: CallContext,
        *,
        cancel_event: threading.Event | None = None,
    ) -> GuardResult:
        """Decide whether a call may proceed, waiting out retries if configured."""
        if not (self._enabled and spec.enabled):
            return GuardResult(decision=Decision.ALLOWED)

        key = self.resolve_key(spec, context)
        policy = self._policy_resolver.resolve(
            spec.configuration, spec.static_policy, spec.name or key
        )
        return self._coordinator.guard(key, policy, spec.retry, cancel_event=cancel_event)

    async def check_async(self, spec: RateLimitSpec, context: CallContext) -> GuardResult:
        """Asyncio variant of :meth:`check`."""
        if not (self._enabled and spec.enabled):
            return GuardResult(decision=Decision.ALLOWED)

        key = self.resolve_key(spec, context)
        policy = await self._policy_resolver.resolve_async(
            spec.configuration, spec.static_policy, spec.name or key
        )
        return await self._coordinator.guard_async(key, policy, spec.retry)

    def enforce(
        self,
        spec: RateLimitSpec,
        context: CallContext,
        *,
        cancel_event: threading.Event | None = None,
    ) -> GuardResult:
        """Like :meth:`check`, but raise when the call must not proceed.

        Raises:
            RateLimitExceededError: If the call was denied.
            RateLimitCancelledError: If waiting for a retry was cancelled.
        """
        result = self.check(spec, context, cancel_event=cancel_event)
        _raise_for(result, context)
        return result

    async def enforce_async(self, spec: RateLimitSpec, context: CallContext) -> GuardResult:
        """Like :meth:`check_async`, but raise RateLimitExceededError on denial."""
        result = await self.check_async(spec, context)
        _raise_for(result, context)
        return result

    def close(self) -> None:
        self._policy_resolver.shutdown()


def _raise_for(result: GuardResult, context: CallContext) -> None:
    if result.allowed:
        return

    limiter_result = result.result
    key = limiter_result.key if limiter_result else ""
    details = {
        "key_hash": hash_key(key),
        "call_site": context.call_site,
        "attempts": result.attempts,
    }
    if limiter_result is not None:
        details.update(
            limit=limiter_result.limit,
            remaining=limiter_result.remaining,
            reset_at_millis=limiter_result.reset_at_millis,
            retry_after_millis=limiter_result.retry_after_millis or 0,
        )

    if result.cancelled:
        raise RateLimitCancelledError(
            code="rate_limit_wait_cancelled",
            message="Gave up waiting for rate limit capacity",
            details=details,
        )

    logger.warning("rate_limit.denied", extra=dict(details))
    raise RateLimitExceededError(
        code="rate_limit_exceeded",
        message="Rate limit exceeded. Try again later.",
        details=details,
    )


_default_engine: RateLimitingEngine | None = None
_default_engine_lock = threading.Lock()


def get_default_engine() -> RateLimitingEngine:
    """Return the process-wide engine, building it from settings on first use."""
    global _default_engine

    with _default_engine_lock:
        if _default_engine is None:
            _default_engine = RateLimitingEngine.from_settings()
        return _default_engine


def set_default_engine(engine: RateLimitingEngine | None) -> None:
    """Replace the process-wide engine (None rebuilds it from settings on next use)."""
    global _default_engine

    with _default_engine_lock:
        _default_engine = engine


def _is_method(func: Callable[..., Any]) -> bool:
    # Decorators on methods run before the class exists; infer from the signature.
    if "." not in func.__qualname__ or func.__qualname__.split(".")[-2] == "<locals>":
        return False
    try:
        params = list(inspect.signature(func).parameters)
    except (TypeError, ValueError):
        return False
    return bool(params) and params[0] in ("self", "cls")


def _wrap(
    func: Callable[..., Any],
    spec: RateLimitSpec,
    engine: RateLimitingEngine | None,
) -> Callable[..., Any]:
    call_site = call_site_for(func)
    is_method = _is_method(func)

    def _context(args: tuple[Any, ...], kwargs: dict[str, Any]) -> CallContext:
        if is_method and args:
            return CallContext(call_site, args[0], args[1:], kwargs, func)
        return CallContext(call_site, None, args, kwargs, func)

    if inspect.iscoroutinefunction(func):

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            await (engine or get_default_engine()).enforce_async(spec, _context(args, kwargs))
            return await func(*args, **kwargs)

        wrapper: Callable[..., Any] = async_wrapper
    else:

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            (engine or get_default_engine()).enforce(spec, _context(args, kwargs))
            return func(*args, **kwargs)

        wrapper = sync_wrapper

    setattr(wrapper, _SPEC_ATTR, spec)
    return wrapper


def _decorate_class(cls: type, spec: RateLimitSpec, engine: RateLimitingEngine | None) -> type:
    for name, attr in list(vars(cls).items()):
        if name.startswith("_"):
            continue

        if isinstance(attr, (staticmethod, classmethod)):
            if hasattr(attr.__func__, _SPEC_ATTR):
                continue
            setattr(cls, name, type(attr)(_wrap(attr.__func__, spec, engine)))
        elif inspect.isfunction(attr) and not hasattr(attr, _SPEC_ATTR):
            setattr(cls, name, _wrap(attr, spec, engine))

    setattr(cls, _SPEC_ATTR, spec)
    return cls


def rate_limited(
    _target: T | None = None,
    *,
    configuration: ConfigurationSource = ConfigurationSource.STATIC,
    enabled: bool = True,
    interval_millis: int = UNSET,
    max_requests: int = UNSET,
    key: str = "",
    key_expression: str = "",
    retry: RetryPolicy | None = None,
    name: str = "",
    engine: RateLimitingEngine | None = None,
) -> Any:
    """Guard a function, coroutine function or every public method of a class.

    A method decorated on its own keeps its own declaration when its class is
    decorated too; ``@rate_limited(enabled=False)`` exempts it.

    Raises:
        ConfigurationError: At decoration time, if enabled without interval or max requests.
    """
    spec = RateLimitSpec(
        configuration=configuration,
        enabled=enabled,
        interval_millis=interval_millis,
        max_requests=max_requests,
        key=key,
        key_expression=key_expression,
        retry=retry,
        name=name,
    ).validate()

    def decorator(target: Any) -> Any:
        if inspect.isclass(target):
            return _decorate_class(target, spec, engine)
        return _wrap(target, spec, engine)

    if _target is not None:
        return decorator(_target)
    return decorator
