"""Effective policy resolution.

Turns a call site's declared policy into the policy enforced for one call,
consulting the dynamic policy store for DYNAMIC call sites. The store is
bounded by its own timeout; when it is slow, failing or empty the declared
values apply, so admission never waits on the store for longer than that.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError

from ratelimited.adapters.config_store.base import AbstractConfigurationStore
from ratelimited.core.config import settings
from ratelimited.core.errors import ConfigurationError, ExternalLookupError
from ratelimited.core.logging import hash_key
from ratelimited.engine.types import ConfigurationSource, RateLimitPolicy
from ratelimited.schemas.policy import PolicyOverride

logger = logging.getLogger(__name__)


def validate_static_policy(policy: RateLimitPolicy, identifier: str = "") -> RateLimitPolicy:
    """Return ``policy`` if both interval and max requests are set.

    Raises:
        ConfigurationError: If either value is unset or not positive.
    """
    if policy.interval_millis <= 0:
        raise ConfigurationError(
            code="interval_not_set",
            message="Rate limit interval must be set to a positive number of milliseconds",
            details={
                "identifier_hash": hash_key(identifier),
                "interval_millis": policy.interval_millis,
            },
        )
    if policy.max_requests <= 0:
        raise ConfigurationError(
            code="max_requests_not_set",
            message="Rate limit max_requests must be set to a positive number",
            details={"identifier_hash": hash_key(identifier), "max_requests": policy.max_requests},
        )
    return policy


class PolicyResolver:
    """Resolves the policy enforced for a call."""

    def __init__(
        self,
        store: AbstractConfigurationStore | None = None,
        *,
        lookup_timeout_seconds: float | None = None,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            store: Dynamic policy store; required only by DYNAMIC call sites.
            lookup_timeout_seconds: Bound on one store lookup. Defaults to
                RATELIMIT_DYNAMIC_LOOKUP_TIMEOUT_SECONDS.
            executor: Pool running store lookups off the calling thread.
        """
        self._store = store
        self._timeout = (
            lookup_timeout_seconds
            if lookup_timeout_seconds is not None
            else settings.rate_limit.dynamic_lookup_timeout_seconds
        )
        self._executor = executor or ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="policy-lookup"
        )

    @property
    def store(self) -> AbstractConfigurationStore | None:
        return self._store

    def resolve(
        self,
        source: ConfigurationSource,
        static_policy: RateLimitPolicy,
        identifier: str,
    ) -> RateLimitPolicy:
        """Resolve the policy for one call (blocking variant).

        Args:
            source: STATIC or DYNAMIC.
            static_policy: Policy declared at the call site.
            identifier: Key or call-site identifier used for the store lookup.

        Returns:
            The effective policy; a disabled policy when the call site is disabled.

        Raises:
            ConfigurationError: If the declared policy is invalid.
        """
        fallback = self._prepare(source, static_policy, identifier)
        if fallback is None or source is ConfigurationSource.STATIC:
            return fallback or RateLimitPolicy.disabled()

        try:
            override = self._lookup(identifier)
        except ExternalLookupError as exc:
            return self._fall_back(fallback, identifier, exc)
        return self._apply(override, fallback, identifier)

    async def resolve_async(
        self,
        source: ConfigurationSource,
        static_policy: RateLimitPolicy,
        identifier: str,
    ) -> RateLimitPolicy:
        """Resolve the policy for one call without blocking the event loop."""
        fallback = self._prepare(source, static_policy, identifier)
        if fallback is None or source is ConfigurationSource.STATIC:
            return fallback or RateLimitPolicy.disabled()

        try:
            override = await self._lookup_async(identifier)
        except ExternalLookupError as exc:
            return self._fall_back(fallback, identifier, exc)
        return self._apply(override, fallback, identifier)

    def _prepare(
        self,
        source: ConfigurationSource,
        static_policy: RateLimitPolicy,
        identifier: str,
    ) -> RateLimitPolicy | None:
        # None signals a disabled call site: no validation, no lookup.
        if not static_policy.enabled:
            return None

        validate_static_policy(static_policy, identifier)

        if source is ConfigurationSource.DYNAMIC and self._store is None:
            raise ConfigurationError(
                code="policy_store_missing",
                message="DYNAMIC configuration requires a policy store",
                details={"identifier_hash": hash_key(identifier)},
            )
        return static_policy

    def _lookup(self, identifier: str) -> PolicyOverride | None:
        future = self._executor.submit(self._store.lookup, identifier)
        try:
            return future.result(timeout=self._timeout)
        except FuturesTimeoutError as exc:
            future.cancel()
            raise self._timeout_error(identifier) from exc
        except ExternalLookupError:
            raise
        except Exception as exc:
            raise self._lookup_error(identifier, exc) from exc

    async def _lookup_async(self, identifier: str) -> PolicyOverride | None:
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(self._executor, self._store.lookup, identifier),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise self._timeout_error(identifier) from exc
        except ExternalLookupError:
            raise
        except Exception as exc:
            raise self._lookup_error(identifier, exc) from exc

    def _timeout_error(self, identifier: str) -> ExternalLookupError:
        return ExternalLookupError(
            code="policy_lookup_timeout",
            message=f"Policy lookup exceeded {self._timeout}s",
            details={"identifier_hash": hash_key(identifier), "timeout_seconds": self._timeout},
        )

    @staticmethod
    def _lookup_error(identifier: str, exc: Exception) -> ExternalLookupError:
        return ExternalLookupError(
            code="policy_lookup_failed",
            message=f"Policy lookup failed ({type(exc).__name__})",
            details={"identifier_hash": hash_key(identifier), "error_type": type(exc).__name__},
        )

    @staticmethod
    def _fall_back(
        fallback: RateLimitPolicy,
        identifier: str,
        exc: ExternalLookupError,
    ) -> RateLimitPolicy:
        logger.warning(
            "policy.dynamic_fallback",
            extra={
                "identifier_hash": hash_key(identifier),
                "error_code": exc.code,
                "error_type": (exc.details or {}).get("error_type"),
            },
        )
        return fallback

    @staticmethod
    def _apply(
        override: PolicyOverride | None,
        fallback: RateLimitPolicy,
        identifier: str,
    ) -> RateLimitPolicy:
        if override is None:
            logger.debug("policy.dynamic_miss", extra={"identifier_hash": hash_key(identifier)})
            return fallback

        logger.debug(
            "policy.dynamic_hit",
            extra={
                "identifier_hash": hash_key(identifier),
                "interval_millis": override.interval_millis,
                "max_requests": override.max_requests,
            },
        )
        return override.to_policy()

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
