"""In-memory dynamic policy store.

Backs the admin API and tests. Overrides are immutable models swapped whole
under a lock, so a reader never sees half of an update.
"""

from __future__ import annotations

import logging
import threading

from ratelimited.adapters.config_store.base import AbstractConfigurationStore
from ratelimited.core.logging import hash_key
from ratelimited.schemas.policy import PolicyOverride

logger = logging.getLogger(__name__)


class InMemoryConfigurationStore(AbstractConfigurationStore):
    """Thread-safe mapping of identifier to PolicyOverride."""

    def __init__(self, overrides: dict[str, PolicyOverride] | None = None) -> None:
        self._lock = threading.RLock()
        self._overrides: dict[str, PolicyOverride] = dict(overrides or {})

    def lookup(self, identifier: str) -> PolicyOverride | None:
        with self._lock:
            return self._overrides.get(identifier)

    def put(self, identifier: str, override: PolicyOverride) -> None:
        if not identifier:
            raise ValueError("identifier must be a non-empty string")

        with self._lock:
            self._overrides[identifier] = override

        logger.info(
            "policy_store.put",
            extra={
                "identifier_hash": hash_key(identifier),
                "interval_millis": override.interval_millis,
                "max_requests": override.max_requests,
            },
        )

    def remove(self, identifier: str) -> bool:
        """Delete an override; returns False if there was none."""
        with self._lock:
            removed = self._overrides.pop(identifier, None) is not None

        if removed:
            logger.info("policy_store.removed", extra={"identifier_hash": hash_key(identifier)})
        return removed

    def items(self) -> list[tuple[str, PolicyOverride]]:
        with self._lock:
            return sorted(self._overrides.items())

    def clear(self) -> None:
        with self._lock:
            self._overrides.clear()
