"""Dynamic policy store interface.

A store answers "is there an override for this identifier?" and nothing else.
Timeouts and fallback to the declared policy are the policy resolver's job.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ratelimited.schemas.policy import PolicyOverride


class AbstractConfigurationStore(ABC):
    """Interface for external policy stores."""

    @abstractmethod
    def lookup(self, identifier: str) -> PolicyOverride | None:
        """Fetch the override for an identifier.

        Args:
            identifier: Call-site identifier or rate limit key.

        Returns:
            The override, or None when the store has no entry.

        Raises:
            ExternalLookupError: If the store cannot be queried.
        """
        raise NotImplementedError
