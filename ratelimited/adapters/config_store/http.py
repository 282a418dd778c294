"""HTTP dynamic policy store adapter."""

from __future__ import annotations

from urllib.parse import quote

import httpx
from pydantic import ValidationError

from ratelimited.adapters.config_store.base import AbstractConfigurationStore
from ratelimited.core.errors import ExternalLookupError
from ratelimited.core.logging import hash_key
from ratelimited.schemas.policy import PolicyOverride


class HttpConfigurationStore(AbstractConfigurationStore):
    """Client for a policy service exposing ``GET /policies/{identifier}``.

    A 404 means "no override". Any other failure (network, non-2xx, malformed
    body) is reported as ExternalLookupError so the caller can fall back.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 2.0,
        client: httpx.Client | None = None,
    ) -> None:
        """Initialize the HTTP store.

        Args:
            base_url: Root URL of the policy service.
            timeout_seconds: Timeout for each request in seconds.
            client: Optional preconfigured client (tests inject a mock transport).
        """
        self.client = client or httpx.Client(
            base_url=base_url,
            timeout=timeout_seconds,
        )

    def lookup(self, identifier: str) -> PolicyOverride | None:
        try:
            response = self.client.get(f"/policies/{quote(identifier, safe='')}")
            if response.status_code == httpx.codes.NOT_FOUND:
                return None
            response.raise_for_status()
            return PolicyOverride.model_validate(response.json())
        except httpx.HTTPError as exc:
            raise ExternalLookupError(
                code="policy_store_unavailable",
                message=f"Policy store request failed ({type(exc).__name__})",
                details={
                    "identifier_hash": hash_key(identifier),
                    "error_type": type(exc).__name__,
                },
            ) from exc
        except (ValueError, ValidationError) as exc:
            raise ExternalLookupError(
                code="policy_store_bad_payload",
                message=f"Policy store returned an invalid override: {exc}",
                details={
                    "identifier_hash": hash_key(identifier),
                    "error_type": type(exc).__name__,
                },
            ) from exc

    def close(self) -> None:
        self.client.close()
