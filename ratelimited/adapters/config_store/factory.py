"""Factory for the configured dynamic policy store."""

from ratelimited.adapters.config_store.base import AbstractConfigurationStore
from ratelimited.adapters.config_store.http import HttpConfigurationStore
from ratelimited.adapters.config_store.in_memory import InMemoryConfigurationStore
from ratelimited.core.config import RateLimitSettings, settings


def create_configuration_store(
    rate_limit_settings: RateLimitSettings | None = None,
) -> AbstractConfigurationStore:
    """Instantiate the policy store selected by settings.

    An HTTP store when RATELIMIT_CONFIG_STORE_URL is set, otherwise an
    in-memory store that the admin API can populate.
    """
    cfg = rate_limit_settings or settings.rate_limit

    if cfg.config_store_url:
        return HttpConfigurationStore(
            cfg.config_store_url,
            timeout_seconds=cfg.config_store_timeout_seconds,
        )

    return InMemoryConfigurationStore()
