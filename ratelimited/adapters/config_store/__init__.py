"""Dynamic policy store adapters."""

from ratelimited.adapters.config_store.base import AbstractConfigurationStore
from ratelimited.adapters.config_store.factory import create_configuration_store
from ratelimited.adapters.config_store.http import HttpConfigurationStore
from ratelimited.adapters.config_store.in_memory import InMemoryConfigurationStore

__all__ = [
    "AbstractConfigurationStore",
    "HttpConfigurationStore",
    "InMemoryConfigurationStore",
    "create_configuration_store",
]
