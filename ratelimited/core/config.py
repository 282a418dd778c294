"""Engine configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Nested BaseSettings don't inherit env_file, so populate os.environ up front.
if _env_file and not os.getenv("TESTING"):
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_rate_limit_settings() -> "RateLimitSettings":
    return RateLimitSettings()


def _build_admin_settings() -> "AdminSettings":
    return AdminSettings()


def _build_log_settings() -> "LogSettings":
    return LogSettings()


class RateLimitSettings(BaseSettings):
    """Rate limiting engine configuration.

    Policies themselves (interval, max requests) are declared per call site;
    these settings tune the engine that enforces them.
    """

    enabled: bool = Field(
        True,
        description="Master switch; when false every guarded call is admitted",
    )
    key_resolution_mode: Literal["strict", "lenient"] = Field(
        "strict",
        description=(
            "strict: a failing key expression fails the call; "
            "lenient: fall back to the default call-site key"
        ),
    )
    dynamic_lookup_timeout_seconds: float = Field(
        0.25,
        description="Upper bound on a dynamic policy lookup before the static policy is used",
        gt=0,
    )
    shard_count: int = Field(
        16,
        description="Number of independently locked shards holding window state",
        ge=1,
    )
    retention_intervals: int | None = Field(
        10,
        description=(
            "Evict window state idle for this many intervals; "
            "unset to keep state forever (low-cardinality keys)"
        ),
        ge=1,
    )
    sweep_interval_seconds: float = Field(
        60.0,
        description="Minimum time between opportunistic eviction sweeps of a shard",
        ge=0,
    )
    config_store_url: str | None = Field(
        None,
        description="Base URL of an HTTP dynamic policy store (in-memory store when unset)",
    )
    config_store_timeout_seconds: float = Field(
        2.0,
        description="HTTP timeout for the dynamic policy store client",
        gt=0,
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers when throttling",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATELIMIT_",
        case_sensitive=False,
    )


class AdminSettings(BaseSettings):
    """Admin API authentication.

    Guards the dynamic policy routes; an override can raise any call site's
    limit, so writes require a key.
    """

    api_key_required: bool = Field(
        True,
        description="Whether the admin routes require an X-API-Key header",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid admin API keys",
    )

    model_config = SettingsConfigDict(
        env_prefix="ADMIN_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field("json", description="Log line format")
    output: Literal["stdout", "file"] = Field("stdout", description="Log destination")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        0,
        description="Rotate the log file at this size (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(5, description="Rotated files to keep", ge=0)
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header carrying the correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if a setting is malformed.
    """

    app_env: str = APP_ENV
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)
    admin: AdminSettings = Field(default_factory=_build_admin_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


settings = Settings()
