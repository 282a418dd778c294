"""API key authentication for the admin routes.

Keys are validated against a comma-separated list from ADMIN_API_KEYS.
Validation is skipped entirely with ADMIN_API_KEY_REQUIRED=false.

Usage:
    router = APIRouter(dependencies=[Depends(verify_api_key)])
"""

from __future__ import annotations

import hmac
import logging
from typing import Annotated

from fastapi import Header, HTTPException, status

from ratelimited.core.config import AdminSettings, settings
from ratelimited.core.errors import AuthenticationError
from ratelimited.core.logging import hash_key

logger = logging.getLogger(__name__)


def parse_api_keys(keys_string: str | None) -> set[str]:
    """Parse comma-separated API keys into a set.

    Examples:
        >>> sorted(parse_api_keys("key1, key2 ,key3 "))
        ['key1', 'key2', 'key3']
        >>> parse_api_keys(None)
        set()
    """
    if not keys_string:
        return set()
    return {key.strip() for key in keys_string.split(",") if key.strip()}


def validate_api_key(provided_key: str, admin_settings: AdminSettings | None = None) -> None:
    """Check ``provided_key`` against the configured admin keys.

    Raises:
        AuthenticationError: If no keys are configured or the key does not match.
    """
    cfg = admin_settings or settings.admin
    valid_keys = parse_api_keys(cfg.api_keys)

    if not valid_keys:
        logger.error(
            "auth.failed",
            extra={"reason": "api_keys_not_configured"},
        )
        raise AuthenticationError(
            code="api_keys_not_configured",
            message="Admin authentication is enabled but no API keys are configured",
        )

    provided = provided_key.encode()
    if not any(hmac.compare_digest(provided, key.encode()) for key in valid_keys):
        logger.warning(
            "auth.failed",
            extra={"reason": "invalid_api_key", "api_key_hash": hash_key(provided_key)},
        )
        raise AuthenticationError(
            code="invalid_api_key",
            message="Invalid API key",
        )


async def verify_api_key(
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency guarding the admin routes.

    Raises:
        HTTPException: 401 when the header is missing, 403 when the key is rejected.
    """
    if not settings.admin.api_key_required:
        return

    if not x_api_key:
        logger.warning("auth.missing_key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key. Provide X-API-Key header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    try:
        validate_api_key(x_api_key)
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=exc.message,
        ) from exc

    logger.debug("auth.success", extra={"api_key_hash": hash_key(x_api_key)})
