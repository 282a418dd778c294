"""Admin routes for dynamic policy overrides.

Only available when the engine's policy store is the in-memory store; an HTTP
store is administered by the service that owns it. Every route requires an
admin key in X-API-Key unless ADMIN_API_KEY_REQUIRED=false.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ratelimited.adapters.config_store.in_memory import InMemoryConfigurationStore
from ratelimited.core.auth import verify_api_key
from ratelimited.core.rate_limit import get_engine
from ratelimited.schemas.policy import PolicyOverride, PolicyOverrideResponse

router = APIRouter(tags=["Policies"], dependencies=[Depends(verify_api_key)])


def get_policy_store(request: Request) -> InMemoryConfigurationStore:
    """Resolve the writable policy store of the running engine.

    Raises:
        HTTPException: 409 when the configured store is not writable from here.
    """

    store = get_engine(request).store
    if not isinstance(store, InMemoryConfigurationStore):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Policy store is managed externally",
        )
    return store


def _response(identifier: str, override: PolicyOverride) -> PolicyOverrideResponse:
    return PolicyOverrideResponse(identifier=identifier, **override.model_dump())


@router.get("/policies", response_model=list[PolicyOverrideResponse])
def list_policies(
    store: InMemoryConfigurationStore = Depends(get_policy_store),
) -> list[PolicyOverrideResponse]:
    return [_response(identifier, override) for identifier, override in store.items()]


@router.get("/policies/{identifier}", response_model=PolicyOverrideResponse)
def get_policy(
    identifier: str,
    store: InMemoryConfigurationStore = Depends(get_policy_store),
) -> PolicyOverrideResponse:
    override = store.lookup(identifier)
    if override is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No override")
    return _response(identifier, override)


@router.put("/policies/{identifier}", response_model=PolicyOverrideResponse)
def put_policy(
    identifier: str,
    override: PolicyOverride,
    store: InMemoryConfigurationStore = Depends(get_policy_store),
) -> PolicyOverrideResponse:
    """Create or replace the override for an identifier.

    Interval and max requests are replaced together; the next call resolved for
    the identifier uses the new pair.
    """

    store.put(identifier, override)
    return _response(identifier, override)


@router.delete("/policies/{identifier}", status_code=status.HTTP_204_NO_CONTENT)
def delete_policy(
    identifier: str,
    store: InMemoryConfigurationStore = Depends(get_policy_store),
) -> None:
    if not store.remove(identifier):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No override")
