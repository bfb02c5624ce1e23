"""
Access administration API endpoints.

WHAT: Allow-list management, the public-access override and token cleanup.

WHY: Only administrators decide who can reach the platform. Every write
records the acting administrator (the bearer token's subject).

HOW: FastAPI router with the ADMIN role required on all endpoints.
Errors raised by the service (InputError, DuplicateAddressError,
ResourceNotFoundError, StoreUnavailableError) are rendered by the
application exception handlers as 400/409/404/503.
"""

from datetime import timedelta

from fastapi import APIRouter, Depends, Response, status

from accessgate.core.auth import Principal
from accessgate.core.clock import utcnow
from accessgate.core.deps import get_admin_service, get_token_manager, require_admin
from accessgate.schemas.access import (
    AllowedAddressCreate,
    AllowedAddressListResponse,
    AllowedAddressResponse,
    PublicAccessResponse,
    PublicAccessUpdate,
)
from accessgate.schemas.tokens import TokenCleanupRequest, TokenCleanupResponse
from accessgate.services.access_admin import AccessAdminService
from accessgate.services.token_lifecycle import TokenLifecycleManager
from accessgate.stores.records import AllowedAddress, PublicAccessConfig


router = APIRouter(prefix="/admin", tags=["admin"])


def _address_response(entry: AllowedAddress) -> AllowedAddressResponse:
    return AllowedAddressResponse(
        id=entry.id,
        address=entry.address,
        address_type=entry.address_type.value,
        description=entry.description,
        added_by=entry.added_by,
        added_at=entry.added_at,
    )


def _public_access_response(config: PublicAccessConfig) -> PublicAccessResponse:
    return PublicAccessResponse(
        enabled=config.enabled,
        enabled_by=config.enabled_by,
        enabled_at=config.enabled_at,
        reason=config.reason,
    )


# ============================================================================
# Allow-list
# ============================================================================


@router.get(
    "/allowed-addresses",
    response_model=AllowedAddressListResponse,
    status_code=status.HTTP_200_OK,
    summary="List allowed addresses",
)
async def list_allowed_addresses(
    admin: Principal = Depends(require_admin),
    service: AccessAdminService = Depends(get_admin_service),
) -> AllowedAddressListResponse:
    entries = await service.list_allowed_addresses()
    return AllowedAddressListResponse(
        items=[_address_response(entry) for entry in entries],
        total=len(entries),
    )


@router.post(
    "/allowed-addresses",
    response_model=AllowedAddressResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add an allowed address",
    description="Add an IPv4 or IPv6 address. Duplicates (after normalization) are rejected with 409.",
)
async def add_allowed_address(
    request: AllowedAddressCreate,
    admin: Principal = Depends(require_admin),
    service: AccessAdminService = Depends(get_admin_service),
) -> AllowedAddressResponse:
    entry = await service.add_allowed_address(
        address=request.address,
        description=request.description,
        actor=admin.subject,
    )
    return _address_response(entry)


@router.delete(
    "/allowed-addresses/{entry_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove an allowed address",
)
async def remove_allowed_address(
    entry_id: str,
    admin: Principal = Depends(require_admin),
    service: AccessAdminService = Depends(get_admin_service),
) -> Response:
    await service.remove_allowed_address(entry_id, actor=admin.subject)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# Public access override
# ============================================================================


@router.get(
    "/public-access",
    response_model=PublicAccessResponse,
    status_code=status.HTTP_200_OK,
    summary="Get the public-access override",
)
async def get_public_access(
    admin: Principal = Depends(require_admin),
    service: AccessAdminService = Depends(get_admin_service),
) -> PublicAccessResponse:
    return _public_access_response(await service.get_public_access())


@router.put(
    "/public-access",
    response_model=PublicAccessResponse,
    status_code=status.HTTP_200_OK,
    summary="Set the public-access override",
    description="While enabled, every caller is allowed regardless of address.",
)
async def set_public_access(
    request: PublicAccessUpdate,
    admin: Principal = Depends(require_admin),
    service: AccessAdminService = Depends(get_admin_service),
) -> PublicAccessResponse:
    config = await service.set_public_access(
        enabled=request.enabled,
        actor=admin.subject,
        reason=request.reason,
    )
    return _public_access_response(config)


# ============================================================================
# Token maintenance
# ============================================================================


@router.post(
    "/tokens/cleanup",
    response_model=TokenCleanupResponse,
    status_code=status.HTTP_200_OK,
    summary="Delete long-expired verification tokens",
)
async def cleanup_tokens(
    request: TokenCleanupRequest,
    admin: Principal = Depends(require_admin),
    manager: TokenLifecycleManager = Depends(get_token_manager),
) -> TokenCleanupResponse:
    now = utcnow()
    retention = timedelta(days=request.older_than_days)
    deleted = await manager.purge(retention, now=now)
    return TokenCleanupResponse(deleted=deleted, cutoff=now - retention)
