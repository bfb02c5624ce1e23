"""
FastAPI dependencies for authentication, authorization and services.

WHY: Dependencies provide reusable authentication logic and wire the
process-wide stores into per-request services, so route handlers stay
thin and tests can swap any piece through dependency_overrides.
"""

from typing import Optional
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from accessgate.core.auth import Principal, principal_from_payload, verify_token
from accessgate.core.config import settings
from accessgate.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    TokenExpiredError,
    TokenInvalidError,
)
from accessgate.services.access_admin import AccessAdminService
from accessgate.services.access_decision import AccessDecisionEngine
from accessgate.services.ip_detection import (
    AddressDetector,
    HeaderAddressDetector,
    HttpAddressDetector,
)
from accessgate.services.notifications import NotificationChannel, get_notification_channel
from accessgate.services.token_lifecycle import TokenLifecycleManager, TokenPolicy
from accessgate.stores.registry import AccessStores, get_stores


# HTTP Bearer token security scheme
# WHY: auto_error=False so a missing header is reported as 401 by our own
# handler instead of FastAPI's default response
security = HTTPBearer(auto_error=False)


async def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Principal:
    """
    Get the authenticated caller from the JWT bearer token.

    Raises:
        AuthenticationError: If the token is missing, invalid or expired
    """
    if credentials is None:
        raise AuthenticationError(message="Not authenticated")

    try:
        payload = verify_token(credentials.credentials)
        return principal_from_payload(payload)
    except (TokenExpiredError, TokenInvalidError) as e:
        # WHY: Re-raise as AuthenticationError for consistent API responses
        raise AuthenticationError(
            message=e.message,
            status_code=e.status_code,
        )


async def require_admin(
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    """
    Require the caller to have the ADMIN role.

    Raises:
        AuthorizationError: If the caller is not an administrator
    """
    if not principal.is_admin:
        raise AuthorizationError(
            message="Admin access required",
            user_role=principal.role,
        )

    return principal


def get_access_stores() -> AccessStores:
    """Stores registered at application startup."""
    return get_stores()


def get_decision_engine(
    stores: AccessStores = Depends(get_access_stores),
) -> AccessDecisionEngine:
    return AccessDecisionEngine(
        public_access_store=stores.public_access,
        allow_list_store=stores.allow_list,
        timeout=settings.STORE_TIMEOUT_SECONDS,
        bypass_enabled=settings.ACCESS_CHECK_BYPASS,
    )


def get_token_manager(
    stores: AccessStores = Depends(get_access_stores),
) -> TokenLifecycleManager:
    return TokenLifecycleManager(
        stores.tokens,
        policy=TokenPolicy.from_settings(settings),
        timeout=settings.STORE_TIMEOUT_SECONDS,
    )


def get_admin_service(
    stores: AccessStores = Depends(get_access_stores),
) -> AccessAdminService:
    return AccessAdminService(
        allow_list_store=stores.allow_list,
        public_access_store=stores.public_access,
        timeout=settings.STORE_TIMEOUT_SECONDS,
    )


def get_address_detector(request: Request) -> AddressDetector:
    """
    Detector for the current request, selected by IP_DETECTION_MODE.
    """
    if settings.IP_DETECTION_MODE == "remote":
        return HttpAddressDetector(
            settings.IP_DETECTION_URL,
            timeout=settings.STORE_TIMEOUT_SECONDS,
        )
    return HeaderAddressDetector.from_request(
        request, trust_forwarded=settings.TRUST_FORWARDED_HEADERS
    )


def get_channel() -> NotificationChannel:
    return get_notification_channel()
