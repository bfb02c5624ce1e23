"""
Access verification API endpoints.

WHAT: Public endpoints that tell a front-end whether the caller may use
the platform, and that check an address format before an administrator
submits it.

WHY: The verdict is computed server-side from the caller's request, so a
client cannot claim an authorized address for itself (unless a trusted
proxy in front is misconfigured).

HOW: The decision engine does the work; this module maps the reason code
to an HTTP status:
- 200 allowed
- 403 denied
- 503 verification could not be performed (store or detection outage)
"""

from fastapi import APIRouter, Depends, Response, status

from accessgate.core.deps import get_address_detector, get_decision_engine
from accessgate.schemas.access import (
    ValidateAddressRequest,
    ValidateAddressResponse,
    VerdictResponse,
)
from accessgate.services import ip_validation
from accessgate.services.access_decision import AccessDecisionEngine, AccessReason, Verdict
from accessgate.services.ip_detection import AddressDetector


router = APIRouter(prefix="/access", tags=["access"])


UNAVAILABLE_REASONS = frozenset([AccessReason.VERIFICATION_FAILED, AccessReason.NETWORK_ERROR])


def verdict_status(verdict: Verdict) -> int:
    if verdict.allowed:
        return status.HTTP_200_OK
    if verdict.reason_code in UNAVAILABLE_REASONS:
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_403_FORBIDDEN


def verdict_response(verdict: Verdict) -> VerdictResponse:
    return VerdictResponse(
        allowed=verdict.allowed,
        reason_code=verdict.reason_code,
        message=verdict.message,
        matched_address=verdict.matched_address,
        detected_type=verdict.detected_type.value if verdict.detected_type else None,
        detected_addresses=verdict.detected_addresses,
    )


@router.post(
    "/verify",
    response_model=VerdictResponse,
    status_code=status.HTTP_200_OK,
    summary="Verify the caller's access",
    description="Detect the caller's address and decide whether it may access the platform.",
    responses={
        403: {"model": VerdictResponse, "description": "Access denied"},
        503: {"model": VerdictResponse, "description": "Verification unavailable"},
    },
)
async def verify_access(
    response: Response,
    engine: AccessDecisionEngine = Depends(get_decision_engine),
    detector: AddressDetector = Depends(get_address_detector),
) -> VerdictResponse:
    verdict = await engine.decide_with_detector(detector)
    response.status_code = verdict_status(verdict)
    return verdict_response(verdict)


@router.post(
    "/validate-ip",
    response_model=ValidateAddressResponse,
    status_code=status.HTTP_200_OK,
    summary="Validate an address format",
)
async def validate_ip(request: ValidateAddressRequest) -> ValidateAddressResponse:
    """
    Check an address without touching any store.

    Always 200; `valid` and `error` describe the outcome.
    """
    result = ip_validation.validate(request.address)
    return ValidateAddressResponse(
        valid=result.valid,
        type=result.type.value if result.type else None,
        error=result.error,
    )
