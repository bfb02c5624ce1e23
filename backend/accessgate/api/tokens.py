"""
Verification token API endpoints.

WHAT: Issue registration and login-verification tokens, validate a
presented token and redeem it.

WHY: Issuance is authenticated (administrators invite new accounts, a
signed-in user asks for a login code). Validation and redemption are
public because the person presenting a registration link has no account
yet; the token itself is the credential.

HOW: TokenLifecycleManager makes every decision. Redemption and issuance
failures are reported with a reason_code and a status mapped from it;
validation always answers 200 with the reason_code in the body.
"""

import logging

from fastapi import APIRouter, Depends, Response, status

from accessgate.core.auth import Principal
from accessgate.core.deps import get_channel, get_current_principal, get_token_manager, require_admin
from accessgate.core.exceptions import NotificationError, StoreUnavailableError
from accessgate.schemas.tokens import (
    LoginVerificationStatusResponse,
    RegistrationTokenRequest,
    TokenIssueResponse,
    TokenPresentRequest,
    TokenRedeemResponse,
    TokenValidationResponse,
)
from accessgate.services.notifications import (
    NotificationChannel,
    NoticeType,
    VerificationNotice,
    registration_link,
)
from accessgate.services.token_lifecycle import IssueResult, TokenLifecycleManager, TokenReason
from accessgate.stores.records import TokenPurpose, VerificationToken


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tokens", tags=["tokens"])


REDEEM_STATUS = {
    TokenReason.OK: status.HTTP_200_OK,
    TokenReason.TOKEN_ALREADY_USED: status.HTTP_409_CONFLICT,
    TokenReason.TOKEN_EXPIRED: status.HTTP_410_GONE,
    TokenReason.TOKEN_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    TokenReason.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    TokenReason.VERIFICATION_FAILED: status.HTTP_503_SERVICE_UNAVAILABLE,
}

ISSUE_STATUS = {
    TokenReason.OK: status.HTTP_201_CREATED,
    TokenReason.TOKEN_ALREADY_ACTIVE: status.HTTP_409_CONFLICT,
    TokenReason.SUBJECT_ALREADY_CONSUMED: status.HTTP_409_CONFLICT,
    TokenReason.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    TokenReason.VERIFICATION_FAILED: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _issue_response(result: IssueResult) -> TokenIssueResponse:
    token = result.token
    return TokenIssueResponse(
        success=result.success,
        reason_code=result.reason_code,
        token_id=token.id if token else None,
        purpose=token.purpose if token else None,
        expires_at=token.expires_at if token else None,
    )


async def _deliver(
    channel: NotificationChannel,
    notice: VerificationNotice,
    manager: TokenLifecycleManager,
    token: VerificationToken,
) -> None:
    """
    Hand the credential to the notification channel.

    WHY: A token whose notice never arrived would block every retry with
    TOKEN_ALREADY_ACTIVE until it expires, so it is withdrawn before the
    failure is reported. The error says whether the withdrawal went through.
    """
    result = await channel.deliver(notice)
    if result.success:
        return

    logger.error(
        f"Verification notice delivery failed: {result.error}",
        extra={"notice_type": notice.notice_type.value, "channel": result.channel},
    )
    try:
        withdrawn = await manager.withdraw(token.id)
    except StoreUnavailableError as e:
        logger.error(
            f"Could not withdraw undelivered token: {e.message}",
            extra={"token_id": token.id},
        )
        withdrawn = False

    raise NotificationError(
        message="Could not deliver the verification notice",
        channel=result.channel,
        token_withdrawn=withdrawn,
    )


# ============================================================================
# Issuance
# ============================================================================


@router.post(
    "/registration",
    response_model=TokenIssueResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Issue a registration token",
    description="Admin only. The link and code are delivered to the e-mail address.",
)
async def issue_registration_token(
    request: RegistrationTokenRequest,
    response: Response,
    admin: Principal = Depends(require_admin),
    manager: TokenLifecycleManager = Depends(get_token_manager),
    channel: NotificationChannel = Depends(get_channel),
) -> TokenIssueResponse:
    result = await manager.issue(request.email, TokenPurpose.REGISTRATION)
    response.status_code = ISSUE_STATUS.get(result.reason_code, status.HTTP_400_BAD_REQUEST)

    if result.success:
        token = result.token
        logger.info(
            "Registration token issued",
            extra={"token_id": token.id, "actor": admin.subject},
        )
        await _deliver(
            channel,
            VerificationNotice(
                recipient=token.subject,
                notice_type=NoticeType.REGISTRATION_INVITE,
                expires_at=token.expires_at,
                code=token.code,
                link=registration_link(token.secret),
            ),
            manager,
            token,
        )

    return _issue_response(result)


@router.post(
    "/login-verification",
    response_model=TokenIssueResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Issue a login-verification code",
    description="Sends a short-lived code to the signed-in caller. The code is never returned.",
)
async def issue_login_verification(
    response: Response,
    principal: Principal = Depends(get_current_principal),
    manager: TokenLifecycleManager = Depends(get_token_manager),
    channel: NotificationChannel = Depends(get_channel),
) -> TokenIssueResponse:
    result = await manager.issue(principal.subject, TokenPurpose.LOGIN_VERIFICATION)
    response.status_code = ISSUE_STATUS.get(result.reason_code, status.HTTP_400_BAD_REQUEST)

    if result.success:
        token = result.token
        await _deliver(
            channel,
            VerificationNotice(
                recipient=principal.email or principal.subject,
                notice_type=NoticeType.LOGIN_VERIFICATION,
                expires_at=token.expires_at,
                code=token.code,
            ),
            manager,
            token,
        )

    return _issue_response(result)


# ============================================================================
# Validation and redemption
# ============================================================================


@router.post(
    "/validate",
    response_model=TokenValidationResponse,
    status_code=status.HTTP_200_OK,
    summary="Validate a token without consuming it",
)
async def validate_token(
    request: TokenPresentRequest,
    manager: TokenLifecycleManager = Depends(get_token_manager),
) -> TokenValidationResponse:
    result = await manager.validate(
        request.token,
        presented_subject=request.subject,
        presented_code=request.code,
    )
    return TokenValidationResponse(valid=result.valid, reason_code=result.reason_code)


@router.post(
    "/redeem",
    response_model=TokenRedeemResponse,
    status_code=status.HTTP_200_OK,
    summary="Validate and consume a token",
    description="Exactly one redemption of a token succeeds; later ones get 409.",
)
async def redeem_token(
    request: TokenPresentRequest,
    response: Response,
    manager: TokenLifecycleManager = Depends(get_token_manager),
) -> TokenRedeemResponse:
    result = await manager.redeem(
        request.token,
        presented_subject=request.subject,
        presented_code=request.code,
    )
    response.status_code = REDEEM_STATUS.get(result.reason_code, status.HTTP_400_BAD_REQUEST)

    if not result.success:
        return TokenRedeemResponse(success=False, reason_code=result.reason_code)

    return TokenRedeemResponse(
        success=True,
        reason_code=result.reason_code,
        subject=result.token.subject,
        purpose=result.token.purpose,
    )


@router.get(
    "/login-verification/status",
    response_model=LoginVerificationStatusResponse,
    status_code=status.HTTP_200_OK,
    summary="Check whether the caller must verify this login",
    description="A redeemed login code keeps the caller verified for LOGIN_VERIFIED_HOURS.",
)
async def login_verification_status(
    principal: Principal = Depends(get_current_principal),
    manager: TokenLifecycleManager = Depends(get_token_manager),
) -> LoginVerificationStatusResponse:
    # StoreUnavailableError goes to the 503 handler
    verification = await manager.login_verification_status(principal.subject)
    return LoginVerificationStatusResponse(
        needs_verification=verification.needs_verification,
        last_verified_at=verification.last_verified_at,
        verified_until=verification.verified_until,
    )
