"""
Pydantic schemas for verification token endpoints.

WHY: Token responses must never carry the secret or the code back to the
caller that presents them; issuance responses only return the token id
and expiry, the credential itself goes through the notification channel.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from accessgate.services.token_lifecycle import TokenReason
from accessgate.stores.records import TokenPurpose


class TokenPresentRequest(BaseModel):
    """
    A token presented for validation or redemption.

    token is either the token id or the link secret.
    """

    token: str = Field(..., min_length=1, max_length=255)
    subject: Optional[str] = Field(default=None, max_length=255)
    code: Optional[str] = Field(default=None, max_length=12)

    class Config:
        json_schema_extra = {
            "example": {
                "token": "4f9c1d2e8b7a4c3d9e0f1a2b3c4d5e6f",
                "subject": "new.user@example.com",
                "code": "042917",
            }
        }


class TokenValidationResponse(BaseModel):
    valid: bool
    reason_code: TokenReason


class TokenRedeemResponse(BaseModel):
    """
    Redemption outcome.

    subject and purpose are only filled on success, so the caller can
    continue the registration or login flow for the right subject.
    """

    success: bool
    reason_code: TokenReason
    subject: Optional[str] = None
    purpose: Optional[TokenPurpose] = None


class RegistrationTokenRequest(BaseModel):
    """Invite a new account holder."""

    email: EmailStr = Field(..., description="E-mail the registration is tied to")


class TokenIssueResponse(BaseModel):
    success: bool
    reason_code: TokenReason
    token_id: Optional[str] = None
    purpose: Optional[TokenPurpose] = None
    expires_at: Optional[datetime] = None


class TokenCleanupRequest(BaseModel):
    """Delete tokens that expired more than older_than_days ago."""

    older_than_days: int = Field(default=30, ge=0, le=3650)


class TokenCleanupResponse(BaseModel):
    deleted: int
    cutoff: datetime


class LoginVerificationStatusResponse(BaseModel):
    """
    Whether the signed-in caller must confirm a login code again.

    A redeemed login-verification code keeps the caller verified until
    verified_until.
    """

    needs_verification: bool
    last_verified_at: Optional[datetime] = None
    verified_until: Optional[datetime] = None
