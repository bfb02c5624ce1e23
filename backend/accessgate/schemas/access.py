"""
Pydantic schemas for access verification and allow-list administration.

WHY: Schemas define the request/response contracts for the access
endpoints. Field names follow the persisted records so the issuance and
redemption front-ends read the same shapes everywhere.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from accessgate.services.access_decision import AccessReason


class VerdictResponse(BaseModel):
    """
    Access decision result.

    WHY: reason_code is the machine-readable outcome; message is for display.
    """

    allowed: bool
    reason_code: AccessReason
    message: str
    matched_address: Optional[str] = None
    detected_type: Optional[str] = Field(default=None, description="ipv4 or ipv6")
    detected_addresses: List[str] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "allowed": True,
                "reason_code": "IP_AUTHORIZED",
                "message": "Access authorized",
                "matched_address": "203.0.113.7",
                "detected_type": "ipv4",
                "detected_addresses": ["203.0.113.7"],
            }
        }


class ValidateAddressRequest(BaseModel):
    """Address typed by an administrator before adding it."""

    address: str = Field(..., max_length=100, description="IPv4 or IPv6 address")


class ValidateAddressResponse(BaseModel):
    valid: bool
    type: Optional[str] = None
    error: Optional[str] = None


# ============================================================================
# Allow-list administration
# ============================================================================


class AllowedAddressCreate(BaseModel):
    """
    New allow-list entry.

    Format is validated by the service so the error message lists the
    accepted forms.
    """

    address: str = Field(..., max_length=100, description="IPv4 or IPv6 address")
    description: str = Field(default="", max_length=255)

    class Config:
        json_schema_extra = {
            "example": {
                "address": "203.0.113.7",
                "description": "Head office",
            }
        }


class AllowedAddressResponse(BaseModel):
    id: str
    address: str
    address_type: str
    description: str
    added_by: str
    added_at: datetime

    class Config:
        from_attributes = True


class AllowedAddressListResponse(BaseModel):
    items: List[AllowedAddressResponse]
    total: int


# ============================================================================
# Public access override
# ============================================================================


class PublicAccessUpdate(BaseModel):
    """
    Toggle the public-access override.

    WHY: reason is stored with the actor and timestamp so every toggle
    can be explained later.
    """

    enabled: bool
    reason: str = Field(default="", max_length=500)


class PublicAccessResponse(BaseModel):
    enabled: bool
    enabled_by: Optional[str] = None
    enabled_at: Optional[datetime] = None
    reason: str = ""

    class Config:
        from_attributes = True
