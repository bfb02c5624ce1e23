"""
Persisted record layouts shared by every store implementation.

WHAT: Plain dataclasses for allow-list entries, the public-access singleton
and verification tokens, plus their enumerations.

WHY: The core talks to stores only through these records, so the memory
and SQL stores are interchangeable and the core never sees ORM objects.
Field names are the contract the issuance and redemption surfaces honor.
"""

import enum
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from accessgate.core.exceptions import InvalidStateTransitionError


class AddressType(str, enum.Enum):
    """Address family of a validly formatted address."""

    IPV4 = "ipv4"
    IPV6 = "ipv6"


class TokenStatus(str, enum.Enum):
    """
    Lifecycle status of a verification token.

    Transitions are monotonic: ACTIVE -> USED or ACTIVE -> EXPIRED.
    USED and EXPIRED are terminal.
    """

    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"


class TokenPurpose(str, enum.Enum):
    """What a verification token authorizes."""

    REGISTRATION = "registration"
    """Single-use credential for one new-account creation (subject is an email)."""

    LOGIN_VERIFICATION = "login_verification"
    """Short-lived per-login re-confirmation of an authenticated session."""


# Only these moves exist; USED and EXPIRED have no way out
TOKEN_TRANSITIONS = {
    TokenStatus.ACTIVE: frozenset({TokenStatus.USED, TokenStatus.EXPIRED}),
}


def check_transition(current: TokenStatus, new: TokenStatus) -> None:
    """
    Reject a status move the token state machine does not have.

    Raises:
        InvalidStateTransitionError: If `current` cannot move to `new`
    """
    if new not in TOKEN_TRANSITIONS.get(current, frozenset()):
        raise InvalidStateTransitionError(current=current.value, requested=new.value)


@dataclass(frozen=True)
class AllowedAddress:
    """One authorized address. Never mutated in place."""

    id: str
    address: str
    address_type: AddressType
    description: str
    added_by: str
    added_at: datetime


@dataclass(frozen=True)
class PublicAccessConfig:
    """
    The public-access override singleton.

    Every write replaces the whole record with actor and timestamp.
    """

    enabled: bool = False
    enabled_by: Optional[str] = None
    enabled_at: Optional[datetime] = None
    reason: str = ""


@dataclass(frozen=True)
class VerificationToken:
    """Registration or login-verification token."""

    id: str
    subject: str
    purpose: TokenPurpose
    secret: str
    created_at: datetime
    expires_at: datetime
    status: TokenStatus = TokenStatus.ACTIVE
    code: Optional[str] = None
    attempts: int = 0
    last_attempt_at: Optional[datetime] = None
    used_at: Optional[datetime] = None

    def is_past_expiry(self, now: datetime) -> bool:
        return now > self.expires_at

    def with_status(self, status: TokenStatus, at: Optional[datetime] = None) -> "VerificationToken":
        """Copy with a new status; used_at is stamped on the USED transition."""
        check_transition(self.status, status)
        if status is TokenStatus.USED:
            return replace(self, status=status, used_at=at)
        return replace(self, status=status)
