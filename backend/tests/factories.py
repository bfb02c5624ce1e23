"""
Test factories for creating test data.

WHY: Factories provide a consistent way to create records and a pinned
clock, so time-dependent token tests never depend on the wall clock.
"""

import uuid
from datetime import datetime, timedelta
from typing import Optional

from accessgate.stores.records import TokenPurpose, TokenStatus, VerificationToken


T0 = datetime(2026, 3, 2, 9, 0, 0)


class FrozenClock:
    """
    Manually advanced clock.

    Usage:
        clock = FrozenClock()
        clock.advance(hours=13)
    """

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class TokenFactory:
    """Factory for VerificationToken records."""

    @staticmethod
    def build(
        subject: str = "new.user@example.com",
        purpose: TokenPurpose = TokenPurpose.REGISTRATION,
        created_at: datetime = T0,
        lifetime: timedelta = timedelta(hours=12),
        status: TokenStatus = TokenStatus.ACTIVE,
        code: Optional[str] = "123456",
        attempts: int = 0,
        **overrides,
    ) -> VerificationToken:
        fields = dict(
            id=uuid.uuid4().hex,
            subject=subject,
            purpose=purpose,
            secret=f"secret-{uuid.uuid4().hex}",
            created_at=created_at,
            expires_at=created_at + lifetime,
            status=status,
            code=code,
            attempts=attempts,
        )
        fields.update(overrides)
        return VerificationToken(**fields)
