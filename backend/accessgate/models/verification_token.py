"""
Verification token model for registration and login re-verification.

WHAT: Stores time-boxed, single-use tokens.

WHY: Secure token-based verification requires:
1. Time-limited tokens to prevent stale token attacks
2. One-time use to prevent token reuse attacks
3. Cryptographically secure token generation
4. At most one active token per subject

HOW: Tokens are stored with:
- A secret (secrets.token_urlsafe) used in links, and an optional short code
- Expiration time fixed at creation
- status (active/used/expired) moved only by conditional UPDATEs
- A partial unique index on subject restricted to active rows, which makes
  "create only if the subject has no active token" a single atomic insert
"""

from sqlalchemy import Column, Integer, String, Enum, DateTime, Index, text

from accessgate.models.base import Base, PrimaryKeyMixin
from accessgate.stores.records import TokenPurpose, TokenStatus, VerificationToken


def _enum_values(members):
    return [member.value for member in members]


class VerificationTokenModel(Base, PrimaryKeyMixin):
    """
    Verification token row.

    Status values are stored as their lowercase values so the partial index
    predicate can be written in plain SQL.
    """

    __tablename__ = "verification_tokens"

    # Email (registration) or user id (login verification)
    subject = Column(String(255), nullable=False, index=True)

    purpose = Column(
        Enum(
            TokenPurpose,
            name="tokenpurpose",
            native_enum=False,
            length=32,
            values_callable=_enum_values,
        ),
        nullable=False,
    )

    # Opaque secret used in links
    # WHY: 32 bytes of random data, infeasible to guess
    secret = Column(String(255), unique=True, index=True, nullable=False)

    # Short numeric code typed by the user (optional)
    code = Column(String(12), nullable=True)

    status = Column(
        Enum(
            TokenStatus,
            name="tokenstatus",
            native_enum=False,
            length=16,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=TokenStatus.ACTIVE,
    )

    # Failed code attempts
    attempts = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime, nullable=True)

    __table_args__ = (
        # One active token per subject
        Index(
            "uq_verification_tokens_active_subject",
            "subject",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
        # Rate-limit counting by subject and creation time
        Index(
            "ix_verification_tokens_subject_created",
            "subject",
            "created_at",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<VerificationToken(id={self.id}, purpose={self.purpose}, "
            f"status={self.status}, expires_at={self.expires_at})>"
        )

    @classmethod
    def from_record(cls, record: VerificationToken) -> "VerificationTokenModel":
        return cls(
            id=record.id,
            subject=record.subject,
            purpose=record.purpose,
            secret=record.secret,
            code=record.code,
            status=record.status,
            attempts=record.attempts,
            last_attempt_at=record.last_attempt_at,
            created_at=record.created_at,
            expires_at=record.expires_at,
            used_at=record.used_at,
        )

    def to_record(self) -> VerificationToken:
        return VerificationToken(
            id=self.id,
            subject=self.subject,
            purpose=self.purpose,
            secret=self.secret,
            code=self.code,
            status=self.status,
            attempts=self.attempts or 0,
            last_attempt_at=self.last_attempt_at,
            created_at=self.created_at,
            expires_at=self.expires_at,
            used_at=self.used_at,
        )
