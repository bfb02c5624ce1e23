"""
Verification token DAO for managing verification tokens.

WHAT: Provides data access operations for verification tokens including
creation, lookup, conditional status transitions and cleanup.

WHY: Token operations require specific query patterns:
1. Status changes must be conditional UPDATEs (compare-and-swap), never a
   read followed by a write, so two concurrent redemptions cannot both win
2. Code attempts are claimed with a guarded increment in SQL for the same
   reason, so concurrent guesses cannot exceed the ceiling
3. Lookups by secret and by subject must be indexed

HOW: Extends BaseDAO with token-specific methods:
- get_by_secret: Find token by link secret
- get_active_for_subject: Find the subject's active token
- compare_and_swap_status: UPDATE ... WHERE id = :id AND status = :expected
- reserve_attempt: UPDATE ... SET attempts = attempts + 1 WHERE attempts < :max
- count_created_since / exists_with_status / latest_used_at: rate limiting,
  single-use checks and the login-verification marker
- delete_expired_before: administrative cleanup
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import select, and_, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from accessgate.dao.base import BaseDAO
from accessgate.models.verification_token import VerificationTokenModel
from accessgate.stores.records import TokenPurpose, TokenStatus


class VerificationTokenDAO(BaseDAO[VerificationTokenModel]):
    """
    Data Access Object for verification tokens.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize VerificationToken DAO.

        Args:
            session: AsyncSession for database operations
        """
        super().__init__(VerificationTokenModel, session)

    async def get_by_secret(self, secret: str) -> Optional[VerificationTokenModel]:
        """
        Get verification token by link secret.

        Args:
            secret: Secret string to look up

        Returns:
            VerificationTokenModel if found, None otherwise
        """
        result = await self.session.execute(
            select(VerificationTokenModel).where(VerificationTokenModel.secret == secret)
        )
        return result.scalar_one_or_none()

    async def get_active_for_subject(self, subject: str) -> Optional[VerificationTokenModel]:
        """
        Get the subject's active token.

        The partial unique index guarantees at most one row.
        """
        result = await self.session.execute(
            select(VerificationTokenModel).where(
                and_(
                    VerificationTokenModel.subject == subject,
                    VerificationTokenModel.status == TokenStatus.ACTIVE,
                )
            )
        )
        return result.scalar_one_or_none()

    async def compare_and_swap_status(
        self,
        token_id: str,
        expected: TokenStatus,
        new: TokenStatus,
        at: datetime,
    ) -> bool:
        """
        Conditionally move a token between statuses.

        WHAT: Single UPDATE guarded by the expected status.

        WHY: The database serializes concurrent UPDATEs on the same row;
        only the first sees status == expected, every other one matches
        zero rows.

        Args:
            token_id: Token to transition
            expected: Status the token must currently have
            new: Status to set
            at: Transition time (stored as used_at for USED)

        Returns:
            True if exactly one row was updated
        """
        values = {"status": new}
        if new is TokenStatus.USED:
            values["used_at"] = at

        stmt = (
            update(VerificationTokenModel)
            .where(
                and_(
                    VerificationTokenModel.id == token_id,
                    VerificationTokenModel.status == expected,
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def reserve_attempt(self, token_id: str, max_attempts: int, at: datetime) -> bool:
        """
        Claim one code attempt while the counter is below the ceiling.

        WHY: Checking attempts in Python and incrementing afterwards lets
        every concurrent guess read the same stale count. The guard in the
        WHERE clause makes the database admit at most `max_attempts`.

        Returns:
            True if the counter was incremented
        """
        stmt = (
            update(VerificationTokenModel)
            .where(
                and_(
                    VerificationTokenModel.id == token_id,
                    VerificationTokenModel.attempts < max_attempts,
                )
            )
            .values(
                attempts=VerificationTokenModel.attempts + 1,
                last_attempt_at=at,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def release_attempt(self, token_id: str) -> None:
        """Undo a reservation whose code turned out to be correct."""
        stmt = (
            update(VerificationTokenModel)
            .where(
                and_(
                    VerificationTokenModel.id == token_id,
                    VerificationTokenModel.attempts > 0,
                )
            )
            .values(attempts=VerificationTokenModel.attempts - 1)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)

    async def count_created_since(self, subject: str, since: datetime) -> int:
        """Number of tokens created for the subject at or after `since`."""
        result = await self.session.execute(
            select(func.count(VerificationTokenModel.id)).where(
                and_(
                    VerificationTokenModel.subject == subject,
                    VerificationTokenModel.created_at >= since,
                )
            )
        )
        return result.scalar_one()

    async def exists_with_status(
        self,
        subject: str,
        purpose: TokenPurpose,
        status: TokenStatus,
    ) -> bool:
        """Whether the subject has a token of this purpose in this status."""
        result = await self.session.execute(
            select(VerificationTokenModel.id)
            .where(
                and_(
                    VerificationTokenModel.subject == subject,
                    VerificationTokenModel.purpose == purpose,
                    VerificationTokenModel.status == status,
                )
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def latest_used_at(self, subject: str, purpose: TokenPurpose) -> Optional[datetime]:
        """Most recent used_at of the subject's redeemed tokens of this purpose."""
        result = await self.session.execute(
            select(func.max(VerificationTokenModel.used_at)).where(
                and_(
                    VerificationTokenModel.subject == subject,
                    VerificationTokenModel.purpose == purpose,
                    VerificationTokenModel.status == TokenStatus.USED,
                )
            )
        )
        return result.scalar_one_or_none()

    async def delete_expired_before(self, cutoff: datetime) -> int:
        """
        Delete tokens whose expiry is before the cutoff.

        Returns:
            Number of tokens deleted
        """
        stmt = delete(VerificationTokenModel).where(VerificationTokenModel.expires_at < cutoff)
        result = await self.session.execute(stmt)
        return result.rowcount
