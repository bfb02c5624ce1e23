"""
SQLAlchemy-backed store implementations.

WHAT: AllowListStore, PublicAccessStore and TokenStore over an async
SQLAlchemy session factory.

WHY: Every store method is one short transaction, so each mutation is a
single atomic call: a cancelled request either committed or left nothing
behind. Conditional writes are pushed into the database:
- token consumption is UPDATE ... WHERE status = 'active' (rowcount 1 wins)
- "one active token per subject" is a partial unique index
- allow-list uniqueness is a unique normalized_address column

HOW: DAOs build the queries; this module owns transactions, converts rows
to records and maps driver failures to StoreUnavailableError.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from accessgate.core.clock import Clock, utcnow
from accessgate.core.exceptions import (
    ActiveTokenConflictError,
    DuplicateAddressError,
    InputError,
    ResourceNotFoundError,
    StoreUnavailableError,
)
from accessgate.dao.allowed_address import AllowedAddressDAO
from accessgate.dao.public_access import PublicAccessConfigDAO
from accessgate.dao.verification_token import VerificationTokenDAO
from accessgate.models.allowed_address import AllowedAddressModel
from accessgate.models.verification_token import VerificationTokenModel
from accessgate.services import ip_validation
from accessgate.stores.interfaces import AllowListStore, PublicAccessStore, TokenStore
from accessgate.stores.records import (
    AllowedAddress,
    PublicAccessConfig,
    TokenPurpose,
    TokenStatus,
    VerificationToken,
    check_transition,
)


logger = logging.getLogger(__name__)


class _SqlStore:
    """Shared transaction handling."""

    store_name = "sql"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        """
        Run the body in one transaction, committed on exit.

        IntegrityError is re-raised untouched so callers can turn constraint
        violations into domain errors; every other driver error becomes
        StoreUnavailableError.
        """
        try:
            async with self._session_factory.begin() as session:
                yield session
        except IntegrityError:
            raise
        except (SQLAlchemyError, OSError) as e:
            logger.error(
                f"{self.store_name} store operation failed: {e.__class__.__name__}",
                extra={"store": self.store_name, "error": str(e)},
            )
            raise StoreUnavailableError(store=self.store_name) from e


class SqlAllowListStore(_SqlStore, AllowListStore):
    """Allow-list backed by the allowed_addresses table."""

    store_name = "allow_list"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], clock: Clock = utcnow):
        super().__init__(session_factory)
        self._clock = clock

    async def list(self) -> List[AllowedAddress]:
        async with self._transaction() as session:
            rows = await AllowedAddressDAO(session).list_newest_first()
            return [row.to_record() for row in rows]

    async def add(self, address: str, description: str, actor: str) -> AllowedAddress:
        result = ip_validation.validate(address)
        if not result.valid:
            raise InputError(message=result.error, address=address)

        trimmed = address.strip()
        row = AllowedAddressModel(
            address=trimmed,
            normalized_address=ip_validation.normalize(trimmed),
            address_type=result.type.as_address_type(),
            description=(description or "").strip(),
            added_by=actor,
            added_at=self._clock(),
        )

        try:
            async with self._transaction() as session:
                await AllowedAddressDAO(session).add(row)
        except IntegrityError as e:
            raise DuplicateAddressError(address=trimmed) from e

        return row.to_record()

    async def remove(self, entry_id: str) -> None:
        async with self._transaction() as session:
            deleted = await AllowedAddressDAO(session).delete(entry_id)

        if not deleted:
            raise ResourceNotFoundError(
                message="IP address not found",
                resource_type="AllowedAddress",
                resource_id=entry_id,
            )


class SqlPublicAccessStore(_SqlStore, PublicAccessStore):
    """Public-access singleton backed by the public_access_config table."""

    store_name = "public_access"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], clock: Clock = utcnow):
        super().__init__(session_factory)
        self._clock = clock

    async def get(self) -> PublicAccessConfig:
        async with self._transaction() as session:
            row = await PublicAccessConfigDAO(session).get_singleton()
            return row.to_record() if row else PublicAccessConfig()

    async def set(self, enabled: bool, actor: str, reason: str = "") -> PublicAccessConfig:
        enabled_at = self._clock()
        try:
            return await self._replace(enabled, actor, enabled_at, reason or "")
        except IntegrityError:
            # Two first-ever writes raced on the insert; the row exists now
            return await self._replace(enabled, actor, enabled_at, reason or "")

    async def _replace(
        self,
        enabled: bool,
        actor: str,
        enabled_at: datetime,
        reason: str,
    ) -> PublicAccessConfig:
        async with self._transaction() as session:
            row = await PublicAccessConfigDAO(session).replace(
                enabled=enabled,
                enabled_by=actor,
                enabled_at=enabled_at,
                reason=reason,
            )
            return row.to_record()


class SqlTokenStore(_SqlStore, TokenStore):
    """Token collection backed by the verification_tokens table."""

    store_name = "tokens"

    async def create(self, record: VerificationToken) -> str:
        try:
            async with self._transaction() as session:
                await VerificationTokenDAO(session).add(VerificationTokenModel.from_record(record))
        except IntegrityError as e:
            # Either the active-subject index or (astronomically unlikely) a
            # secret collision; both mean this insert must not win.
            raise ActiveTokenConflictError(subject=record.subject) from e
        return record.id

    async def get_by_id(self, token_id: str) -> Optional[VerificationToken]:
        async with self._transaction() as session:
            row = await VerificationTokenDAO(session).get_by_id(token_id)
            return row.to_record() if row else None

    async def get_by_secret(self, secret: str) -> Optional[VerificationToken]:
        async with self._transaction() as session:
            row = await VerificationTokenDAO(session).get_by_secret(secret)
            return row.to_record() if row else None

    async def get_by_subject_active(self, subject: str) -> Optional[VerificationToken]:
        async with self._transaction() as session:
            row = await VerificationTokenDAO(session).get_active_for_subject(subject)
            return row.to_record() if row else None

    async def compare_and_swap_status(
        self,
        token_id: str,
        expected: TokenStatus,
        new: TokenStatus,
        at: datetime,
    ) -> bool:
        check_transition(expected, new)
        async with self._transaction() as session:
            return await VerificationTokenDAO(session).compare_and_swap_status(
                token_id, expected, new, at
            )

    async def count_created_since(self, subject: str, since: datetime) -> int:
        async with self._transaction() as session:
            return await VerificationTokenDAO(session).count_created_since(subject, since)

    async def has_used(self, subject: str, purpose: TokenPurpose) -> bool:
        async with self._transaction() as session:
            return await VerificationTokenDAO(session).exists_with_status(
                subject, purpose, TokenStatus.USED
            )

    async def last_used_at(self, subject: str, purpose: TokenPurpose) -> Optional[datetime]:
        async with self._transaction() as session:
            return await VerificationTokenDAO(session).latest_used_at(subject, purpose)

    async def reserve_code_attempt(self, token_id: str, max_attempts: int, at: datetime) -> bool:
        async with self._transaction() as session:
            return await VerificationTokenDAO(session).reserve_attempt(token_id, max_attempts, at)

    async def release_code_attempt(self, token_id: str) -> None:
        async with self._transaction() as session:
            await VerificationTokenDAO(session).release_attempt(token_id)

    async def purge_terminal_before(self, cutoff: datetime) -> int:
        async with self._transaction() as session:
            deleted = await VerificationTokenDAO(session).delete_expired_before(cutoff)

        if deleted:
            logger.info(f"Purged {deleted} verification tokens expired before {cutoff.isoformat()}")
        return deleted
