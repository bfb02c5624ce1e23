"""
Store interfaces consumed by the access-decision and token-lifecycle core.

WHAT: Abstract base classes for the allow-list, the public-access singleton
and the verification-token collection.

WHY: The core depends only on these narrow contracts. Implementations live
in accessgate.stores.memory and accessgate.stores.sql and are owned by the
process-wide registry (accessgate.stores.registry).

Every method may raise StoreUnavailableError for infrastructure failures.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from accessgate.stores.records import (
    AllowedAddress,
    PublicAccessConfig,
    TokenPurpose,
    TokenStatus,
    VerificationToken,
)


class AllowListStore(ABC):
    """Durable set of authorized addresses."""

    @abstractmethod
    async def list(self) -> List[AllowedAddress]:
        """Return all entries, newest first."""

    @abstractmethod
    async def add(self, address: str, description: str, actor: str) -> AllowedAddress:
        """
        Add an address.

        Raises:
            InputError: If the address is not a valid IPv4/IPv6 address
            DuplicateAddressError: If the normalized address is already listed
        """

    @abstractmethod
    async def remove(self, entry_id: str) -> None:
        """
        Delete an entry.

        Raises:
            ResourceNotFoundError: If no entry has this id
        """


class PublicAccessStore(ABC):
    """Durable public-access override singleton."""

    @abstractmethod
    async def get(self) -> PublicAccessConfig:
        """Return the current config (disabled default when never written)."""

    @abstractmethod
    async def set(self, enabled: bool, actor: str, reason: str = "") -> PublicAccessConfig:
        """Replace the whole record, stamping actor and time."""


class TokenStore(ABC):
    """Durable collection of verification tokens."""

    @abstractmethod
    async def create(self, record: VerificationToken) -> str:
        """
        Persist a new ACTIVE token if the subject has no ACTIVE token.

        The check and the insert are one atomic step.

        Returns:
            The record id

        Raises:
            ActiveTokenConflictError: If the subject already has an ACTIVE token
        """

    @abstractmethod
    async def get_by_id(self, token_id: str) -> Optional[VerificationToken]:
        """Look up a token by its id."""

    @abstractmethod
    async def get_by_secret(self, secret: str) -> Optional[VerificationToken]:
        """Look up a token by the opaque secret used in links."""

    @abstractmethod
    async def get_by_subject_active(self, subject: str) -> Optional[VerificationToken]:
        """Return the subject's ACTIVE token (it may be past expiry)."""

    @abstractmethod
    async def compare_and_swap_status(
        self,
        token_id: str,
        expected: TokenStatus,
        new: TokenStatus,
        at: datetime,
    ) -> bool:
        """
        Atomically move a token from `expected` to `new`.

        Returns:
            True if this call performed the transition, False on conflict
            (the token is missing or no longer in `expected`)
        """

    @abstractmethod
    async def count_created_since(self, subject: str, since: datetime) -> int:
        """Number of tokens created for the subject at or after `since`."""

    @abstractmethod
    async def has_used(self, subject: str, purpose: TokenPurpose) -> bool:
        """Whether the subject holds a USED token of this purpose."""

    @abstractmethod
    async def last_used_at(self, subject: str, purpose: TokenPurpose) -> Optional[datetime]:
        """When the subject most recently redeemed a token of this purpose, if ever."""

    @abstractmethod
    async def reserve_code_attempt(self, token_id: str, max_attempts: int, at: datetime) -> bool:
        """
        Claim one code attempt if the token is still below `max_attempts`.

        The check and the increment (which also stamps last_attempt_at) are
        one atomic step, so concurrent callers can never claim more than
        `max_attempts` slots between them.

        Returns:
            True if a slot was claimed, False if the ceiling is reached or
            the token does not exist
        """

    @abstractmethod
    async def release_code_attempt(self, token_id: str) -> None:
        """Give back a slot claimed by reserve_code_attempt (the code matched)."""

    @abstractmethod
    async def purge_terminal_before(self, cutoff: datetime) -> int:
        """
        Administrative cleanup: delete every token whose expires_at is
        before `cutoff`, whatever its status.

        Returns:
            Number of tokens deleted
        """
