"""
Access administration service.

WHAT: Administrator operations on the allow-list and the public-access
override.

WHY: Every change to who can reach the platform must be validated and
attributable. Input is checked with the same validator the decision
engine uses, and every write carries the acting administrator.

HOW: Thin layer over AllowListStore / PublicAccessStore. Unlike the
decision engine, errors are raised (InputError, DuplicateAddressError,
ResourceNotFoundError, StoreUnavailableError) and rendered by the API
exception handlers.
"""

import asyncio
import logging
from typing import Awaitable, List, TypeVar

from accessgate.core.exceptions import InputError, StoreUnavailableError
from accessgate.services import ip_validation
from accessgate.stores.interfaces import AllowListStore, PublicAccessStore
from accessgate.stores.records import AllowedAddress, PublicAccessConfig


logger = logging.getLogger(__name__)

T = TypeVar("T")


class AccessAdminService:
    """
    Allow-list and public-access administration.

    Args:
        allow_list_store: Allow-list persistence
        public_access_store: Public-access singleton persistence
        timeout: Seconds allowed per store call
    """

    def __init__(
        self,
        allow_list_store: AllowListStore,
        public_access_store: PublicAccessStore,
        timeout: float = 5.0,
    ):
        self.allow_list_store = allow_list_store
        self.public_access_store = public_access_store
        self.timeout = timeout

    async def list_allowed_addresses(self) -> List[AllowedAddress]:
        return await self._call(self.allow_list_store.list())

    async def add_allowed_address(
        self,
        address: str,
        description: str,
        actor: str,
    ) -> AllowedAddress:
        """
        Add an address to the allow-list.

        Raises:
            InputError: If the address is empty or malformed
            DuplicateAddressError: If the (normalized) address is already listed
        """
        result = ip_validation.validate(address)
        if not result.valid:
            raise InputError(message=result.error, address=address)

        entry = await self._call(self.allow_list_store.add(address, description, actor))

        logger.info(
            f"Allow-list entry added: {entry.address}",
            extra={"entry_id": entry.id, "actor": actor, "address_type": entry.address_type.value},
        )
        return entry

    async def remove_allowed_address(self, entry_id: str, actor: str) -> None:
        """
        Remove an allow-list entry.

        Raises:
            ResourceNotFoundError: If no entry has this id
        """
        await self._call(self.allow_list_store.remove(entry_id))
        logger.info("Allow-list entry removed", extra={"entry_id": entry_id, "actor": actor})

    async def get_public_access(self) -> PublicAccessConfig:
        return await self._call(self.public_access_store.get())

    async def set_public_access(
        self,
        enabled: bool,
        actor: str,
        reason: str = "",
    ) -> PublicAccessConfig:
        """Replace the public-access record, stamping actor and time."""
        config = await self._call(self.public_access_store.set(enabled, actor, reason))

        if enabled:
            # Every address check is skipped while this is on
            logger.warning(
                "Public access ENABLED",
                extra={"actor": actor, "reason": reason},
            )
        else:
            logger.info("Public access disabled", extra={"actor": actor, "reason": reason})
        return config

    async def _call(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, self.timeout)
        except asyncio.TimeoutError as e:
            raise StoreUnavailableError(message="Access store timed out") from e
