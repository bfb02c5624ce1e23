"""
In-process store implementations.

WHAT: Memory-backed AllowListStore, PublicAccessStore and TokenStore.

WHY: Used for development/offline mode, single-worker deployments and
tests of the core. They hold process-wide state, so they are created once
by the store registry at startup and dropped at shutdown.

HOW: There is no native compare-and-swap in a dict, so every conditional
write runs inside a mutual-exclusion scope:
- one asyncio.Lock per token id for status transitions and attempt counts
- one asyncio.Lock per subject for create-if-no-active-token
- one lock for the allow-list uniqueness check + insert
Locks are taken with `async with`, so they are released on every exit path,
and a lock is forgotten once no task holds or waits for it.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional

from accessgate.core.clock import Clock, utcnow
from accessgate.core.exceptions import (
    ActiveTokenConflictError,
    DuplicateAddressError,
    InputError,
    ResourceNotFoundError,
)
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


class _LockRegistry:
    """asyncio locks keyed by an arbitrary string, dropped once unused."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        # Bookkeeping runs without yielding, so two tasks cannot create two locks
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class MemoryAllowListStore(AllowListStore):
    """Allow-list kept in a dict keyed by normalized address."""

    def __init__(self, clock: Clock = utcnow) -> None:
        self._clock = clock
        self._entries: Dict[str, AllowedAddress] = {}
        self._lock = asyncio.Lock()

    async def list(self) -> List[AllowedAddress]:
        return sorted(self._entries.values(), key=lambda entry: entry.added_at, reverse=True)

    async def add(self, address: str, description: str, actor: str) -> AllowedAddress:
        result = ip_validation.validate(address)
        if not result.valid:
            raise InputError(message=result.error, address=address)

        trimmed = address.strip()
        normalized = ip_validation.normalize(trimmed)

        async with self._lock:
            if normalized in self._entries:
                raise DuplicateAddressError(address=trimmed)

            entry = AllowedAddress(
                id=uuid.uuid4().hex,
                address=trimmed,
                address_type=result.type.as_address_type(),
                description=(description or "").strip(),
                added_by=actor,
                added_at=self._clock(),
            )
            self._entries[normalized] = entry

        return entry

    async def remove(self, entry_id: str) -> None:
        async with self._lock:
            for normalized, entry in self._entries.items():
                if entry.id == entry_id:
                    del self._entries[normalized]
                    return

        raise ResourceNotFoundError(
            message="IP address not found",
            resource_type="AllowedAddress",
            resource_id=entry_id,
        )


class MemoryPublicAccessStore(PublicAccessStore):
    """Public-access singleton held in one attribute."""

    def __init__(self, clock: Clock = utcnow) -> None:
        self._clock = clock
        self._config = PublicAccessConfig()

    async def get(self) -> PublicAccessConfig:
        return self._config

    async def set(self, enabled: bool, actor: str, reason: str = "") -> PublicAccessConfig:
        # Whole-record replacement; a single assignment cannot be torn
        self._config = PublicAccessConfig(
            enabled=enabled,
            enabled_by=actor,
            enabled_at=self._clock(),
            reason=reason or "",
        )
        return self._config


class MemoryTokenStore(TokenStore):
    """Token collection kept in a dict keyed by id."""

    def __init__(self) -> None:
        self._tokens: Dict[str, VerificationToken] = {}
        self._token_locks = _LockRegistry()
        self._subject_locks = _LockRegistry()

    async def create(self, record: VerificationToken) -> str:
        async with self._subject_locks.hold(record.subject):
            if self._active_for(record.subject) is not None:
                raise ActiveTokenConflictError(subject=record.subject)
            self._tokens[record.id] = record
        return record.id

    async def get_by_id(self, token_id: str) -> Optional[VerificationToken]:
        return self._tokens.get(token_id)

    async def get_by_secret(self, secret: str) -> Optional[VerificationToken]:
        for token in self._tokens.values():
            if token.secret == secret:
                return token
        return None

    async def get_by_subject_active(self, subject: str) -> Optional[VerificationToken]:
        return self._active_for(subject)

    async def compare_and_swap_status(
        self,
        token_id: str,
        expected: TokenStatus,
        new: TokenStatus,
        at: datetime,
    ) -> bool:
        check_transition(expected, new)
        async with self._token_locks.hold(token_id):
            current = self._tokens.get(token_id)
            if current is None or current.status is not expected:
                return False
            self._tokens[token_id] = current.with_status(new, at)
            return True

    async def count_created_since(self, subject: str, since: datetime) -> int:
        return sum(
            1
            for token in self._tokens.values()
            if token.subject == subject and token.created_at >= since
        )

    async def has_used(self, subject: str, purpose: TokenPurpose) -> bool:
        return any(
            token.subject == subject
            and token.purpose is purpose
            and token.status is TokenStatus.USED
            for token in self._tokens.values()
        )

    async def last_used_at(self, subject: str, purpose: TokenPurpose) -> Optional[datetime]:
        used = [
            token.used_at
            for token in self._tokens.values()
            if token.subject == subject
            and token.purpose is purpose
            and token.status is TokenStatus.USED
            and token.used_at is not None
        ]
        return max(used, default=None)

    async def reserve_code_attempt(self, token_id: str, max_attempts: int, at: datetime) -> bool:
        async with self._token_locks.hold(token_id):
            current = self._tokens.get(token_id)
            if current is None or current.attempts >= max_attempts:
                return False
            self._tokens[token_id] = replace(
                current, attempts=current.attempts + 1, last_attempt_at=at
            )
            return True

    async def release_code_attempt(self, token_id: str) -> None:
        async with self._token_locks.hold(token_id):
            current = self._tokens.get(token_id)
            if current is not None and current.attempts > 0:
                self._tokens[token_id] = replace(current, attempts=current.attempts - 1)

    async def purge_terminal_before(self, cutoff: datetime) -> int:
        stale = [
            token_id
            for token_id, token in self._tokens.items()
            if token.expires_at < cutoff
        ]
        for token_id in stale:
            async with self._token_locks.hold(token_id):
                self._tokens.pop(token_id, None)

        if stale:
            logger.info(f"Purged {len(stale)} verification tokens expired before {cutoff.isoformat()}")
        return len(stale)

    def _active_for(self, subject: str) -> Optional[VerificationToken]:
        for token in self._tokens.values():
            if token.subject == subject and token.status is TokenStatus.ACTIVE:
                return token
        return None
