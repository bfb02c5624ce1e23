"""
Tests for the in-process stores.

WHY: The memory stores have no database to serialize writes, so the
conditional operations must hold under concurrent tasks on their own.
"""

import asyncio
from datetime import timedelta

import pytest

from accessgate.core.exceptions import (
    ActiveTokenConflictError,
    DuplicateAddressError,
    InputError,
    InvalidStateTransitionError,
    ResourceNotFoundError,
)
from accessgate.stores.memory import MemoryAllowListStore, MemoryPublicAccessStore, MemoryTokenStore
from accessgate.stores.records import AddressType, PublicAccessConfig, TokenPurpose, TokenStatus
from tests.factories import FrozenClock, T0, TokenFactory


class TestMemoryAllowListStore:
    @pytest.mark.asyncio
    async def test_add_ipv6(self):
        store = MemoryAllowListStore(clock=FrozenClock())

        entry = await store.add("2001:DB8::1", " lab ", "admin-1")

        assert entry.address == "2001:DB8::1"
        assert entry.address_type is AddressType.IPV6
        assert entry.description == "lab"
        assert entry.added_at == T0

    @pytest.mark.asyncio
    async def test_add_rejects_invalid(self):
        with pytest.raises(InputError):
            await MemoryAllowListStore().add("1.2.3", "", "admin-1")

    @pytest.mark.asyncio
    async def test_mapped_ipv6_collides_with_ipv4(self):
        store = MemoryAllowListStore()
        await store.add("203.0.113.7", "", "admin-1")

        with pytest.raises(DuplicateAddressError):
            await store.add("::ffff:203.0.113.7", "", "admin-1")

    @pytest.mark.asyncio
    async def test_readd_after_remove(self):
        store = MemoryAllowListStore()
        entry = await store.add("203.0.113.7", "", "admin-1")
        await store.remove(entry.id)

        again = await store.add("203.0.113.7", "", "admin-1")

        assert again.id != entry.id

    @pytest.mark.asyncio
    async def test_remove_missing(self):
        with pytest.raises(ResourceNotFoundError):
            await MemoryAllowListStore().remove("missing")


class TestMemoryPublicAccessStore:
    @pytest.mark.asyncio
    async def test_default(self):
        assert await MemoryPublicAccessStore().get() == PublicAccessConfig()

    @pytest.mark.asyncio
    async def test_set_replaces_record(self):
        clock = FrozenClock()
        store = MemoryPublicAccessStore(clock=clock)

        await store.set(True, "admin-1", "demo")
        clock.advance(hours=1)
        config = await store.set(False, "admin-2")

        assert config == PublicAccessConfig(
            enabled=False,
            enabled_by="admin-2",
            enabled_at=T0 + timedelta(hours=1),
            reason="",
        )


class TestMemoryTokenStore:
    @pytest.mark.asyncio
    async def test_create_and_lookup(self):
        store = MemoryTokenStore()
        token = TokenFactory.build()

        assert await store.create(token) == token.id
        assert await store.get_by_id(token.id) == token
        assert await store.get_by_secret(token.secret) == token
        assert await store.get_by_subject_active(token.subject) == token
        assert await store.get_by_id("missing") is None

    @pytest.mark.asyncio
    async def test_one_active_token_per_subject(self):
        store = MemoryTokenStore()
        await store.create(TokenFactory.build(subject="a@example.com"))

        with pytest.raises(ActiveTokenConflictError):
            await store.create(TokenFactory.build(subject="a@example.com"))

        # A terminal token does not block a new one
        await store.create(TokenFactory.build(subject="b@example.com", status=TokenStatus.USED))
        await store.create(TokenFactory.build(subject="b@example.com"))

    @pytest.mark.asyncio
    async def test_concurrent_create(self):
        store = MemoryTokenStore()

        results = await asyncio.gather(
            *[store.create(TokenFactory.build(subject="a@example.com")) for _ in range(5)],
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, str)) == 1
        assert sum(1 for r in results if isinstance(r, ActiveTokenConflictError)) == 4

    @pytest.mark.asyncio
    async def test_compare_and_swap(self):
        store = MemoryTokenStore()
        token = TokenFactory.build()
        await store.create(token)
        at = T0 + timedelta(minutes=3)

        assert await store.compare_and_swap_status(token.id, TokenStatus.ACTIVE, TokenStatus.USED, at) is True
        assert await store.compare_and_swap_status(token.id, TokenStatus.ACTIVE, TokenStatus.EXPIRED, at) is False
        assert await store.compare_and_swap_status("missing", TokenStatus.ACTIVE, TokenStatus.USED, at) is False

        stored = await store.get_by_id(token.id)
        assert stored.status is TokenStatus.USED
        assert stored.used_at == at

    @pytest.mark.asyncio
    async def test_concurrent_compare_and_swap(self):
        store = MemoryTokenStore()
        token = TokenFactory.build()
        await store.create(token)

        results = await asyncio.gather(
            *[
                store.compare_and_swap_status(token.id, TokenStatus.ACTIVE, TokenStatus.USED, T0)
                for _ in range(20)
            ]
        )

        assert results.count(True) == 1

    @pytest.mark.asyncio
    async def test_counts_and_history(self):
        store = MemoryTokenStore()
        await store.create(TokenFactory.build(subject="a@example.com", status=TokenStatus.USED))
        await store.create(
            TokenFactory.build(subject="a@example.com", created_at=T0 + timedelta(minutes=30))
        )

        assert await store.count_created_since("a@example.com", T0) == 2
        assert await store.count_created_since("a@example.com", T0 + timedelta(minutes=1)) == 1
        assert await store.has_used("a@example.com", TokenPurpose.REGISTRATION) is True
        assert await store.has_used("a@example.com", TokenPurpose.LOGIN_VERIFICATION) is False

    @pytest.mark.asyncio
    async def test_illegal_transition_rejected(self):
        store = MemoryTokenStore()
        token = TokenFactory.build(status=TokenStatus.USED)
        await store.create(token)

        with pytest.raises(InvalidStateTransitionError):
            await store.compare_and_swap_status(token.id, TokenStatus.USED, TokenStatus.ACTIVE, T0)

        assert (await store.get_by_id(token.id)).status is TokenStatus.USED

    @pytest.mark.asyncio
    async def test_last_used_at(self):
        store = MemoryTokenStore()
        used = dict(subject="user-42", purpose=TokenPurpose.LOGIN_VERIFICATION, status=TokenStatus.USED)
        await store.create(TokenFactory.build(used_at=T0, **used))
        await store.create(TokenFactory.build(used_at=T0 + timedelta(hours=3), **used))

        assert await store.last_used_at("user-42", TokenPurpose.LOGIN_VERIFICATION) == T0 + timedelta(hours=3)
        assert await store.last_used_at("user-42", TokenPurpose.REGISTRATION) is None
        assert await store.last_used_at("user-7", TokenPurpose.LOGIN_VERIFICATION) is None

    @pytest.mark.asyncio
    async def test_reserve_code_attempt_stops_at_ceiling(self):
        store = MemoryTokenStore()
        token = TokenFactory.build()
        await store.create(token)

        results = await asyncio.gather(
            *[store.reserve_code_attempt(token.id, 3, T0) for _ in range(10)]
        )

        assert results.count(True) == 3
        stored = await store.get_by_id(token.id)
        assert stored.attempts == 3
        assert stored.last_attempt_at == T0
        assert await store.reserve_code_attempt("missing", 3, T0) is False

    @pytest.mark.asyncio
    async def test_release_code_attempt(self):
        store = MemoryTokenStore()
        token = TokenFactory.build(attempts=1)
        await store.create(token)

        await store.release_code_attempt(token.id)
        await store.release_code_attempt(token.id)
        await store.release_code_attempt("missing")

        assert (await store.get_by_id(token.id)).attempts == 0

    @pytest.mark.asyncio
    async def test_locks_are_dropped_after_use(self):
        """Lock registries must not grow with every token and subject ever seen."""
        store = MemoryTokenStore()
        tokens = [TokenFactory.build(subject=f"user{i}@example.com") for i in range(5)]
        await asyncio.gather(*[store.create(token) for token in tokens])
        await asyncio.gather(
            *[store.compare_and_swap_status(t.id, TokenStatus.ACTIVE, TokenStatus.USED, T0) for t in tokens],
            *[store.reserve_code_attempt(t.id, 5, T0) for t in tokens],
        )

        assert len(store._subject_locks) == 0
        assert len(store._token_locks) == 0

    @pytest.mark.asyncio
    async def test_purge(self):
        store = MemoryTokenStore()
        old = TokenFactory.build(subject="old@example.com", status=TokenStatus.EXPIRED)
        fresh = TokenFactory.build(subject="fresh@example.com", created_at=T0 + timedelta(days=2))
        await store.create(old)
        await store.create(fresh)

        assert await store.purge_terminal_before(T0 + timedelta(days=1)) == 1
        assert await store.get_by_id(old.id) is None
        assert await store.get_by_id(fresh.id) == fresh
