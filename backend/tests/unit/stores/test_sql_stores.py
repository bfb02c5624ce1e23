"""
Tests for the SQL stores on SQLite.

WHY: The SQL stores push conditional writes into the database (conditional
UPDATE, partial unique index, unique normalized address). These tests run
them against a real database file so the constraints actually fire.
"""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from accessgate.core.exceptions import (
    ActiveTokenConflictError,
    DuplicateAddressError,
    InputError,
    InvalidStateTransitionError,
    ResourceNotFoundError,
    StoreUnavailableError,
)
from accessgate.stores.records import AddressType, PublicAccessConfig, TokenPurpose, TokenStatus
from accessgate.stores.sql import SqlAllowListStore, SqlTokenStore
from tests.factories import FrozenClock, T0, TokenFactory


class TestSqlAllowListStore:
    @pytest.mark.asyncio
    async def test_add_list_remove(self, sql_session_factory):
        clock = FrozenClock()
        store = SqlAllowListStore(sql_session_factory, clock=clock)

        first = await store.add("203.0.113.7", "office", "admin-1")
        clock.advance(minutes=5)
        second = await store.add("2001:db8::1", "", "admin-1")

        assert first.address_type is AddressType.IPV4
        assert second.address_type is AddressType.IPV6
        assert second.added_at == T0 + timedelta(minutes=5)
        assert [entry.id for entry in await store.list()] == [second.id, first.id]

        await store.remove(first.id)

        assert [entry.id for entry in await store.list()] == [second.id]

    @pytest.mark.asyncio
    async def test_duplicate_normalized_address(self, sql_stores):
        await sql_stores.allow_list.add("::1", "", "admin-1")

        with pytest.raises(DuplicateAddressError):
            await sql_stores.allow_list.add("0:0:0:0:0:0:0:1", "", "admin-1")

        assert len(await sql_stores.allow_list.list()) == 1

    @pytest.mark.asyncio
    async def test_invalid_address(self, sql_stores):
        with pytest.raises(InputError):
            await sql_stores.allow_list.add("300.1.1.1", "", "admin-1")

    @pytest.mark.asyncio
    async def test_remove_missing(self, sql_stores):
        with pytest.raises(ResourceNotFoundError):
            await sql_stores.allow_list.remove("missing")


class TestSqlPublicAccessStore:
    @pytest.mark.asyncio
    async def test_default_without_row(self, sql_stores):
        assert await sql_stores.public_access.get() == PublicAccessConfig()

    @pytest.mark.asyncio
    async def test_set_then_replace(self, sql_stores):
        await sql_stores.public_access.set(True, "admin-1", "open house")
        config = await sql_stores.public_access.set(False, "admin-2")

        stored = await sql_stores.public_access.get()
        assert stored == config
        assert stored.enabled is False
        assert stored.enabled_by == "admin-2"
        assert stored.reason == ""


class TestSqlTokenStore:
    @pytest.mark.asyncio
    async def test_round_trip(self, sql_stores):
        token = TokenFactory.build(purpose=TokenPurpose.LOGIN_VERIFICATION, subject="user-42")
        await sql_stores.tokens.create(token)

        assert await sql_stores.tokens.get_by_id(token.id) == token
        assert await sql_stores.tokens.get_by_secret(token.secret) == token
        assert await sql_stores.tokens.get_by_subject_active("user-42") == token
        assert await sql_stores.tokens.get_by_secret("missing") is None

    @pytest.mark.asyncio
    async def test_active_subject_index(self, sql_stores):
        tokens = sql_stores.tokens
        first = TokenFactory.build(subject="a@example.com")
        await tokens.create(first)

        with pytest.raises(ActiveTokenConflictError):
            await tokens.create(TokenFactory.build(subject="a@example.com"))

        await tokens.compare_and_swap_status(first.id, TokenStatus.ACTIVE, TokenStatus.EXPIRED, T0)
        replacement = TokenFactory.build(subject="a@example.com")
        await tokens.create(replacement)

        assert (await tokens.get_by_subject_active("a@example.com")).id == replacement.id

    @pytest.mark.asyncio
    async def test_compare_and_swap(self, sql_stores):
        token = TokenFactory.build()
        await sql_stores.tokens.create(token)
        at = T0 + timedelta(hours=1)

        assert await sql_stores.tokens.compare_and_swap_status(
            token.id, TokenStatus.ACTIVE, TokenStatus.USED, at
        ) is True
        assert await sql_stores.tokens.compare_and_swap_status(
            token.id, TokenStatus.ACTIVE, TokenStatus.USED, at
        ) is False

        stored = await sql_stores.tokens.get_by_id(token.id)
        assert stored.status is TokenStatus.USED
        assert stored.used_at == at

    @pytest.mark.asyncio
    async def test_concurrent_compare_and_swap(self, sql_stores):
        """Separate connections racing on one row: exactly one UPDATE matches."""
        token = TokenFactory.build()
        await sql_stores.tokens.create(token)

        results = await asyncio.gather(
            *[
                sql_stores.tokens.compare_and_swap_status(
                    token.id, TokenStatus.ACTIVE, TokenStatus.USED, T0
                )
                for _ in range(5)
            ]
        )

        assert results.count(True) == 1

    @pytest.mark.asyncio
    async def test_concurrent_reserve_code_attempt(self, sql_stores):
        """The guarded UPDATE admits exactly the ceiling, however many race."""
        token = TokenFactory.build()
        await sql_stores.tokens.create(token)

        results = await asyncio.gather(
            *[sql_stores.tokens.reserve_code_attempt(token.id, 3, T0) for _ in range(10)]
        )

        assert results.count(True) == 3
        assert (await sql_stores.tokens.get_by_id(token.id)).attempts == 3

    @pytest.mark.asyncio
    async def test_last_used_at(self, sql_stores):
        used = dict(subject="user-42", purpose=TokenPurpose.LOGIN_VERIFICATION, status=TokenStatus.USED)
        await sql_stores.tokens.create(TokenFactory.build(used_at=T0, **used))
        await sql_stores.tokens.create(TokenFactory.build(used_at=T0 + timedelta(hours=3), **used))

        assert await sql_stores.tokens.last_used_at(
            "user-42", TokenPurpose.LOGIN_VERIFICATION
        ) == T0 + timedelta(hours=3)
        assert await sql_stores.tokens.last_used_at("user-7", TokenPurpose.LOGIN_VERIFICATION) is None

    @pytest.mark.asyncio
    async def test_illegal_transition_rejected(self, sql_stores):
        token = TokenFactory.build(status=TokenStatus.EXPIRED)
        await sql_stores.tokens.create(token)

        with pytest.raises(InvalidStateTransitionError):
            await sql_stores.tokens.compare_and_swap_status(
                token.id, TokenStatus.EXPIRED, TokenStatus.USED, T0
            )

    @pytest.mark.asyncio
    async def test_attempts_counts_and_history(self, sql_stores):
        tokens = sql_stores.tokens
        used = TokenFactory.build(subject="a@example.com", status=TokenStatus.USED)
        active = TokenFactory.build(subject="a@example.com", created_at=T0 + timedelta(minutes=10))
        await tokens.create(used)
        await tokens.create(active)

        assert await tokens.reserve_code_attempt(active.id, 2, T0) is True
        assert await tokens.reserve_code_attempt(active.id, 2, T0) is True
        assert await tokens.reserve_code_attempt(active.id, 2, T0) is False
        await tokens.release_code_attempt(active.id)
        assert (await tokens.get_by_id(active.id)).attempts == 1
        assert await tokens.reserve_code_attempt("missing", 2, T0) is False
        assert await tokens.count_created_since("a@example.com", T0) == 2
        assert await tokens.count_created_since("a@example.com", T0 + timedelta(minutes=5)) == 1
        assert await tokens.has_used("a@example.com", TokenPurpose.REGISTRATION) is True
        assert await tokens.has_used("b@example.com", TokenPurpose.REGISTRATION) is False

    @pytest.mark.asyncio
    async def test_purge(self, sql_stores):
        old = TokenFactory.build(subject="old@example.com", status=TokenStatus.USED)
        fresh = TokenFactory.build(subject="fresh@example.com", created_at=T0 + timedelta(days=3))
        await sql_stores.tokens.create(old)
        await sql_stores.tokens.create(fresh)

        assert await sql_stores.tokens.purge_terminal_before(T0 + timedelta(days=1)) == 1
        assert await sql_stores.tokens.get_by_id(old.id) is None


class TestDriverFailures:
    @pytest.mark.asyncio
    async def test_driver_error_becomes_store_unavailable(self):
        class BrokenFactory:
            def begin(self):
                raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        with pytest.raises(StoreUnavailableError):
            await SqlTokenStore(BrokenFactory()).get_by_id("anything")
