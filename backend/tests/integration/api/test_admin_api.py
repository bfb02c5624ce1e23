"""
Integration tests for the administration endpoints.

WHY: Only administrators may change who reaches the platform, and every
change must be attributed to them.
"""

from datetime import timedelta

import pytest
from httpx import AsyncClient

from accessgate.core.clock import utcnow
from accessgate.stores.records import TokenStatus
from accessgate.stores.registry import AccessStores
from tests.factories import TokenFactory


ADDRESSES_URL = "/api/admin/allowed-addresses"
PUBLIC_ACCESS_URL = "/api/admin/public-access"


class TestAdminAuthorization:
    @pytest.mark.asyncio
    async def test_requires_authentication(self, client: AsyncClient):
        response = await client.get(ADDRESSES_URL)

        assert response.status_code == 401
        assert response.json()["error"] == "AuthenticationError"

    @pytest.mark.asyncio
    async def test_rejects_invalid_token(self, client: AsyncClient):
        response = await client.get(ADDRESSES_URL, headers={"Authorization": "Bearer garbage"})

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_requires_admin_role(self, client: AsyncClient, user_headers):
        response = await client.put(PUBLIC_ACCESS_URL, json={"enabled": True}, headers=user_headers)

        assert response.status_code == 403


class TestAllowedAddresses:
    @pytest.mark.asyncio
    async def test_add_and_list(self, client: AsyncClient, admin_headers):
        created = await client.post(
            ADDRESSES_URL,
            json={"address": " 203.0.113.7 ", "description": "Head office"},
            headers=admin_headers,
        )

        assert created.status_code == 201
        entry = created.json()
        assert entry["address"] == "203.0.113.7"
        assert entry["address_type"] == "ipv4"
        assert entry["added_by"] == "admin-1"

        listed = await client.get(ADDRESSES_URL, headers=admin_headers)

        assert listed.status_code == 200
        assert listed.json()["total"] == 1
        assert listed.json()["items"][0]["id"] == entry["id"]

    @pytest.mark.asyncio
    async def test_invalid_address(self, client: AsyncClient, admin_headers):
        response = await client.post(ADDRESSES_URL, json={"address": "not-an-ip"}, headers=admin_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "InputError"

    @pytest.mark.asyncio
    async def test_duplicate_address(self, client: AsyncClient, admin_headers):
        await client.post(ADDRESSES_URL, json={"address": "2001:db8::1"}, headers=admin_headers)

        response = await client.post(
            ADDRESSES_URL, json={"address": "2001:DB8:0:0:0:0:0:1"}, headers=admin_headers
        )

        assert response.status_code == 409
        assert response.json()["error"] == "DuplicateAddressError"

    @pytest.mark.asyncio
    async def test_remove(self, client: AsyncClient, admin_headers):
        created = await client.post(ADDRESSES_URL, json={"address": "::1"}, headers=admin_headers)

        response = await client.delete(f"{ADDRESSES_URL}/{created.json()['id']}", headers=admin_headers)

        assert response.status_code == 204
        assert (await client.get(ADDRESSES_URL, headers=admin_headers)).json()["total"] == 0

    @pytest.mark.asyncio
    async def test_remove_missing(self, client: AsyncClient, admin_headers):
        response = await client.delete(f"{ADDRESSES_URL}/missing", headers=admin_headers)

        assert response.status_code == 404
        assert response.json()["message"] == "IP address not found"


class TestPublicAccess:
    @pytest.mark.asyncio
    async def test_default_disabled(self, client: AsyncClient, admin_headers):
        response = await client.get(PUBLIC_ACCESS_URL, headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["enabled"] is False

    @pytest.mark.asyncio
    async def test_enable_then_verify(self, client: AsyncClient, admin_headers):
        updated = await client.put(
            PUBLIC_ACCESS_URL,
            json={"enabled": True, "reason": "Conference week"},
            headers=admin_headers,
        )

        assert updated.status_code == 200
        data = updated.json()
        assert data["enabled"] is True
        assert data["enabled_by"] == "admin-1"
        assert data["enabled_at"] is not None
        assert data["reason"] == "Conference week"

        verdict = await client.post("/api/access/verify")
        assert verdict.json()["reason_code"] == "PUBLIC_ACCESS"


class TestTokenCleanup:
    @pytest.mark.asyncio
    async def test_cleanup_deletes_old_tokens(
        self, client: AsyncClient, admin_headers, memory_stores: AccessStores
    ):
        long_ago = utcnow() - timedelta(days=60)
        old = TokenFactory.build(subject="old@example.com", created_at=long_ago, status=TokenStatus.USED)
        fresh = TokenFactory.build(subject="fresh@example.com", created_at=utcnow())
        await memory_stores.tokens.create(old)
        await memory_stores.tokens.create(fresh)

        response = await client.post(
            "/api/admin/tokens/cleanup", json={"older_than_days": 30}, headers=admin_headers
        )

        assert response.status_code == 200
        assert response.json()["deleted"] == 1
        assert await memory_stores.tokens.get_by_id(old.id) is None
        assert await memory_stores.tokens.get_by_id(fresh.id) is not None

    @pytest.mark.asyncio
    async def test_cleanup_rejects_negative_retention(self, client: AsyncClient, admin_headers):
        response = await client.post(
            "/api/admin/tokens/cleanup", json={"older_than_days": -1}, headers=admin_headers
        )

        assert response.status_code == 400
