"""
Pytest configuration and fixtures.

WHY: Fixtures provide reusable test setup/teardown logic, reducing
duplication and ensuring consistent test environments.
"""

import os

# Settings are loaded at import time and JWT_SECRET has no default
os.environ.setdefault("JWT_SECRET", "test-secret-key-not-for-production")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("STORE_BACKEND", "memory")

import pytest
import pytest_asyncio
from typing import AsyncGenerator
from httpx import AsyncClient, ASGITransport

from accessgate.main import app
from accessgate.core.auth import ADMIN_ROLE, USER_ROLE, create_access_token
from accessgate.core.config import settings
from accessgate.core.deps import get_access_stores
from accessgate.db.session import create_engine, create_session_factory, create_tables
from accessgate.middleware import rate_limiter as rate_limiter_module
from accessgate.services.notifications import MockNotificationChannel
from accessgate.stores.registry import AccessStores, build_memory_stores, build_sql_stores


@pytest.fixture
def memory_stores() -> AccessStores:
    """
    Fresh in-process stores.

    WHY: Function scope gives every test an empty allow-list, a disabled
    public-access override and no tokens.
    """
    return build_memory_stores()


@pytest_asyncio.fixture
async def sql_engine(tmp_path):
    """
    SQLite database in a temporary file.

    WHY: A file database (not :memory:) lets concurrent sessions use separate
    connections, which is what the compare-and-swap tests need.
    """
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'accessgate-test.db'}")
    await create_tables(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def sql_session_factory(sql_engine):
    return create_session_factory(sql_engine)


@pytest.fixture
def sql_stores(sql_session_factory) -> AccessStores:
    return build_sql_stores(sql_session_factory)


@pytest_asyncio.fixture
async def client(memory_stores: AccessStores) -> AsyncGenerator[AsyncClient, None]:
    """
    Test HTTP client bound to in-memory stores.

    WHY: ASGITransport does not run startup hooks, so the stores the routes
    depend on are injected through dependency overrides.
    """
    app.dependency_overrides[get_access_stores] = lambda: memory_stores

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def admin_token() -> str:
    return create_access_token(
        {"sub": "admin-1", "role": ADMIN_ROLE, "email": "admin@example.com"}
    )


@pytest.fixture
def user_token() -> str:
    return create_access_token(
        {"sub": "user-42", "role": USER_ROLE, "email": "user42@example.com"}
    )


@pytest.fixture
def admin_headers(admin_token: str) -> dict:
    return {"Authorization": f"Bearer {admin_token}"}


@pytest.fixture
def user_headers(user_token: str) -> dict:
    return {"Authorization": f"Bearer {user_token}"}


@pytest.fixture(autouse=True)
def disable_rate_limiting(monkeypatch):
    """
    Disable request rate limiting for all tests.

    WHY: The limiter uses Redis. Rate limiting is tested separately in unit
    tests with a mocked Redis client.
    """
    from unittest.mock import AsyncMock, MagicMock

    mock_result = MagicMock()
    mock_result.allowed = True
    mock_result.remaining = 100
    mock_result.reset_after = 60
    mock_result.limit = 100

    mock_limiter = MagicMock()
    mock_limiter.check_rate_limit = AsyncMock(return_value=mock_result)

    async def mock_get_rate_limiter():
        return mock_limiter

    monkeypatch.setattr(
        rate_limiter_module,
        "get_rate_limiter",
        mock_get_rate_limiter,
    )
    rate_limiter_module._rate_limiter = None

    yield

    rate_limiter_module._rate_limiter = None


@pytest.fixture(autouse=True)
def clear_notifications(monkeypatch):
    """
    Record notifications and start every test with none recorded.

    WHY: Tests read delivered codes back from MockNotificationChannel, which
    only records when MOCK_NOTIFICATION_RECORD is set.
    """
    monkeypatch.setattr(settings, "MOCK_NOTIFICATION_RECORD", True)
    MockNotificationChannel.clear_sent()
    yield
    MockNotificationChannel.clear_sent()
