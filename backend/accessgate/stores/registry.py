"""
Process-wide store registry.

WHAT: Owns the concrete allow-list, public-access and token stores for the
lifetime of the process.

WHY: Stores hold process-wide resources (an engine with a connection pool,
or the in-memory collections themselves). They are created once in the
application startup hook and released in the shutdown hook instead of at
import time, so importing the package never opens a connection.

HOW:
- init_stores(config) builds the backend selected by STORE_BACKEND
- get_stores() returns the initialized bundle (FastAPI dependency)
- close_stores() disposes the engine and forgets the bundle
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from accessgate.core.clock import Clock, utcnow
from accessgate.core.config import Settings
from accessgate.core.exceptions import ConfigurationError
from accessgate.db.session import create_engine, create_session_factory, create_tables
from accessgate.stores.interfaces import AllowListStore, PublicAccessStore, TokenStore
from accessgate.stores.memory import (
    MemoryAllowListStore,
    MemoryPublicAccessStore,
    MemoryTokenStore,
)
from accessgate.stores.sql import SqlAllowListStore, SqlPublicAccessStore, SqlTokenStore


logger = logging.getLogger(__name__)


@dataclass
class AccessStores:
    """The three stores plus the engine backing them, if any."""

    allow_list: AllowListStore
    public_access: PublicAccessStore
    tokens: TokenStore
    backend: str
    engine: Optional[AsyncEngine] = None

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None


def build_memory_stores(clock: Clock = utcnow) -> AccessStores:
    """In-process stores (development, single worker, tests)."""
    return AccessStores(
        allow_list=MemoryAllowListStore(clock=clock),
        public_access=MemoryPublicAccessStore(clock=clock),
        tokens=MemoryTokenStore(),
        backend="memory",
    )


def build_sql_stores(
    session_factory: async_sessionmaker[AsyncSession],
    clock: Clock = utcnow,
    engine: Optional[AsyncEngine] = None,
) -> AccessStores:
    """SQL stores sharing one session factory."""
    return AccessStores(
        allow_list=SqlAllowListStore(session_factory, clock=clock),
        public_access=SqlPublicAccessStore(session_factory, clock=clock),
        tokens=SqlTokenStore(session_factory),
        backend="sql",
        engine=engine,
    )


_stores: Optional[AccessStores] = None


async def init_stores(config: Settings) -> AccessStores:
    """
    Build the configured stores and register them process-wide.

    Calling it again while stores are registered returns the existing bundle.

    Args:
        config: Application settings (STORE_BACKEND, DATABASE_URL, ...)

    Returns:
        The registered AccessStores
    """
    global _stores

    if _stores is not None:
        return _stores

    if config.STORE_BACKEND == "memory":
        stores = build_memory_stores()
    elif config.STORE_BACKEND == "sql":
        engine = create_engine(config.async_database_url, echo=config.DEBUG)
        if config.CREATE_TABLES_ON_STARTUP:
            await create_tables(engine)
        stores = build_sql_stores(create_session_factory(engine), engine=engine)
    else:
        raise ConfigurationError(
            message=f"Unknown store backend: {config.STORE_BACKEND}",
            backend=config.STORE_BACKEND,
        )

    _stores = stores
    logger.info(f"Access stores initialized (backend={stores.backend})")
    return stores


def get_stores() -> AccessStores:
    """
    Return the registered stores.

    Raises:
        ConfigurationError: If init_stores() has not run
    """
    if _stores is None:
        raise ConfigurationError(message="Access stores are not initialized")
    return _stores


async def close_stores() -> None:
    """Dispose the registered stores (idempotent)."""
    global _stores

    if _stores is None:
        return

    stores, _stores = _stores, None
    await stores.close()
    logger.info(f"Access stores closed (backend={stores.backend})")
