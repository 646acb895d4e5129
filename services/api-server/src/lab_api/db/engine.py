"""Process-wide async engine for the lifecycle store.

Production runs on postgresql+asyncpg; sqlite+aiosqlite URLs are accepted for
local runs and get no pool sizing since SQLite uses a single-file pool.
Sessions are created with expire_on_commit=False so records stay readable
after the scoped transaction that loaded them has committed.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def engine_options(database_url: str, pool_size: int, max_overflow: int) -> dict[str, Any]:
    """Keyword arguments for create_async_engine appropriate to the URL's backend."""
    if make_url(database_url).get_backend_name() == "sqlite":
        return {}
    return {
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_pre_ping": True,
    }


def initialize_engine(database_url: str, pool_size: int = 10, max_overflow: int = 20) -> None:
    """Build the engine and session factory. Called from the app lifespan."""
    global _engine, _session_factory

    _engine = create_async_engine(
        database_url, **engine_options(database_url, pool_size, max_overflow)
    )
    _session_factory = async_sessionmaker(bind=_engine, expire_on_commit=False)
    logger.info("Database engine ready (%s)", make_url(database_url).render_as_string())


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        raise RuntimeError("Database engine not initialized")
    return _session_factory


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session; roll back on any exit by exception, cancellation included."""
    async with get_session_factory()() as session:
        try:
            yield session
        except BaseException:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with get_db_session() as session:
        yield session


async def dispose_engine() -> None:
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
