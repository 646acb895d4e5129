"""Shared fixtures for api-server tests.

Environment variables are set before any lab_api module is imported, since
lab_api.config builds its settings at import time.

The ``sqlite_db`` fixture gives each test a fresh in-memory database with
the canonical schema and seeded status names; tests that need a drifted
schema create their own tables on ``sqlite_engine``.
"""

import os

os.environ.setdefault("SERVICE_TOKEN", "test-token")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from lab_api.db.models import Base, ContainerStatusRow, User  # noqa: E402

STATUS_NAMES = ("creating", "running", "stopped", "failed", "deleting")


@pytest_asyncio.fixture
async def sqlite_engine():
    # StaticPool keeps a single connection so :memory: survives across sessions.
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(sqlite_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory over the canonical schema, with user 42 present."""
    async with sqlite_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(bind=sqlite_engine, expire_on_commit=False)
    async with factory() as db:
        async with db.begin():
            db.add_all([ContainerStatusRow(name=name) for name in STATUS_NAMES])
            db.add(User(id=42, email="learner@example.com", name="Learner"))
            db.add(User(id=7, email="gone@example.com", name="Gone", status="disabled"))
    return factory


@pytest_asyncio.fixture
async def sqlite_db(session_factory):
    async with session_factory() as db:
        yield db
