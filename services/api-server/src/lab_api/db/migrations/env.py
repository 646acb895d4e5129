"""Alembic environment for the lifecycle store.

The URL comes from DATABASE_URL when set, else from the ``sqlalchemy.url``
option the api-server injects before upgrading. Online runs open an async
engine and hand Alembic the sync connection underneath it.
"""

import asyncio
import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from lab_api.db.models import Base

alembic_config = context.config
if alembic_config.config_file_name is not None:
    fileConfig(alembic_config.config_file_name)

DATABASE_URL = os.getenv("DATABASE_URL") or alembic_config.get_main_option("sqlalchemy.url")


def _configure(**options) -> None:
    context.configure(target_metadata=Base.metadata, compare_type=True, **options)
    with context.begin_transaction():
        context.run_migrations()


def _upgrade_on(connection: Connection) -> None:
    _configure(connection=connection)


async def _upgrade_online() -> None:
    engine = create_async_engine(DATABASE_URL)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_upgrade_on)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    _configure(url=DATABASE_URL, literal_binds=True, dialect_opts={"paramstyle": "named"})
else:
    asyncio.run(_upgrade_online())
