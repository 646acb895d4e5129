"""Lab Portal API server: launch endpoint, internal directory and reaper."""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from alembic import command as alembic_command
from alembic.config import Config as AlembicConfig
from fastapi import FastAPI
from redis.asyncio import Redis

from lab_launcher.launcher import ComputeLauncher, create_launcher
from lab_shared.errors import LabError
from lab_shared.tokens import TokenVerifier

from lab_api.config import ApiServerSettings, settings
from lab_api.db.engine import dispose_engine, get_session_factory, initialize_engine
from lab_api.dependencies import set_redis_client
from lab_api.middleware.error_handler import global_exception_handler, lab_error_handler
from lab_api.reaper import StaleProvisioningReaper
from lab_api.routers import containers, health, internal

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

_MIGRATIONS_DIR = Path(__file__).parent / "db" / "migrations"


def _upgrade_schema(database_url: str) -> None:
    alembic_cfg = AlembicConfig()
    alembic_cfg.set_main_option("script_location", str(_MIGRATIONS_DIR))
    alembic_cfg.set_main_option("sqlalchemy.url", database_url)
    alembic_command.upgrade(alembic_cfg, "head")
    logger.info("Schema is at head")


def _build_launcher(config: ApiServerSettings) -> ComputeLauncher:
    return create_launcher(
        config.launcher_mode,
        image=config.lab_image,
        ssh_user=config.lab_ssh_user,
        platform_public_key=config.platform_public_key,
        ip_timeout_seconds=config.lxc_ip_timeout_seconds,
        poll_interval_seconds=config.lxc_poll_interval_seconds,
        lxc_binary=config.lxc_binary,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting API server (launcher mode: %s)", settings.launcher_mode)

    # env.py drives its own event loop, so it cannot run on uvicorn's.
    await asyncio.to_thread(_upgrade_schema, settings.database_url)

    initialize_engine(settings.database_url, settings.db_pool_size, settings.db_max_overflow)
    redis_client = Redis.from_url(settings.redis_url, decode_responses=True)
    set_redis_client(redis_client)

    app.state.token_verifier = TokenVerifier(settings.jwt_secret, settings.jwt_algorithm)
    app.state.launcher = _build_launcher(settings)

    reaper = StaleProvisioningReaper(
        session_factory=get_session_factory(),
        stale_after_minutes=settings.stale_creating_minutes,
        interval_seconds=settings.reaper_interval_seconds,
    )
    reaper.start()
    try:
        yield
    finally:
        logger.info("Shutting down API server")
        await reaper.stop()
        await redis_client.aclose()
        await dispose_engine()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Lab Portal API Server",
        description="Provisions lab containers and serves their records to the terminal gateway",
        version="1.0.0",
        docs_url="/docs",
        redoc_url=None,
        lifespan=lifespan,
    )

    app.add_exception_handler(LabError, lab_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    for module in (health, containers, internal):
        app.include_router(module.router)

    return app


app = create_app()
