"""Business logic for lab container provisioning.

launch_container() follows commit-then-reconcile:

1. The lifecycle record is reserved with status=creating and committed.
2. The compute launcher runs outside any transaction.
3. The record is moved to running (or failed) in a second transaction.

A crash between 1 and 3 leaves a record in creating; the stale provisioning
reaper (lab_api.reaper) moves those to failed once they pass a configurable
age, so no record stays in creating forever.
"""

import logging
import secrets

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lab_launcher.launcher import ComputeLauncher
from lab_launcher.models import LaunchSpec
from lab_shared.errors import InvalidDependency, LaunchFailed, NotFound
from lab_shared.schemas.container import (
    DEPENDENCY_ALLOW_SET,
    ContainerDTO,
    ContainerStatus,
    LaunchedContainer,
    LaunchResponse,
)

from lab_api.db.models import User
from lab_api.services import audit_service, record_writer
from lab_api.services.record_writer import ContainerRecordPayload

logger = logging.getLogger(__name__)

MAX_NAME_ATTEMPTS = 5

LAUNCH_ACTION = "launch_container"
LAUNCH_FAILED_ACTION = "launch_container_failed"
AUDIT_TARGET_TYPE = "container"


def validate_dependencies(dependencies: list[str]) -> list[str]:
    """Return the dependencies unchanged, or raise listing every unknown token."""
    invalid = [dep for dep in dependencies if dep not in DEPENDENCY_ALLOW_SET]
    if invalid:
        raise InvalidDependency(invalid)
    return list(dependencies)


def _make_container_name(prefix: str) -> str:
    """Generate a backend name like ``lab-3f9a0c1b2d4e``."""
    return f"{prefix}-{secrets.token_hex(6)}"


async def _ensure_owner_exists(db: AsyncSession, owner_user_id: int) -> None:
    async with db.begin():
        result = await db.execute(select(User.id).where(User.id == owner_user_id))
        if result.scalar_one_or_none() is None:
            raise NotFound(f"User {owner_user_id} not found")


async def _reserve_record(
    db: AsyncSession,
    owner_user_id: int,
    dependencies: list[str],
    image: str,
    task_id: int | None,
    name_prefix: str,
) -> ContainerDTO:
    """Commit a creating record under a fresh unique name.

    The unique constraint on the external identifier is the only
    serialization point between concurrent launches; a collision retries
    with a new name.
    """
    last_error: IntegrityError | None = None
    for attempt in range(1, MAX_NAME_ATTEMPTS + 1):
        name = _make_container_name(name_prefix)
        payload = ContainerRecordPayload(
            external_id=name,
            container_name=name,
            image=image,
            task_id=task_id,
            owner_user_id=owner_user_id,
            status=ContainerStatus.creating,
            metadata={"dependencies": dependencies},
        )
        try:
            async with db.begin():
                return await record_writer.create_container_record(db, payload)
        except IntegrityError as exc:
            last_error = exc
            logger.warning(
                "Container name %s rejected on attempt %d/%d: %s",
                name, attempt, MAX_NAME_ATTEMPTS, exc.orig,
            )
    raise LaunchFailed(
        f"Could not reserve a unique container name after {MAX_NAME_ATTEMPTS} attempts",
        diagnostic=str(last_error),
    )


async def _mark_failed(
    db: AsyncSession,
    record: ContainerDTO,
    owner_user_id: int,
    dependencies: list[str],
    diagnostic: str,
) -> None:
    """Reconcile a record whose launch failed. Never raises."""
    try:
        async with db.begin():
            await record_writer.update_container_record(
                db,
                record.id,
                status=ContainerStatus.failed,
                metadata={"error": diagnostic},
            )
    except Exception:
        logger.exception(
            "Could not mark container %s as failed; the reaper will retry", record.id
        )

    await audit_service.record_action(
        db,
        owner_user_id,
        LAUNCH_FAILED_ACTION,
        AUDIT_TARGET_TYPE,
        record.id,
        {"name": record.name, "dependencies": dependencies, "error": diagnostic},
    )


async def launch_container(
    owner_user_id: int,
    dependencies: list[str],
    launcher: ComputeLauncher,
    db: AsyncSession,
    *,
    ssh_public_key: str | None = None,
    task_id: int | None = None,
    image: str = "ubuntu:24.04",
    name_prefix: str = "lab",
) -> LaunchResponse:
    """Provision a lab container and return how to reach it.

    Raises:
        InvalidDependency: If any dependency is outside the allow-set.
        NotFound: If the owner does not exist.
        LaunchFailed: If the backend failed. The record is left failed.
    """
    dependencies = validate_dependencies(dependencies)
    await _ensure_owner_exists(db, owner_user_id)

    record = await _reserve_record(
        db, owner_user_id, dependencies, image, task_id, name_prefix
    )
    logger.info("Reserved container %s (%s) for user %s", record.id, record.name, owner_user_id)

    try:
        result = await launcher.launch(
            LaunchSpec(name=record.name, dependencies=dependencies, public_key=ssh_public_key)
        )
    except LaunchFailed as exc:
        logger.error("Launch of %s failed: %s", record.name, exc.message)
        await _mark_failed(db, record, owner_user_id, dependencies, exc.diagnostic or exc.message)
        raise
    except Exception as exc:
        logger.exception("Launcher raised unexpectedly for %s", record.name)
        await _mark_failed(db, record, owner_user_id, dependencies, str(exc))
        raise LaunchFailed(f"Launch of {record.name} failed: {exc}", diagnostic=str(exc)) from exc

    async with db.begin():
        record = await record_writer.update_container_record(
            db,
            record.id,
            status=ContainerStatus.running,
            ip_address=result.network_address,
            metadata={
                "dependencies": dependencies,
                "ssh_user": result.shell.user,
                "launcher": launcher.mode,
            },
        )

    await audit_service.record_action(
        db,
        owner_user_id,
        LAUNCH_ACTION,
        AUDIT_TARGET_TYPE,
        record.id,
        {"name": record.name, "dependencies": dependencies},
    )
    logger.info("Container %s running at %s", record.name, result.network_address)

    return LaunchResponse(
        container=LaunchedContainer(
            id=record.id,
            name=record.name,
            status=record.status or ContainerStatus.running,
            ip=record.ip,
            metadata=record.metadata,
        ),
        ssh=result.shell,
        host_key=result.host_key_fingerprint,
    )
