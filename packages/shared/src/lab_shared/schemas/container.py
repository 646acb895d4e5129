"""Container lifecycle data transfer objects and launch request schemas."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ContainerStatus(str, Enum):
    creating = "creating"
    running = "running"
    stopped = "stopped"
    failed = "failed"
    deleting = "deleting"


# Edges of the lifecycle graph. Anything not listed here is rejected.
ALLOWED_TRANSITIONS: dict[ContainerStatus, frozenset[ContainerStatus]] = {
    ContainerStatus.creating: frozenset({ContainerStatus.running, ContainerStatus.failed}),
    ContainerStatus.running: frozenset({ContainerStatus.stopped, ContainerStatus.failed}),
    ContainerStatus.stopped: frozenset({ContainerStatus.running, ContainerStatus.deleting}),
    ContainerStatus.failed: frozenset(),
    ContainerStatus.deleting: frozenset(),
}

# Software a lab request may ask cloud-init to install. Closed set.
DEPENDENCY_ALLOW_SET: tuple[str, ...] = (
    "node",
    "postgresql",
    "nginx",
    "redis",
    "docker",
    "mongodb",
)


def can_transition(current: ContainerStatus | str, requested: ContainerStatus | str) -> bool:
    """Return True if ``current -> requested`` is an edge of the lifecycle graph."""
    return ContainerStatus(requested) in ALLOWED_TRANSITIONS[ContainerStatus(current)]


class ShellConnection(BaseModel):
    """How to reach the lab's shell. Never carries credentials."""

    user: str
    host: str
    port: int = 22


class ContainerDTO(BaseModel):
    """Logical view of a lifecycle record, independent of physical column names."""

    id: int
    name: str
    owner_user_id: int | None = None
    image: str | None = None
    status: ContainerStatus | None = None
    ip: str | None = None
    metadata: dict | None = None
    created_at: datetime | None = None


class LaunchRequest(BaseModel):
    """Payload for POST /api/containers/launch."""

    task_id: int | None = Field(default=None, alias="taskId")
    dependencies: list[str] = Field(default_factory=list)
    ssh_public_key: str | None = Field(default=None, alias="sshPublicKey")

    model_config = ConfigDict(populate_by_name=True)


class LaunchedContainer(BaseModel):
    id: int
    name: str
    status: ContainerStatus
    ip: str | None
    metadata: dict | None = None


class LaunchResponse(BaseModel):
    """Connection descriptor returned after a successful launch.

    ``container.id`` is the handle the terminal gateway accepts in its
    connect frame.
    """

    container: LaunchedContainer
    ssh: ShellConnection
    host_key: str | None = Field(default=None, serialization_alias="hostKey")
