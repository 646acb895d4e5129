"""Request and result types exchanged with a compute launcher."""

from pydantic import BaseModel, Field

from lab_shared.schemas.container import ShellConnection


class LaunchSpec(BaseModel):
    name: str
    dependencies: list[str] = Field(default_factory=list)
    public_key: str | None = None


class LaunchResult(BaseModel):
    """Reachability information for a freshly launched environment."""

    network_address: str
    shell: ShellConnection
    host_key_fingerprint: str | None = None
