"""Terminal gateway configuration loaded from environment variables."""

from typing import Literal

from lab_shared.config import SharedSettings


class GatewaySettings(SharedSettings):
    """All settings required by the terminal gateway."""

    host: str = "0.0.0.0"
    port: int = 8081
    gateway_path: str = "/ws/ssh"

    # "ssh" attaches to the lab container; "local" spawns a shell on this host
    # and is refused unless local_shell_fallback is also enabled.
    shell_mode: Literal["ssh", "local"] = "ssh"
    local_shell_fallback: bool = False
    # Empty means $SHELL, then /bin/sh.
    local_shell: str = ""

    # Private half of the platform key installed into every lab by cloud-init.
    ssh_identity_file: str | None = None
    ssh_user: str = "labuser"
    ssh_port: int = 22
    ssh_connect_timeout_seconds: int = 10
    ssh_strict_host_key_checking: str = "accept-new"

    # Sessions with no client frame for this long are closed.
    idle_timeout_seconds: float = 900.0

    # Container directory lookups go through the api-server's internal API.
    api_server_url: str = "http://api-server:8000"


# Single settings instance used across the gateway.
settings = GatewaySettings()
