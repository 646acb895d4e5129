"""API server configuration loaded from environment variables."""

from typing import Literal

from lab_shared.config import SharedSettings


class ApiServerSettings(SharedSettings):
    """All settings required by the API server."""

    database_url: str
    db_pool_size: int = 10
    db_max_overflow: int = 20
    redis_url: str = "redis://redis:6379"

    # "simulated" returns a loopback address without creating anything;
    # "lxc" drives the local LXD daemon.
    launcher_mode: Literal["simulated", "lxc"] = "simulated"
    lab_image: str = "ubuntu:24.04"
    lab_ssh_user: str = "labuser"
    container_name_prefix: str = "lab"

    # Public half of the gateway's SSH identity, baked into every lab so the
    # terminal gateway can attach without ever handing keys to the browser.
    platform_public_key: str | None = None

    lxc_binary: str = "lxc"
    lxc_ip_timeout_seconds: float = 120.0
    lxc_poll_interval_seconds: float = 2.0

    # Records still "creating" after this many minutes are marked failed.
    stale_creating_minutes: int = 15
    reaper_interval_seconds: int = 300


# Single settings instance used across the application.
settings = ApiServerSettings()
