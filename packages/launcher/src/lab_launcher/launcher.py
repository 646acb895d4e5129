"""Compute launcher interface, the simulated backend, and the mode factory.

Callers depend only on ComputeLauncher.launch(); which backend sits behind it
is a deployment decision made once at startup through create_launcher().
"""

import logging
from abc import ABC, abstractmethod

from lab_shared.schemas.container import ShellConnection

from lab_launcher.models import LaunchResult, LaunchSpec

logger = logging.getLogger(__name__)

SIMULATED_ADDRESS = "127.0.0.1"


class ComputeLauncher(ABC):
    """Creates an isolated environment and reports how to reach it.

    Implementations never retry; the caller decides between retry and
    rollback when launch() raises LaunchFailed.
    """

    mode: str = "abstract"

    @abstractmethod
    async def launch(self, spec: LaunchSpec) -> LaunchResult:
        raise NotImplementedError


class SimulatedLauncher(ComputeLauncher):
    """Pretends to launch so the rest of the pipeline runs without LXD."""

    mode = "simulated"

    def __init__(self, ssh_user: str = "ubuntu", ssh_port: int = 22):
        self._ssh_user = ssh_user
        self._ssh_port = ssh_port

    async def launch(self, spec: LaunchSpec) -> LaunchResult:
        logger.info(
            "Simulated launch of %s (dependencies=%s)", spec.name, spec.dependencies
        )
        return LaunchResult(
            network_address=SIMULATED_ADDRESS,
            shell=ShellConnection(
                user=self._ssh_user, host=SIMULATED_ADDRESS, port=self._ssh_port
            ),
            host_key_fingerprint=None,
        )


def create_launcher(
    mode: str,
    *,
    image: str = "ubuntu:24.04",
    ssh_user: str = "labuser",
    platform_public_key: str | None = None,
    ip_timeout_seconds: float = 120.0,
    poll_interval_seconds: float = 2.0,
    lxc_binary: str = "lxc",
) -> ComputeLauncher:
    """Build the launcher for the configured mode (``simulated`` or ``lxc``)."""
    if mode == "simulated":
        return SimulatedLauncher()
    if mode == "lxc":
        # Imported lazily so simulated deployments never touch subprocess setup.
        from lab_launcher.lxc import LxcLauncher

        return LxcLauncher(
            image=image,
            ssh_user=ssh_user,
            platform_public_key=platform_public_key,
            ip_timeout_seconds=ip_timeout_seconds,
            poll_interval_seconds=poll_interval_seconds,
            lxc_binary=lxc_binary,
        )
    raise ValueError(f"Unknown launcher mode: {mode!r}")
