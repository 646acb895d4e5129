"""LXD-backed launcher driving the ``lxc`` command-line client.

Encapsulates every backend command so the orchestrator never shells out
directly. Each command runs through asyncio subprocesses; a non-zero exit
becomes LaunchFailed carrying the command's stderr.

The address poll is bounded: a container that never reports a global IPv4
address fails the launch after ``ip_timeout_seconds``.
"""

import asyncio
import json
import logging

from lab_shared.errors import LaunchFailed
from lab_shared.schemas.container import ShellConnection

from lab_launcher.cloud_init import build_cloud_init
from lab_launcher.launcher import ComputeLauncher
from lab_launcher.models import LaunchResult, LaunchSpec

logger = logging.getLogger(__name__)

_SSH_PORT = 22


class CommandError(Exception):
    """A backend command exited non-zero."""

    def __init__(self, command: tuple[str, ...], returncode: int, stderr: str):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"{' '.join(command)} exited {returncode}: {stderr}")


async def _run_command(*args: str) -> str:
    """Run a command and return its stripped stdout."""
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise CommandError(args, -1, str(exc)) from exc

    stdout, stderr = await process.communicate()
    if process.returncode != 0:
        raise CommandError(
            args, process.returncode, stderr.decode("utf-8", errors="replace").strip()
        )
    return stdout.decode("utf-8", errors="replace").strip()


def extract_global_ipv4(list_output: str) -> str | None:
    """Return the first global-scope inet address from ``lxc list --format json``.

    Returns None when the container has not been assigned one yet or the
    output cannot be parsed.
    """
    try:
        instances = json.loads(list_output)
    except json.JSONDecodeError:
        return None
    if not isinstance(instances, list) or not instances:
        return None

    state = instances[0].get("state") or {}
    networks = state.get("network") or {}
    for network in networks.values():
        for address in network.get("addresses") or []:
            if address.get("family") == "inet" and address.get("scope") == "global":
                if address.get("address"):
                    return address["address"]
    return None


class LxcLauncher(ComputeLauncher):
    """Launches lab containers on the local LXD daemon."""

    mode = "lxc"

    def __init__(
        self,
        image: str,
        ssh_user: str,
        platform_public_key: str | None = None,
        ip_timeout_seconds: float = 120.0,
        poll_interval_seconds: float = 2.0,
        lxc_binary: str = "lxc",
    ):
        self._image = image
        self._ssh_user = ssh_user
        self._platform_public_key = platform_public_key
        self._ip_timeout = ip_timeout_seconds
        self._poll_interval = poll_interval_seconds
        self._lxc = lxc_binary

    async def launch(self, spec: LaunchSpec) -> LaunchResult:
        user_data = build_cloud_init(
            spec.dependencies,
            ssh_user=self._ssh_user,
            authorized_keys=[spec.public_key, self._platform_public_key],
        )

        try:
            await _run_command(
                self._lxc, "launch", self._image, spec.name,
                "-c", f"user.user-data={user_data}",
            )
        except CommandError as exc:
            logger.error("lxc launch failed for %s: %s", spec.name, exc.stderr)
            raise LaunchFailed(f"LXC launch failed: {exc.stderr}", diagnostic=exc.stderr) from exc

        address = await self._wait_for_address(spec.name)
        host_key = await self._scan_host_key(spec.name)
        logger.info("Launched %s at %s", spec.name, address)

        return LaunchResult(
            network_address=address,
            shell=ShellConnection(user=self._ssh_user, host=address, port=_SSH_PORT),
            host_key_fingerprint=host_key,
        )

    async def _wait_for_address(self, name: str) -> str:
        """Poll the backend until the container reports a global IPv4 address."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._ip_timeout
        while True:
            try:
                output = await _run_command(self._lxc, "list", name, "--format", "json")
            except CommandError as exc:
                raise LaunchFailed(
                    f"LXC state query failed: {exc.stderr}", diagnostic=exc.stderr
                ) from exc

            address = extract_global_ipv4(output)
            if address:
                return address
            if loop.time() >= deadline:
                raise LaunchFailed(
                    f"Timed out waiting for container IP of {name} after {self._ip_timeout}s"
                )
            await asyncio.sleep(self._poll_interval)

    async def _scan_host_key(self, name: str) -> str | None:
        """Read the container's ed25519 host key; best effort only."""
        try:
            return await _run_command(
                self._lxc, "exec", name, "--", "ssh-keyscan", "-t", "ed25519", "localhost"
            ) or None
        except CommandError as exc:
            logger.warning("Could not read host key of %s: %s", name, exc.stderr)
            return None
