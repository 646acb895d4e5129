"""Tests for the LXD launcher.

_run_command is patched so no ``lxc`` binary is needed. The fake records
every invocation and answers from a per-subcommand script.
"""

import json
from unittest.mock import AsyncMock, patch

import pytest

from lab_shared.errors import LaunchFailed

from lab_launcher.lxc import CommandError, LxcLauncher, extract_global_ipv4
from lab_launcher.models import LaunchSpec

_MODULE = "lab_launcher.lxc"


def _list_output(*addresses: dict) -> str:
    """Build ``lxc list --format json`` output for one container."""
    return json.dumps(
        [
            {
                "name": "lab-test",
                "state": {
                    "network": {
                        "lo": {"addresses": [{"family": "inet", "address": "127.0.0.1", "scope": "local"}]},
                        "eth0": {"addresses": list(addresses)},
                    }
                },
            }
        ]
    )


def _make_launcher(**overrides) -> LxcLauncher:
    options = {
        "image": "ubuntu:24.04",
        "ssh_user": "labuser",
        "platform_public_key": "ssh-ed25519 PLATFORM",
        "ip_timeout_seconds": 0.05,
        "poll_interval_seconds": 0.01,
    }
    options.update(overrides)
    return LxcLauncher(**options)


def _fake_run(list_outputs: list[str], keyscan: str = "localhost ssh-ed25519 AAAAHOST"):
    """Return an AsyncMock side effect scripted per lxc subcommand."""
    outputs = iter(list_outputs)

    async def run(*args: str) -> str:
        subcommand = args[1]
        if subcommand == "launch":
            return ""
        if subcommand == "list":
            return next(outputs, list_outputs[-1])
        if subcommand == "exec":
            return keyscan
        raise AssertionError(f"unexpected command {args}")

    return AsyncMock(side_effect=run)


class TestExtractGlobalIpv4:
    def test_picks_global_inet(self):
        output = _list_output(
            {"family": "inet6", "address": "fd42::1", "scope": "global"},
            {"family": "inet", "address": "10.10.0.7", "scope": "global"},
        )

        assert extract_global_ipv4(output) == "10.10.0.7"

    def test_ignores_link_local_and_loopback(self):
        output = _list_output({"family": "inet6", "address": "fe80::1", "scope": "link"})

        assert extract_global_ipv4(output) is None

    @pytest.mark.parametrize("output", ["", "not json", "[]", "{}"])
    def test_unusable_output(self, output):
        assert extract_global_ipv4(output) is None

    def test_container_without_state(self):
        assert extract_global_ipv4(json.dumps([{"name": "lab-x", "state": None}])) is None


class TestLxcLaunch:
    @pytest.mark.asyncio
    async def test_launch_polls_until_address_appears(self):
        fake = _fake_run(
            [_list_output(), _list_output({"family": "inet", "address": "10.10.0.9", "scope": "global"})]
        )
        launcher = _make_launcher(ip_timeout_seconds=5)

        with patch(f"{_MODULE}._run_command", fake):
            result = await launcher.launch(
                LaunchSpec(name="lab-test", dependencies=["node"], public_key="ssh-ed25519 USER")
            )

        assert result.network_address == "10.10.0.9"
        assert result.shell.user == "labuser"
        assert result.shell.host == "10.10.0.9"
        assert result.host_key_fingerprint == "localhost ssh-ed25519 AAAAHOST"

        launch_args = fake.await_args_list[0].args
        assert launch_args[:4] == ("lxc", "launch", "ubuntu:24.04", "lab-test")
        assert launch_args[4] == "-c"
        user_data = launch_args[5]
        assert user_data.startswith("user.user-data=#cloud-config")
        assert "ssh-ed25519 USER" in user_data
        assert "ssh-ed25519 PLATFORM" in user_data
        assert "nodejs" in user_data

        list_calls = [c for c in fake.await_args_list if c.args[1] == "list"]
        assert len(list_calls) == 2

    @pytest.mark.asyncio
    async def test_launch_failure_surfaces_stderr(self):
        fake = AsyncMock(
            side_effect=CommandError(("lxc", "launch"), 1, "Error: Failed instance creation")
        )

        with patch(f"{_MODULE}._run_command", fake):
            with pytest.raises(LaunchFailed) as exc_info:
                await _make_launcher().launch(LaunchSpec(name="lab-test"))

        assert "Failed instance creation" in exc_info.value.message
        assert exc_info.value.diagnostic == "Error: Failed instance creation"

    @pytest.mark.asyncio
    async def test_times_out_without_address(self):
        fake = _fake_run([_list_output()])

        with patch(f"{_MODULE}._run_command", fake):
            with pytest.raises(LaunchFailed, match="Timed out waiting for container IP"):
                await _make_launcher().launch(LaunchSpec(name="lab-test"))

    @pytest.mark.asyncio
    async def test_host_key_scan_is_best_effort(self):
        address = _list_output({"family": "inet", "address": "10.10.0.3", "scope": "global"})

        async def run(*args: str) -> str:
            if args[1] == "exec":
                raise CommandError(args, 255, "ssh-keyscan: not found")
            return address if args[1] == "list" else ""

        with patch(f"{_MODULE}._run_command", AsyncMock(side_effect=run)):
            result = await _make_launcher().launch(LaunchSpec(name="lab-test"))

        assert result.network_address == "10.10.0.3"
        assert result.host_key_fingerprint is None


class TestRunCommand:
    @pytest.mark.asyncio
    async def test_missing_binary_becomes_command_error(self):
        from lab_launcher.lxc import _run_command

        with pytest.raises(CommandError) as exc_info:
            await _run_command("/nonexistent/lxc-binary", "list")

        assert exc_info.value.returncode == -1
