"""Tests for the shell backends.

The local backend tests spawn a real /bin/sh; nothing else is needed on the
host. The SSH backend is only checked for the command it would run.
"""

import asyncio
import re
from pathlib import Path

import pytest

from terminal_gateway.backends import (
    LocalShellBackend,
    ShellStartError,
    SshShellBackend,
    SubprocessShellBackend,
)


async def _collect_until(stream, needle: str, timeout: float = 5.0) -> str:
    collected = ""
    async with asyncio.timeout(timeout):
        async for text in stream:
            collected += text
            if needle in collected:
                break
    return collected


def _is_running(pid: int) -> bool:
    """True while ``pid`` exists and is not a zombie awaiting reaping."""
    try:
        stat = Path(f"/proc/{pid}/stat").read_text()
    except FileNotFoundError:
        return False
    return stat.rsplit(")", 1)[1].split()[0] != "Z"


class TestLocalShellBackend:
    @pytest.mark.asyncio
    async def test_echo_round_trip(self):
        backend = LocalShellBackend(shell="/bin/sh")
        await backend.start()
        try:
            await backend.write("echo hi\n")
            output = await _collect_until(backend.output_streams()["stdout"], "hi")
        finally:
            await backend.terminate()

        assert "hi" in output

    @pytest.mark.asyncio
    async def test_exit_code_is_reported(self):
        backend = LocalShellBackend(shell="/bin/sh")
        await backend.start()

        await backend.write("exit 3\n")
        code = await asyncio.wait_for(backend.wait(), timeout=5)

        assert code == 3
        await backend.terminate()

    @pytest.mark.asyncio
    async def test_terminate_is_idempotent(self):
        backend = LocalShellBackend(shell="/bin/sh")
        await backend.start()

        await backend.terminate()
        await backend.terminate()

        assert backend._process.returncode is not None

    @pytest.mark.asyncio
    async def test_write_after_terminate_raises(self):
        backend = LocalShellBackend(shell="/bin/sh")
        await backend.start()
        await backend.terminate()

        with pytest.raises(BrokenPipeError):
            await backend.write("echo late\n")

    @pytest.mark.asyncio
    async def test_missing_binary_raises_start_error(self):
        backend = SubprocessShellBackend(["/nonexistent/shell"])

        with pytest.raises(ShellStartError):
            await backend.start()

    @pytest.mark.asyncio
    async def test_terminate_stops_foreground_command(self):
        backend = LocalShellBackend(shell="/bin/sh")
        await backend.start()
        await backend.write("sh -c 'echo child=$$; exec sleep 4321'\n")
        output = await _collect_until(backend.output_streams()["stdout"], "\n")
        child_pid = int(re.search(r"child=(\d+)", output).group(1))

        async with asyncio.timeout(15):
            await backend.terminate()

        async with asyncio.timeout(5):
            while _is_running(child_pid):
                await asyncio.sleep(0.05)


    def test_resize_is_not_supported(self):
        assert LocalShellBackend(shell="/bin/sh").supports_resize is False

    @pytest.mark.asyncio
    async def test_resize_raises(self):
        with pytest.raises(NotImplementedError):
            await LocalShellBackend(shell="/bin/sh").resize(80, 24)


class TestSshShellBackend:
    def test_command_uses_platform_identity(self):
        backend = SshShellBackend(
            host="10.10.0.5", user="labuser", port=2222, identity_file="/keys/platform"
        )

        command = backend.command
        assert command[:2] == ["ssh", "-tt"]
        assert command[-1] == "labuser@10.10.0.5"
        assert "-i" in command and command[command.index("-i") + 1] == "/keys/platform"
        assert command[command.index("-p") + 1] == "2222"
        assert "BatchMode=yes" in command

    def test_without_identity_file(self):
        command = SshShellBackend(host="10.10.0.5", user="labuser").command

        assert "-i" not in command

    def test_resize_is_not_supported(self):
        assert SshShellBackend(host="10.10.0.5", user="labuser").supports_resize is False
