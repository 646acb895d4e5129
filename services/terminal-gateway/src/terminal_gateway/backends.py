"""Interactive shell processes a terminal session can attach to.

Every backend is an OS process driven through asyncio pipes. Output is read
in chunks rather than lines so prompts without a trailing newline still
reach the browser.
"""

import asyncio
import codecs
import logging
import os
import signal
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)

_READ_CHUNK_BYTES = 4096

# How long a shell gets to exit after SIGTERM before it is killed.
_TERMINATE_GRACE_SECONDS = 3.0
# Upper bound on waiting for the process group after SIGKILL.
_KILL_WAIT_SECONDS = 5.0


class ShellStartError(Exception):
    """The shell process could not be spawned."""


class ShellBackend(ABC):
    """An attached interactive process.

    ``supports_resize`` tells the session whether resize frames can be
    forwarded; without a pseudo-terminal they cannot.
    """

    supports_resize: bool = False

    @abstractmethod
    async def start(self) -> None: ...

    @abstractmethod
    def output_streams(self) -> dict[str, AsyncGenerator[str, None]]:
        """Return one decoded text generator per output stream, keyed by name."""

    @abstractmethod
    async def write(self, data: str) -> None: ...

    async def resize(self, cols: int, rows: int) -> None:
        raise NotImplementedError(f"{type(self).__name__} cannot resize")

    @abstractmethod
    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""

    @abstractmethod
    async def terminate(self) -> None:
        """Stop the process. Safe to call more than once."""


class SubprocessShellBackend(ShellBackend):
    """Runs ``command`` as a child process with piped stdio."""

    def __init__(self, command: list[str], env: dict[str, str] | None = None):
        self._command = command
        self._env = env
        self._process: asyncio.subprocess.Process | None = None
        self._terminated = False

    @property
    def command(self) -> list[str]:
        return list(self._command)

    async def start(self) -> None:
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self._command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._env,
                start_new_session=True,
            )
        except OSError as exc:
            raise ShellStartError(f"Could not start {self._command[0]}: {exc}") from exc
        logger.info("Started shell %s (pid %s)", self._command[0], self._process.pid)

    def output_streams(self) -> dict[str, AsyncGenerator[str, None]]:
        process = self._require_process()
        return {
            "stdout": _decode_chunks(process.stdout),
            "stderr": _decode_chunks(process.stderr),
        }

    async def write(self, data: str) -> None:
        process = self._require_process()
        if process.stdin is None or process.stdin.is_closing():
            raise BrokenPipeError("Shell input is closed")
        process.stdin.write(data.encode("utf-8"))
        await process.stdin.drain()

    async def wait(self) -> int:
        return await self._require_process().wait()

    async def terminate(self) -> None:
        """Stop the shell and everything it started.

        The shell leads its own session, so its process group holds any
        foreground command too. The group gets SIGTERM, then SIGKILL after the
        grace period; an interactive shell ignores SIGTERM on its own.
        """
        if self._terminated or self._process is None:
            return
        self._terminated = True

        process = self._process
        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()

        if not _signal_group(process.pid, signal.SIGTERM):
            await _bounded_wait(process, _KILL_WAIT_SECONDS)
            return
        if await _bounded_wait(process, _TERMINATE_GRACE_SECONDS):
            # The shell is gone but a child may have survived SIGTERM.
            _signal_group(process.pid, signal.SIGKILL)
        else:
            logger.warning("Shell pid %s ignored SIGTERM, killing its process group", process.pid)
            _signal_group(process.pid, signal.SIGKILL)
            if not await _bounded_wait(process, _KILL_WAIT_SECONDS):
                logger.error("Shell pid %s did not exit after SIGKILL", process.pid)
                return
        logger.info("Shell pid %s terminated (code %s)", process.pid, process.returncode)

    def _require_process(self) -> asyncio.subprocess.Process:
        if self._process is None:
            raise RuntimeError("Shell has not been started")
        return self._process


def _signal_group(pgid: int, sig: signal.Signals) -> bool:
    """Signal a process group; False if no member is left."""
    try:
        os.killpg(pgid, sig)
    except ProcessLookupError:
        return False
    return True


async def _bounded_wait(process: asyncio.subprocess.Process, timeout: float) -> bool:
    """Wait for exit and closed pipes, giving up after ``timeout`` seconds."""
    try:
        async with asyncio.timeout(timeout):
            await process.wait()
    except TimeoutError:
        return False
    return True


async def _decode_chunks(stream: asyncio.StreamReader | None) -> AsyncGenerator[str, None]:
    """Yield text from a byte stream without splitting multi-byte characters."""
    if stream is None:
        return
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        chunk = await stream.read(_READ_CHUNK_BYTES)
        if not chunk:
            break
        text = decoder.decode(chunk)
        if text:
            yield text
    tail = decoder.decode(b"", final=True)
    if tail:
        yield tail


class LocalShellBackend(SubprocessShellBackend):
    """Development-only shell on the gateway host itself."""

    def __init__(self, shell: str | None = None):
        shell = shell or os.environ.get("SHELL") or "/bin/sh"
        super().__init__([shell, "-i"])


class SshShellBackend(SubprocessShellBackend):
    """``ssh -tt`` into a lab container with the platform identity."""

    def __init__(
        self,
        host: str,
        user: str,
        port: int = 22,
        identity_file: str | None = None,
        connect_timeout_seconds: int = 10,
        strict_host_key_checking: str = "accept-new",
    ):
        command = [
            "ssh",
            "-tt",
            "-p", str(port),
            "-o", "BatchMode=yes",
            "-o", f"ConnectTimeout={connect_timeout_seconds}",
            "-o", f"StrictHostKeyChecking={strict_host_key_checking}",
        ]
        if identity_file:
            command += ["-i", identity_file, "-o", "IdentitiesOnly=yes"]
        command.append(f"{user}@{host}")
        super().__init__(command)
        self.host = host
        self.user = user
