"""Per-channel state machine for one interactive shell session.

States:
  unauthenticated  accepts only ``connect``; a bad token closes with 4001
  idle             authenticated, no shell; ``connect`` (re)tries the attach
  active           shell attached; ``input`` / ``resize`` / ``close``
  closed           terminal; everything is ignored

Any frame not accepted by the current state gets an ``error`` frame and
leaves the state unchanged. ``close`` is accepted everywhere and is a silent
no-op once closed.
"""

import asyncio
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

import httpx
from websockets.exceptions import ConnectionClosed

from lab_shared.errors import NotFound, Unauthorized
from lab_shared.schemas.container import ContainerDTO
from lab_shared.tokens import TokenClaims, TokenVerifier

from terminal_gateway.backends import ShellBackend, ShellStartError
from terminal_gateway.directory import ContainerDirectory
from terminal_gateway.protocol import (
    CLIENT_FRAME_TYPES,
    CLOSE_FORBIDDEN,
    CLOSE_NORMAL,
    CLOSE_UNAUTHORIZED,
    FrameError,
    make_frame,
    parse_frame,
)

logger = logging.getLogger(__name__)

BackendFactory = Callable[[TokenClaims, ContainerDTO | None], ShellBackend]


class SessionState(str, Enum):
    unauthenticated = "unauthenticated"
    idle = "idle"
    active = "active"
    closed = "closed"


class TerminalSession:
    """Drives one WebSocket connection from welcome to close."""

    def __init__(
        self,
        websocket,
        verifier: TokenVerifier,
        directory: ContainerDirectory | None,
        backend_factory: BackendFactory,
        idle_timeout_seconds: float = 900.0,
        require_container: bool = True,
    ):
        self._websocket = websocket
        self._verifier = verifier
        self._directory = directory
        self._backend_factory = backend_factory
        self._idle_timeout = idle_timeout_seconds
        self._require_container = require_container

        self.state = SessionState.unauthenticated
        self.claims: TokenClaims | None = None
        self.container: ContainerDTO | None = None
        self.backend: ShellBackend | None = None

        self._relay_tasks: list[asyncio.Task] = []
        self._exit_task: asyncio.Task | None = None
        self._shell_exited = False
        self._shut_down = False

    async def run(self) -> None:
        """Serve the connection until it closes, then release the shell."""
        await self._send("welcome")
        try:
            while self.state is not SessionState.closed:
                try:
                    raw = await asyncio.wait_for(self._websocket.recv(), self._idle_timeout)
                except TimeoutError:
                    logger.info("Closing idle terminal session (user %s)", self._user_id)
                    await self._close_session(message="Idle timeout")
                    break
                await self.handle_message(raw)
        except ConnectionClosed:
            logger.debug("Client disconnected (user %s)", self._user_id)
        finally:
            await self.shutdown()

    async def handle_message(self, raw: str | bytes) -> None:
        """Apply one client frame to the state machine."""
        try:
            frame = parse_frame(raw)
        except FrameError as exc:
            if self.state is not SessionState.closed:
                await self._send_error(str(exc))
            return

        frame_type = frame["type"]
        if frame_type == "close":
            await self._close_session()
            return
        if self.state is SessionState.closed:
            return
        if frame_type not in CLIENT_FRAME_TYPES:
            await self._send_error(f"Unknown frame type: {frame_type}")
            return

        if frame_type == "connect":
            if self.state is SessionState.active:
                await self._send_error("Session already has an attached shell")
                return
            await self._handle_connect(frame)
        elif frame_type in ("input", "resize"):
            if self.state is not SessionState.active:
                if self.state is SessionState.unauthenticated:
                    await self._send_error("Not authenticated; send connect first")
                else:
                    await self._send_error("No shell attached; send connect first")
                return
            if frame_type == "input":
                await self._handle_input(frame)
            else:
                await self._handle_resize(frame)

    # ------------------------------------------------------------------
    # connect
    # ------------------------------------------------------------------

    async def _handle_connect(self, frame: dict[str, Any]) -> None:
        try:
            claims = self._verifier.verify(frame.get("token"))
        except Unauthorized as exc:
            logger.info("Rejected terminal connect: %s", exc.message)
            await self._send_error(exc.message)
            await self._abort(CLOSE_UNAUTHORIZED, "Unauthorized")
            return
        self.claims = claims
        self.state = SessionState.idle

        container = await self._resolve_container(claims, frame.get("containerId"))
        if container is False or self.state is SessionState.closed:
            return
        await self._attach(claims, container)

    async def _resolve_container(
        self, claims: TokenClaims, raw_id: Any
    ) -> ContainerDTO | None | bool:
        """Return the container to attach to, None for none, or False on refusal."""
        if raw_id is None or raw_id == "":
            if self._require_container:
                await self._send_error("containerId is required")
                return False
            return None

        try:
            container_id = int(raw_id)
        except (TypeError, ValueError):
            await self._send_error(f"Invalid containerId: {raw_id!r}")
            return False

        if self._directory is None:
            await self._send_error("Container lookup is not configured")
            return False
        try:
            container = await self._directory.lookup(container_id)
        except NotFound as exc:
            await self._send_error(exc.message)
            return False
        except httpx.HTTPError as exc:
            logger.warning("Container lookup for %s failed: %s", container_id, exc)
            await self._send_error("Container lookup failed")
            return False

        if not (claims.is_admin or container.owner_user_id == claims.user_id):
            logger.warning(
                "User %s denied access to container %s", self._user_id, container_id
            )
            await self._send_error("You do not have access to this container")
            await self._abort(CLOSE_FORBIDDEN, "Forbidden")
            return False

        if self._require_container and not container.ip:
            await self._send_error("Container has no network address yet")
            return False
        return container

    async def _attach(self, claims: TokenClaims, container: ContainerDTO | None) -> None:
        try:
            backend = self._backend_factory(claims, container)
            await backend.start()
        except ShellStartError as exc:
            logger.error("Shell attach failed for user %s: %s", self._user_id, exc)
            await self._send_error(f"Failed to start shell: {exc}")
            return

        self.container = container
        self.backend = backend
        self.state = SessionState.active
        for name, stream in backend.output_streams().items():
            self._relay_tasks.append(
                asyncio.create_task(self._relay(stream), name=f"relay-{name}")
            )
        self._exit_task = asyncio.create_task(self._watch_exit(backend))
        await self._send("ready")
        logger.info(
            "Shell attached for user %s (container %s)",
            self._user_id, container.id if container else "local",
        )

    # ------------------------------------------------------------------
    # active
    # ------------------------------------------------------------------

    async def _handle_input(self, frame: dict[str, Any]) -> None:
        data = frame.get("data")
        if not isinstance(data, str):
            await self._send_error("input requires string data")
            return
        try:
            await self.backend.write(data)
        except (BrokenPipeError, ConnectionResetError):
            await self._send_error("Shell input is closed")

    async def _handle_resize(self, frame: dict[str, Any]) -> None:
        cols, rows = frame.get("cols"), frame.get("rows")
        if not isinstance(cols, int) or not isinstance(rows, int) or cols <= 0 or rows <= 0:
            await self._send_error("resize requires positive integer cols and rows")
            return
        if not self.backend.supports_resize:
            await self._send("info", message="Resize not supported by this shell")
            return
        await self.backend.resize(cols, rows)

    async def _relay(self, stream) -> None:
        async for text in stream:
            await self._send("data", data=text)

    async def _watch_exit(self, backend: ShellBackend) -> None:
        """Close the session once the shell exits on its own."""
        await asyncio.gather(*self._relay_tasks, return_exceptions=True)
        code = await backend.wait()
        if self.state is not SessionState.active:
            return
        logger.info("Shell exited with code %s (user %s)", code, self._user_id)
        self._shell_exited = True
        self.state = SessionState.closed
        await self._send("closing", code=code)
        await self._close_channel(CLOSE_NORMAL, "Shell exited")

    # ------------------------------------------------------------------
    # close
    # ------------------------------------------------------------------

    async def _close_session(self, message: str | None = None) -> None:
        if self.state is SessionState.closed:
            return
        await self.shutdown()
        if message:
            await self._send("info", message=message)
        await self._send("closing")
        await self._close_channel(CLOSE_NORMAL, message or "Session closed")

    async def _abort(self, code: int, reason: str) -> None:
        await self.shutdown()
        await self._close_channel(code, reason)

    async def shutdown(self) -> None:
        """Stop relays and terminate the shell. Idempotent."""
        self.state = SessionState.closed
        if self._shut_down:
            return
        self._shut_down = True

        current = asyncio.current_task()
        tasks = [
            task for task in [*self._relay_tasks, self._exit_task]
            if task is not None and task is not current and not task.done()
        ]
        if self._shell_exited and self._exit_task in tasks:
            # Let it finish the close handshake it started.
            tasks.remove(self._exit_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        if self.backend is not None:
            await self.backend.terminate()

    # ------------------------------------------------------------------
    # channel helpers
    # ------------------------------------------------------------------

    @property
    def _user_id(self) -> int | None:
        return self.claims.user_id if self.claims else None

    async def _send(self, frame_type: str, **fields: Any) -> None:
        try:
            await self._websocket.send(make_frame(frame_type, **fields))
        except ConnectionClosed:
            logger.debug("Dropped %s frame for closed channel", frame_type)

    async def _send_error(self, message: str) -> None:
        await self._send("error", message=message)

    async def _close_channel(self, code: int, reason: str) -> None:
        try:
            await self._websocket.close(code, reason)
        except ConnectionClosed:
            pass
