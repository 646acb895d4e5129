"""WebSocket server that hands each connection its own TerminalSession.

The gateway is an explicit handle: build it with create_gateway(), then
``await gateway.serve()``. Nothing about it lives in module globals, so
several gateways (e.g. in tests) can coexist in one process.
"""

import asyncio
import itertools
import logging
from http import HTTPStatus
from urllib.parse import urlsplit

from websockets.asyncio.server import ServerConnection, serve
from websockets.http11 import Request, Response

from lab_shared.schemas.container import ContainerDTO
from lab_shared.tokens import TokenClaims, TokenVerifier

from terminal_gateway.backends import (
    LocalShellBackend,
    ShellBackend,
    ShellStartError,
    SshShellBackend,
)
from terminal_gateway.config import GatewaySettings
from terminal_gateway.directory import ContainerDirectory
from terminal_gateway.session import BackendFactory, TerminalSession

logger = logging.getLogger(__name__)


class TerminalGateway:
    """Accepts terminal channels and tracks the live sessions."""

    def __init__(
        self,
        verifier: TokenVerifier,
        directory: ContainerDirectory | None,
        backend_factory: BackendFactory,
        path: str = "/ws/ssh",
        idle_timeout_seconds: float = 900.0,
        require_container: bool = True,
    ):
        self.verifier = verifier
        self.directory = directory
        self.path = path
        self._backend_factory = backend_factory
        self._idle_timeout = idle_timeout_seconds
        self._require_container = require_container
        self._sessions: dict[int, TerminalSession] = {}
        self._ids = itertools.count(1)
        self._server = None

    @property
    def active_sessions(self) -> int:
        return len(self._sessions)

    def process_request(self, connection: ServerConnection, request: Request) -> Response | None:
        """Refuse the upgrade for any path other than the gateway path."""
        if urlsplit(request.path).path != self.path:
            return connection.respond(HTTPStatus.NOT_FOUND, "Not found\n")
        return None

    async def handle_connection(self, websocket) -> None:
        session_id = next(self._ids)
        session = TerminalSession(
            websocket,
            verifier=self.verifier,
            directory=self.directory,
            backend_factory=self._backend_factory,
            idle_timeout_seconds=self._idle_timeout,
            require_container=self._require_container,
        )
        self._sessions[session_id] = session
        logger.info(
            "Terminal channel %s opened from %s (%d active)",
            session_id, getattr(websocket, "remote_address", None), self.active_sessions,
        )
        try:
            await session.run()
        except Exception:
            logger.exception("Terminal channel %s failed", session_id)
            await session.shutdown()
        finally:
            self._sessions.pop(session_id, None)
            logger.info("Terminal channel %s closed", session_id)

    async def start(self, host: str, port: int) -> None:
        self._server = await serve(
            self.handle_connection, host, port, process_request=self.process_request
        )
        logger.info("Terminal gateway listening on ws://%s:%s%s", host, port, self.path)

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    async def serve(self, host: str, port: int) -> None:
        """Run until cancelled."""
        await self.start(host, port)
        try:
            await asyncio.Future()
        finally:
            await self.stop()


def _ssh_backend_factory(settings: GatewaySettings) -> BackendFactory:
    def factory(claims: TokenClaims, container: ContainerDTO | None) -> ShellBackend:
        if container is None or not container.ip:
            raise ShellStartError("Container has no address to connect to")
        ssh_user = (container.metadata or {}).get("ssh_user") or settings.ssh_user
        return SshShellBackend(
            host=container.ip,
            user=ssh_user,
            port=settings.ssh_port,
            identity_file=settings.ssh_identity_file,
            connect_timeout_seconds=settings.ssh_connect_timeout_seconds,
            strict_host_key_checking=settings.ssh_strict_host_key_checking,
        )

    return factory


def _local_backend_factory(settings: GatewaySettings) -> BackendFactory:
    def factory(claims: TokenClaims, container: ContainerDTO | None) -> ShellBackend:
        return LocalShellBackend(shell=settings.local_shell or None)

    return factory


def create_gateway(settings: GatewaySettings) -> TerminalGateway:
    """Build a gateway from settings.

    Raises:
        ValueError: If local mode is selected without LOCAL_SHELL_FALLBACK.
    """
    if settings.shell_mode == "local":
        if not settings.local_shell_fallback:
            raise ValueError("SHELL_MODE=local requires LOCAL_SHELL_FALLBACK=true")
        logger.warning("Local shell fallback enabled; do not use this in production")
        backend_factory = _local_backend_factory(settings)
    else:
        backend_factory = _ssh_backend_factory(settings)

    return TerminalGateway(
        verifier=TokenVerifier(settings.jwt_secret, settings.jwt_algorithm),
        directory=ContainerDirectory(settings.api_server_url, settings.service_token),
        backend_factory=backend_factory,
        path=settings.gateway_path,
        idle_timeout_seconds=settings.idle_timeout_seconds,
        require_container=settings.shell_mode == "ssh",
    )
