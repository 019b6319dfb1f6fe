"""aiohttp host for the pairing relay.

Routes:
- /health - Health check
- {relay.path} - WebSocket endpoint, ?token=<TOKEN>&role=desktop|web.
  A plain GET without upgrade answers {"ok": true}.
"""

import asyncio
import logging
from typing import Optional

from aiohttp import web

from knockrelay import protocol
from knockrelay.config import RelayConfig
from knockrelay.connection import RelayConnection
from knockrelay.errors import PairingError
from knockrelay.logging import short_token
from knockrelay.protocol import CLOSE_BAD_REQUEST, Role
from knockrelay.registry import SessionRegistry
from knockrelay.router import SignalRouter

logger = logging.getLogger(__name__)


class RelayServer:
    """Relay pairing one desktop and one web client per token."""

    def __init__(
        self,
        config: Optional[RelayConfig] = None,
        registry: Optional[SessionRegistry] = None,
    ):
        """Initialize relay server.

        Args:
            config: Relay configuration.
            registry: Room registry (a fresh one if None).
        """
        self.config = config or RelayConfig()
        self.registry = registry or SessionRegistry()
        self.router = SignalRouter(self.registry, self.config.signals)

        self.app = web.Application()
        self._setup_routes()
        self.app.on_startup.append(self._on_startup)
        self.app.on_shutdown.append(self._on_shutdown)

        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._port: int = 0
        self._sweep_task: Optional[asyncio.Task] = None

    def _setup_routes(self) -> None:
        """Set up all HTTP routes."""
        self.app.router.add_get("/health", self._handle_health)
        self.app.router.add_get(self.config.path, self._handle_relay)

    # =========================================================================
    # Handlers
    # =========================================================================

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.Response(text="OK")

    async def _handle_relay(self, request: web.Request) -> web.StreamResponse:
        """Handle one relay connection from handshake to cleanup."""
        ws = web.WebSocketResponse()
        if not ws.can_prepare(request).ok:
            return web.json_response({"ok": True})

        await ws.prepare(request)

        try:
            token, role = self._parse_handshake(request)
        except PairingError as e:
            logger.warning(f"Rejected handshake from {request.remote or 'unknown'}: {e}")
            rejected = RelayConnection(ws, Role.WEB, "", self.config.send_timeout)
            await rejected.send(protocol.error("Invalid token or role"))
            await rejected.close(CLOSE_BAD_REQUEST, "Invalid token/role")
            return ws

        conn = RelayConnection(ws, role, token, self.config.send_timeout)
        await self.registry.join(token, role, conn)

        async def on_gone() -> None:
            await self.registry.leave(token, role, conn)

        await conn.serve(
            on_message=lambda raw: self.router.route(conn, raw),
            on_gone=on_gone,
        )
        logger.debug(f"Connection finished: {role.value} {short_token(token)}")
        return ws

    def _parse_handshake(self, request: web.Request) -> tuple[str, Role]:
        """Extract token and role from query parameters.

        Raises:
            PairingError: If token is missing or role is missing/invalid.
        """
        token = request.query.get("token")
        if not token:
            raise PairingError("Missing token")
        role = protocol.parse_role(request.query.get("role"))
        return token, role

    # =========================================================================
    # Idle room sweep
    # =========================================================================

    async def _on_startup(self, app: web.Application) -> None:
        if self.config.sweep_interval > 0 and self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def _on_shutdown(self, app: web.Application) -> None:
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        await self.registry.close_all()

    async def _sweep_loop(self) -> None:
        """Periodically reap rooms that have been empty for room_idle_ttl."""
        while True:
            try:
                await asyncio.sleep(self.config.sweep_interval)
                reaped = await self.registry.reap_idle(self.config.room_idle_ttl)
                if reaped:
                    logger.info(f"Reaped {reaped} idle room(s)")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Sweep loop error: {e}")

    # =========================================================================
    # Server lifecycle
    # =========================================================================

    async def start(self, host: str, port: int) -> web.AppRunner:
        """Start the server.

        Args:
            host: Host to bind to.
            port: Port to bind to (0 for random).

        Returns:
            App runner for cleanup.
        """
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host, port)
        await self._site.start()

        # Get actual port
        if self._site._server and self._site._server.sockets:
            self._port = self._site._server.sockets[0].getsockname()[1]
        else:
            self._port = port

        logger.info(f"Relay listening on {host}:{self._port}{self.config.path}")
        return self._runner

    def get_port(self) -> int:
        """Get the actual bound port."""
        return self._port

    async def close(self) -> None:
        """Close all connections and stop server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
        logger.info("Relay stopped")
