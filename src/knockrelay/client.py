"""Relay client endpoint for controllers and receivers.

Connects to the relay as one role under a token, tracks room status and
delivers received envelopes to callbacks. There is no reconnect and no
retry: a disconnect is terminal until connect() is called again, and a
signal sent while disconnected is dropped.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import aiohttp

from knockrelay import protocol
from knockrelay.errors import PairingError, ProtocolError
from knockrelay.logging import short_token
from knockrelay.protocol import MessageType, Role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoleStatus:
    """Which roles are present in the room."""

    desktop: bool = False
    web: bool = False


class RelayClient:
    """One endpoint of a paired room.

    Usage:
        client = RelayClient(url, token, Role.WEB, on_signal=print)
        await client.connect()
        await client.send_signal("signal-1")
        await client.disconnect()
    """

    def __init__(
        self,
        url: str,
        token: str,
        role: Role = Role.WEB,
        ping_interval: float = 0.0,
        session: Optional[aiohttp.ClientSession] = None,
        on_connected: Optional[Callable[[Role, str], Any]] = None,
        on_status: Optional[Callable[[RoleStatus], Any]] = None,
        on_signal: Optional[Callable[[str], Any]] = None,
        on_error: Optional[Callable[[str], Any]] = None,
        on_disconnected: Optional[Callable[[], Any]] = None,
    ):
        """Initialize client.

        Args:
            url: Relay endpoint, e.g. ws://host:8765/api/ws.
            token: Pairing token shared with the peer.
            role: Role to join as.
            ping_interval: Keepalive ping period in seconds, 0 disables.
            session: aiohttp session to use; one is created (and closed) if None.
            on_connected: Called with (role, token) when the relay acks the join.
            on_status: Called with RoleStatus on every status broadcast.
            on_signal: Called with the signal name forwarded by the peer.
            on_error: Called with the relay's error message.
            on_disconnected: Called once when the connection ends.
        """
        self.url = url
        self.token = token
        self.role = Role(role)
        self.ping_interval = ping_interval
        self.status = RoleStatus()
        self.last_pong: Optional[float] = None

        self._session = session
        self._owns_session = session is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._receive_task: Optional[asyncio.Task] = None
        self._ping_task: Optional[asyncio.Task] = None
        self._pending_sends: set[asyncio.Task] = set()
        self._closed_event = asyncio.Event()

        self._on_connected = on_connected
        self._on_status = on_status
        self._on_signal = on_signal
        self._on_error = on_error
        self._on_disconnected = on_disconnected
        self._close_handlers: list[Callable[[], Any]] = []

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def connect(self) -> None:
        """Open the relay connection and start receiving.

        Raises:
            PairingError: If no token was supplied.
            aiohttp.ClientError: If the relay cannot be reached.
        """
        if not self.token:
            raise PairingError("Please enter a token")
        if self.connected:
            return

        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

        try:
            self._ws = await self._session.ws_connect(
                self.url,
                params={"token": self.token, "role": self.role.value},
            )
        except Exception:
            logger.warning("Failed to connect")
            await self._close_session()
            raise

        self._closed_event = asyncio.Event()
        logger.info(f"WebSocket connected as {self.role.value} ({short_token(self.token)})")
        self._receive_task = asyncio.create_task(self._receive_loop(self._ws))
        if self.ping_interval > 0:
            self._ping_task = asyncio.create_task(self._ping_loop())

    async def disconnect(self) -> None:
        """Close the connection. Idempotent."""
        if self._ping_task:
            self._ping_task.cancel()
            self._ping_task = None

        ws = self._ws
        if ws is not None and not ws.closed:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Close failed: {e}")

        task = self._receive_task
        if task is not None and task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass
            self._receive_task = None

        await self._close_session()

    def on_close(self, handler: Callable[[], Any]) -> None:
        """Add a handler run after on_disconnected when the connection ends.

        Args:
            handler: Callback (can be sync or async).
        """
        self._close_handlers.append(handler)

    async def wait_closed(self) -> None:
        """Wait until the connection ends."""
        await self._closed_event.wait()

    async def send_signal(self, name: str) -> bool:
        """Send a signal to the peer through the relay.

        Returns:
            True if handed to the transport, False if not connected.
        """
        if await self._send(protocol.signal(name)):
            logger.info(f"Sent {name}")
            return True
        logger.warning("Cannot send, not connected")
        return False

    def submit_signal(self, name: str) -> None:
        """Schedule send_signal() on the running loop.

        Synchronous, so it can be passed as a classifier emit callback.
        """
        task = asyncio.get_running_loop().create_task(self.send_signal(name))
        self._pending_sends.add(task)
        task.add_done_callback(self._pending_sends.discard)

    async def ping(self) -> bool:
        """Send a liveness probe. The relay answers with pong."""
        return await self._send(protocol.ping())

    async def _send(self, envelope: dict) -> bool:
        if not self.connected:
            return False
        try:
            await self._ws.send_str(protocol.encode(envelope))
            return True
        except Exception as e:
            logger.warning(f"Send failed: {e}")
            return False

    async def _ping_loop(self) -> None:
        while self.connected:
            try:
                await asyncio.sleep(self.ping_interval)
                await self.ping()
            except asyncio.CancelledError:
                break

    async def _receive_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self._handle_message(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning(f"WebSocket error: {ws.exception()}")
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Receive loop error: {e}")
        finally:
            if ws.close_code is not None:
                logger.info(f"WebSocket disconnected (code={ws.close_code})")
            else:
                logger.info("WebSocket disconnected")
            self.status = RoleStatus()
            self._closed_event.set()
            if self._ping_task:
                self._ping_task.cancel()
                self._ping_task = None
            await self._call(self._on_disconnected)
            for handler in list(self._close_handlers):
                await self._call(handler)

    async def _handle_message(self, data: str) -> None:
        try:
            envelope = protocol.decode(data)
        except ProtocolError as e:
            logger.debug(f"Ignoring message from relay: {e}")
            return

        kind = envelope["type"]
        if kind == MessageType.STATUS.value:
            self.status = RoleStatus(
                desktop=bool(envelope.get("desktop")),
                web=bool(envelope.get("web")),
            )
            await self._call(self._on_status, self.status)
        elif kind == MessageType.SIGNAL.value:
            name = envelope.get("name")
            logger.info(f"Received {name}")
            await self._call(self._on_signal, name)
        elif kind == MessageType.CONNECTED.value:
            logger.info(f"Server acknowledged connection as {envelope.get('role')}")
            await self._call(self._on_connected, self.role, envelope.get("token", self.token))
        elif kind == MessageType.ERROR.value:
            message = envelope.get("message", "")
            logger.warning(f"Server error: {message}")
            await self._call(self._on_error, message)
        elif kind == MessageType.PONG.value:
            self.last_pong = time.time()
        else:
            logger.debug(f"Ignoring unknown message type: {kind}")

    async def _call(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Error in client callback: {e}")

    async def _close_session(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
