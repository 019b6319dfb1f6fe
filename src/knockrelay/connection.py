"""Connection lifecycle for one relay WebSocket.

RelayConnection wraps a transport WebSocket (aiohttp WebSocketResponse or
compatible), tags it with the role and token it registered under, and owns
the receive loop. Delivery is best-effort: send() and close() never raise,
transport failures are logged and reported through the return value.
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

from aiohttp import WSMsgType

from knockrelay import protocol
from knockrelay.errors import TransportError
from knockrelay.logging import short_token
from knockrelay.protocol import Role

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str], Union[Awaitable[None], None]]
GoneHandler = Callable[[], Union[Awaitable[Any], Any]]


class WebSocketProtocol(Protocol):
    """Protocol for WebSocket objects (for type hints)."""

    closed: bool

    async def send_str(self, data: str) -> None:
        """Send text data."""
        ...

    async def close(self, *, code: int = 1000, message: bytes = b"") -> bool:
        """Close the WebSocket."""
        ...

    def exception(self) -> Optional[BaseException]:
        """Last transport error, if any."""
        ...

    def __aiter__(self):
        """Async iteration over messages."""
        ...


class RelayConnection:
    """One duplex connection occupying a room slot.

    States are OPEN and CLOSED. The connection is OPEN until close() is
    called or the transport reports it closed.
    """

    def __init__(
        self,
        ws: WebSocketProtocol,
        role: Role,
        token: str,
        send_timeout: float = 5.0,
    ):
        """Initialize connection.

        Args:
            ws: The transport WebSocket.
            role: Role this connection registered as.
            token: Token of the owning room.
            send_timeout: Bound on a single send, in seconds.
        """
        self._ws = ws
        self.role = Role(role)
        self.token = token
        self.send_timeout = send_timeout
        self.connected_at = time.time()
        self._closed = False
        self._gone_fired = False

    def __repr__(self) -> str:
        state = "OPEN" if self.is_open() else "CLOSED"
        return f"RelayConnection({self.role.value}, {short_token(self.token)}, {state})"

    def is_open(self) -> bool:
        """Single source of truth for "can this connection be sent to"."""
        return not self._closed and not self._ws.closed

    async def send(self, envelope: dict[str, Any]) -> bool:
        """Deliver an envelope, ignoring failure.

        Never raises. A closed connection, a transport error or a send that
        exceeds send_timeout all drop the message.

        Args:
            envelope: Envelope dict to encode and send.

        Returns:
            True if the transport accepted the message, False if dropped.
        """
        if not self.is_open():
            logger.debug(f"Dropping {envelope.get('type')} for closed {self!r}")
            return False

        try:
            await self._write(protocol.encode(envelope))
            return True
        except TransportError as e:
            logger.warning(f"Send failed for {self!r}: {e}")
        return False

    async def _write(self, text: str) -> None:
        """Write one frame to the transport.

        Raises:
            TransportError: If the write fails or exceeds send_timeout.
        """
        try:
            await asyncio.wait_for(self._ws.send_str(text), timeout=self.send_timeout)
        except asyncio.TimeoutError:
            raise TransportError(f"timed out after {self.send_timeout}s") from None
        except Exception as e:
            raise TransportError(str(e)) from e

    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the connection. Idempotent, never raises.

        Args:
            code: WebSocket close code.
            reason: Human readable close reason.
        """
        if self._closed:
            return
        self._closed = True

        if self._ws.closed:
            return
        try:
            await asyncio.wait_for(
                self._ws.close(code=code, message=reason.encode()),
                timeout=self.send_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Close timed out: {self!r}")
        except Exception as e:
            logger.warning(f"Close failed for {self!r}: {e}")

    async def serve(self, on_message: MessageHandler, on_gone: GoneHandler) -> None:
        """Run the receive loop until the transport closes or errors.

        Text frames go to on_message. Close and error both end the loop and
        run on_gone exactly once; an error does not wait for a close frame.

        Args:
            on_message: Called with each received text frame.
            on_gone: Cleanup callback, sync or async.
        """
        try:
            async for msg in self._ws:
                if msg.type == WSMsgType.TEXT:
                    await self._dispatch(on_message, msg.data)
                elif msg.type == WSMsgType.BINARY:
                    await self._dispatch(on_message, msg.data.decode("utf-8", "replace"))
                elif msg.type == WSMsgType.ERROR:
                    logger.warning(f"Transport error on {self!r}: {self._ws.exception()}")
                    break
                elif msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Receive loop error on {self!r}: {e}")
        finally:
            self._closed = True
            await self._fire_gone(on_gone)

    async def _dispatch(self, handler: MessageHandler, data: str) -> None:
        try:
            result = handler(data)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Error in message handler for {self!r}: {e}")

    async def _fire_gone(self, on_gone: GoneHandler) -> None:
        if self._gone_fired:
            return
        self._gone_fired = True
        try:
            result = on_gone()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Error in close handler for {self!r}: {e}")
