"""Route inbound envelopes between the two slots of a room."""

import logging
from typing import Iterable, Optional

from knockrelay import protocol
from knockrelay.connection import RelayConnection
from knockrelay.errors import ProtocolError, RoutingError
from knockrelay.logging import short_token
from knockrelay.protocol import MessageType
from knockrelay.registry import SessionRegistry

logger = logging.getLogger(__name__)


class SignalRouter:
    """Validate envelopes from a sender and forward signals to its peer.

    - ping: always answered with pong, regardless of pairing state.
    - signal with an accepted name: forwarded verbatim to the peer slot,
      never echoed back to the sender.
    - anything else: error envelope to the sender only.

    Signals are never queued or retried. If the peer is absent the signal
    is dropped and the sender gets "Peer not connected".
    """

    def __init__(
        self,
        registry: SessionRegistry,
        accepted_signals: Optional[Iterable[str]] = None,
    ):
        """Initialize router.

        Args:
            registry: Room registry to resolve peers.
            accepted_signals: Signal vocabulary; defaults to signal-1/signal-2.
        """
        self.registry = registry
        self.accepted_signals = frozenset(
            accepted_signals if accepted_signals is not None else protocol.ACCEPTED_SIGNALS
        )

    async def route(self, sender: RelayConnection, raw: str | bytes) -> None:
        """Handle one raw message from sender.

        The sender carries the token and role it registered under.

        Args:
            sender: Connection the message arrived on.
            raw: Raw frame text.
        """
        try:
            envelope = protocol.decode(raw)
            kind = envelope["type"]

            if kind == MessageType.PING.value:
                await sender.send(protocol.pong())
                return

            if kind != MessageType.SIGNAL.value:
                raise ProtocolError(f"Unknown message type: {kind}")

            name = protocol.check_signal(envelope, self.accepted_signals)
            peer = await self._resolve_peer(sender)
        except ProtocolError as e:
            logger.debug(f"Rejected message from {sender!r}: {e}")
            await sender.send(protocol.error(str(e)))
            return
        except RoutingError as e:
            logger.info(f"Dropped signal from {sender!r}: {e}")
            await sender.send(protocol.error(str(e)))
            return

        logger.debug(
            f"{sender.role.value} -> {peer.role.value} {name} "
            f"in room {short_token(sender.token)}"
        )
        await peer.send(protocol.signal(name))

    async def _resolve_peer(self, sender: RelayConnection) -> RelayConnection:
        """Find the OPEN connection in the opposite slot.

        Raises:
            RoutingError: If there is no room or the peer is absent/closed.
        """
        room = await self.registry.get(sender.token)
        peer = room.connection(sender.role.peer) if room is not None else None
        if peer is None or not peer.is_open():
            raise RoutingError("Peer not connected")
        return peer
