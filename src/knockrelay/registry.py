"""Token-keyed room registry for the pairing relay.

Each room holds at most one connection per role. The raw map is never
exposed: callers go through join(), leave() and get(), each of which mutates
under a single registry lock. Network I/O (closing a replaced connection,
the connected ack, status broadcasts) always happens after the lock is
released.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Optional

from knockrelay import protocol
from knockrelay.connection import RelayConnection
from knockrelay.logging import short_token
from knockrelay.protocol import CLOSE_REPLACED, Role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoomSnapshot:
    """Read-only view of a room at one instant."""

    token: str
    desktop: Optional[RelayConnection] = None
    web: Optional[RelayConnection] = None

    def connection(self, role: Role) -> Optional[RelayConnection]:
        """Connection occupying the slot for role, if any."""
        return self.desktop if Role(role) is Role.DESKTOP else self.web

    def is_present(self, role: Role) -> bool:
        """True if the slot for role holds an OPEN connection."""
        conn = self.connection(role)
        return conn is not None and conn.is_open()

    def status(self) -> dict:
        """Status envelope reporting current occupancy."""
        return protocol.status(
            desktop=self.is_present(Role.DESKTOP),
            web=self.is_present(Role.WEB),
        )

    def open_connections(self) -> list[RelayConnection]:
        return [c for c in (self.desktop, self.web) if c is not None and c.is_open()]


@dataclass
class Room:
    """Mutable per-token pairing state. Owned by SessionRegistry."""

    token: str
    slots: Dict[Role, Optional[RelayConnection]] = field(
        default_factory=lambda: {Role.DESKTOP: None, Role.WEB: None}
    )
    last_activity: float = field(default_factory=time.monotonic)
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def is_empty(self) -> bool:
        return all(conn is None for conn in self.slots.values())

    def snapshot(self) -> RoomSnapshot:
        return RoomSnapshot(
            token=self.token,
            desktop=self.slots[Role.DESKTOP],
            web=self.slots[Role.WEB],
        )


class SessionRegistry:
    """Concurrency-safe mapping from token to a two-slot room.

    Rooms are created lazily on first join. A join into an occupied slot
    closes the previous occupant with CLOSE_REPLACED (last writer wins).
    Every effective join or leave is followed by a status broadcast to all
    OPEN connections in the room.
    """

    def __init__(self, clock=time.monotonic):
        """Initialize empty registry.

        Args:
            clock: Monotonic time source, injectable for tests.
        """
        self._rooms: Dict[str, Room] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def join(self, token: str, role: Role, connection: RelayConnection) -> RoomSnapshot:
        """Install connection in the room slot for role.

        Sequence: occupy slot (under lock), close the replaced occupant if
        it is still OPEN, send the connected ack, broadcast status.

        Args:
            token: Room token.
            role: Slot to occupy.
            connection: New occupant.

        Returns:
            Snapshot of the room right after the join.
        """
        role = Role(role)
        async with self._lock:
            room = self._rooms.get(token)
            if room is None:
                room = Room(token=token, last_activity=self._clock())
                self._rooms[token] = room
                logger.debug(f"Room created: {short_token(token)}")
            previous = room.slots[role]
            room.slots[role] = connection
            room.last_activity = self._clock()
            snapshot = room.snapshot()

        if previous is not None and previous is not connection and previous.is_open():
            logger.info(f"Replacing {role.value} in room {short_token(token)}")
            await previous.close(CLOSE_REPLACED, "Replaced by new connection")

        logger.info(f"{role.value} joined room {short_token(token)}")
        await connection.send(protocol.connected(role, token))
        await self._broadcast(room)
        return snapshot

    async def leave(self, token: str, role: Role, connection: RelayConnection) -> bool:
        """Clear the slot for role if it still holds connection.

        A stale leave (slot already taken by a newer connection, or already
        cleared) is a no-op and does not broadcast.

        Returns:
            True if the slot was cleared.
        """
        role = Role(role)
        async with self._lock:
            room = self._rooms.get(token)
            if room is None or room.slots[role] is not connection:
                return False
            room.slots[role] = None
            room.last_activity = self._clock()

        logger.info(f"{role.value} left room {short_token(token)}")
        await self._broadcast(room)
        return True

    async def get(self, token: str) -> Optional[RoomSnapshot]:
        """Snapshot of the room for token, or None if it does not exist."""
        async with self._lock:
            room = self._rooms.get(token)
            return room.snapshot() if room is not None else None

    async def reap_idle(self, ttl: float) -> int:
        """Remove rooms with both slots empty and no mutation for ttl seconds.

        Returns:
            Number of rooms removed.
        """
        cutoff = self._clock() - ttl
        async with self._lock:
            stale = [
                token
                for token, room in self._rooms.items()
                if room.is_empty() and room.last_activity <= cutoff
            ]
            for token in stale:
                del self._rooms[token]

        for token in stale:
            logger.debug(f"Reaped idle room {short_token(token)}")
        return len(stale)

    async def close_all(self, code: int = 1001, reason: str = "Relay shutting down") -> None:
        """Close every connection and drop all rooms."""
        async with self._lock:
            connections = [
                conn
                for room in self._rooms.values()
                for conn in room.slots.values()
                if conn is not None
            ]
            self._rooms.clear()
        for conn in connections:
            await conn.close(code, reason)

    async def _broadcast(self, room: Room) -> None:
        # Serialized per room; occupancy is re-read inside the lock so the
        # last status delivered matches the final occupancy.
        async with room.send_lock:
            snapshot = room.snapshot()
            envelope = snapshot.status()
            for conn in snapshot.open_connections():
                await conn.send(envelope)

    def __len__(self) -> int:
        """Return number of rooms in registry."""
        return len(self._rooms)

    def __contains__(self, token: str) -> bool:
        """Check if a room exists for token."""
        return token in self._rooms
