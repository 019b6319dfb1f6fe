"""Wire protocol for the pairing relay.

Envelopes are JSON objects discriminated by their "type" field:

- connected: relay -> client, {role, token}
- status:    relay -> client, {desktop: bool, web: bool}
- signal:    either direction, {name}
- error:     relay -> client, {message}
- ping/pong: client -> relay / relay -> client, no fields
"""

import json
from enum import Enum
from typing import Any, Iterable, Optional

from knockrelay.errors import PairingError, ProtocolError

__all__ = [
    "ACCEPTED_SIGNALS",
    "CLOSE_BAD_REQUEST",
    "CLOSE_REPLACED",
    "MessageType",
    "Role",
    "SIGNAL_NEXT",
    "SIGNAL_PREVIOUS",
    "check_signal",
    "connected",
    "decode",
    "encode",
    "error",
    "parse_role",
    "ping",
    "pong",
    "signal",
    "status",
]

# Minimal vocabulary: "next/advance" and "previous/back"
SIGNAL_NEXT = "signal-1"
SIGNAL_PREVIOUS = "signal-2"
ACCEPTED_SIGNALS = frozenset({SIGNAL_NEXT, SIGNAL_PREVIOUS})

# Close codes
CLOSE_REPLACED = 4000  # Slot taken over by a newer connection
CLOSE_BAD_REQUEST = 1008  # Policy violation: bad token/role at handshake


class Role(str, Enum):
    """Participant kind within a room."""

    DESKTOP = "desktop"  # Receiver
    WEB = "web"  # Controller

    @property
    def peer(self) -> "Role":
        """The complementary role (desktop <-> web)."""
        return Role.WEB if self is Role.DESKTOP else Role.DESKTOP


class MessageType(str, Enum):
    """Envelope discriminator values."""

    CONNECTED = "connected"
    STATUS = "status"
    SIGNAL = "signal"
    ERROR = "error"
    PING = "ping"
    PONG = "pong"


def parse_role(value: Optional[str]) -> Role:
    """Parse a role query parameter.

    Args:
        value: Raw value ("desktop" or "web").

    Returns:
        Matching Role.

    Raises:
        PairingError: If value is missing or not a known role.
    """
    if not value:
        raise PairingError("Missing role")
    try:
        return Role(value)
    except ValueError:
        raise PairingError(f"Invalid role: {value}") from None


# =============================================================================
# Envelope builders
# =============================================================================


def connected(role: Role, token: str) -> dict[str, Any]:
    return {"type": MessageType.CONNECTED.value, "role": Role(role).value, "token": token}


def status(desktop: bool, web: bool) -> dict[str, Any]:
    return {"type": MessageType.STATUS.value, "desktop": bool(desktop), "web": bool(web)}


def signal(name: str) -> dict[str, Any]:
    return {"type": MessageType.SIGNAL.value, "name": name}


def error(message: str) -> dict[str, Any]:
    return {"type": MessageType.ERROR.value, "message": message}


def ping() -> dict[str, Any]:
    return {"type": MessageType.PING.value}


def pong() -> dict[str, Any]:
    return {"type": MessageType.PONG.value}


# =============================================================================
# Codec
# =============================================================================


def encode(envelope: dict[str, Any]) -> str:
    """Serialize an envelope to JSON text."""
    return json.dumps(envelope, separators=(",", ":"))


def decode(raw: str | bytes) -> dict[str, Any]:
    """Parse JSON text into an envelope.

    Only the shape is checked here (a JSON object with a string "type").
    Whether the type is acceptable in a given direction is up to the caller.

    Args:
        raw: Received text or bytes.

    Returns:
        Envelope dict.

    Raises:
        ProtocolError: If raw is not valid JSON or not an envelope.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError, UnicodeDecodeError, RecursionError):
        raise ProtocolError("Invalid JSON") from None

    if not isinstance(data, dict) or not isinstance(data.get("type"), str):
        raise ProtocolError("Invalid envelope")
    return data


def check_signal(envelope: dict[str, Any], accepted: Iterable[str] = ACCEPTED_SIGNALS) -> str:
    """Validate a signal envelope and return its name.

    Raises:
        ProtocolError: If the name is missing or not in the accepted set.
    """
    name = envelope.get("name")
    if not isinstance(name, str) or name not in accepted:
        raise ProtocolError(f"Unknown signal: {name}")
    return name
