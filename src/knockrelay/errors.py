"""Base exceptions for knock-relay."""


class KnockRelayError(Exception):
    """Base exception for all knock-relay errors."""

    pass


class ProtocolError(KnockRelayError):
    """Malformed envelope, unknown message type or unknown signal name."""

    pass


class PairingError(KnockRelayError):
    """Token or role missing or invalid at handshake."""

    pass


class RoutingError(KnockRelayError):
    """Signal could not be delivered to the peer."""

    pass


class TransportError(KnockRelayError):
    """Underlying send or close failed."""

    pass
