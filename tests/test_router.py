"""Tests for SignalRouter forwarding rules."""

import json

import pytest

from knockrelay.connection import RelayConnection
from knockrelay.protocol import Role
from knockrelay.registry import SessionRegistry
from knockrelay.router import SignalRouter


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def router(registry):
    return SignalRouter(registry)


async def pair(registry, fake_ws, token="t1"):
    """Join a desktop and a web connection, then clear their outboxes."""
    desktop_ws, web_ws = fake_ws(), fake_ws()
    desktop = RelayConnection(desktop_ws, Role.DESKTOP, token)
    web = RelayConnection(web_ws, Role.WEB, token)
    await registry.join(token, Role.DESKTOP, desktop)
    await registry.join(token, Role.WEB, web)
    desktop_ws.sent.clear()
    web_ws.sent.clear()
    return desktop, desktop_ws, web, web_ws


class TestSignalForwarding:
    """Valid signals reach the peer and only the peer."""

    @pytest.mark.asyncio
    async def test_controller_signal_delivered_to_receiver(self, registry, router, fake_ws):
        _, desktop_ws, web, web_ws = await pair(registry, fake_ws)

        await router.route(web, json.dumps({"type": "signal", "name": "signal-1"}))

        assert desktop_ws.sent == [{"type": "signal", "name": "signal-1"}]
        assert web_ws.sent == []

    @pytest.mark.asyncio
    async def test_receiver_signal_delivered_to_controller(self, registry, router, fake_ws):
        desktop, desktop_ws, _, web_ws = await pair(registry, fake_ws)

        await router.route(desktop, '{"type":"signal","name":"signal-2"}')

        assert web_ws.sent == [{"type": "signal", "name": "signal-2"}]
        assert desktop_ws.sent == []

    @pytest.mark.asyncio
    async def test_forwarded_envelope_carries_only_name(self, registry, router, fake_ws):
        _, desktop_ws, web, _ = await pair(registry, fake_ws)

        await router.route(web, '{"type":"signal","name":"signal-1","extra":"x"}')

        assert desktop_ws.sent == [{"type": "signal", "name": "signal-1"}]

    @pytest.mark.asyncio
    async def test_peer_absent_replies_error_to_sender(self, registry, router, fake_ws):
        web_ws = fake_ws()
        web = RelayConnection(web_ws, Role.WEB, "t1")
        await registry.join("t1", Role.WEB, web)
        web_ws.sent.clear()

        await router.route(web, '{"type":"signal","name":"signal-1"}')

        assert web_ws.sent == [{"type": "error", "message": "Peer not connected"}]

    @pytest.mark.asyncio
    async def test_peer_closed_replies_error_to_sender(self, registry, router, fake_ws):
        _, desktop_ws, web, web_ws = await pair(registry, fake_ws)
        desktop_ws.closed = True

        await router.route(web, '{"type":"signal","name":"signal-1"}')

        assert desktop_ws.sent == []
        assert web_ws.sent == [{"type": "error", "message": "Peer not connected"}]

    @pytest.mark.asyncio
    async def test_custom_vocabulary(self, registry, fake_ws):
        router = SignalRouter(registry, ["signal-1", "signal-2", "signal-3"])
        _, desktop_ws, web, _ = await pair(registry, fake_ws)

        await router.route(web, '{"type":"signal","name":"signal-3"}')

        assert desktop_ws.sent == [{"type": "signal", "name": "signal-3"}]


class TestRejection:
    """Invalid messages never reach the peer."""

    @pytest.mark.asyncio
    async def test_unknown_signal_rejected(self, registry, router, fake_ws):
        _, desktop_ws, web, web_ws = await pair(registry, fake_ws)

        await router.route(web, '{"type":"signal","name":"bogus"}')

        assert desktop_ws.sent == []
        assert web_ws.sent_types() == ["error"]
        assert "Unknown signal" in web_ws.sent[0]["message"]

    @pytest.mark.asyncio
    async def test_malformed_json_rejected(self, registry, router, fake_ws):
        _, desktop_ws, web, web_ws = await pair(registry, fake_ws)

        await router.route(web, "{not json")

        assert desktop_ws.sent == []
        assert web_ws.sent == [{"type": "error", "message": "Invalid JSON"}]

    @pytest.mark.asyncio
    async def test_deeply_nested_json_rejected(self, registry, router, fake_ws):
        _, desktop_ws, web, web_ws = await pair(registry, fake_ws)

        await router.route(web, "[" * 200000)

        assert desktop_ws.sent == []
        assert web_ws.sent == [{"type": "error", "message": "Invalid JSON"}]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", ["status", "connected", "pong", "hello"])
    async def test_unknown_message_type_rejected(self, registry, router, fake_ws, kind):
        _, desktop_ws, web, web_ws = await pair(registry, fake_ws)

        await router.route(web, json.dumps({"type": kind}))

        assert desktop_ws.sent == []
        assert web_ws.sent == [{"type": "error", "message": f"Unknown message type: {kind}"}]

    @pytest.mark.asyncio
    async def test_sender_stays_open_after_error(self, registry, router, fake_ws):
        _, _, web, _ = await pair(registry, fake_ws)

        await router.route(web, "garbage")

        assert web.is_open()


class TestPing:
    """Ping is answered regardless of pairing state."""

    @pytest.mark.asyncio
    async def test_ping_with_peer(self, registry, router, fake_ws):
        _, desktop_ws, web, web_ws = await pair(registry, fake_ws)

        await router.route(web, '{"type":"ping"}')

        assert web_ws.sent == [{"type": "pong"}]
        assert desktop_ws.sent == []

    @pytest.mark.asyncio
    async def test_ping_without_room(self, router, fake_ws):
        ws = fake_ws()
        lonely = RelayConnection(ws, Role.DESKTOP, "nobody-joined")

        await router.route(lonely, '{"type":"ping"}')

        assert ws.sent == [{"type": "pong"}]
