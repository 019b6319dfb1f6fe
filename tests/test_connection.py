"""Tests for RelayConnection lifecycle."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from knockrelay import protocol
from knockrelay.connection import RelayConnection
from knockrelay.errors import TransportError
from knockrelay.protocol import Role


class TestSend:
    """send() is best-effort and never raises."""

    @pytest.mark.asyncio
    async def test_send_delivers_encoded_envelope(self, fake_ws):
        ws = fake_ws()
        conn = RelayConnection(ws, Role.WEB, "token-1")

        assert await conn.send(protocol.signal("signal-1")) is True
        assert ws.sent == [{"type": "signal", "name": "signal-1"}]

    @pytest.mark.asyncio
    async def test_send_failure_is_swallowed(self, fake_ws):
        ws = fake_ws(fail_send=True)
        conn = RelayConnection(ws, Role.WEB, "token-1")

        assert await conn.send(protocol.pong()) is False
        assert ws.sent == []

    @pytest.mark.asyncio
    async def test_send_to_closed_connection_is_dropped(self, fake_ws):
        ws = fake_ws()
        conn = RelayConnection(ws, Role.DESKTOP, "token-1")
        await conn.close()

        assert conn.is_open() is False
        assert await conn.send(protocol.pong()) is False

    @pytest.mark.asyncio
    async def test_send_timeout_is_swallowed(self, fake_ws):
        ws = fake_ws(hang_send=True)
        conn = RelayConnection(ws, Role.WEB, "token-1", send_timeout=0.01)

        assert await conn.send(protocol.pong()) is False

    @pytest.mark.asyncio
    async def test_write_raises_transport_error(self, fake_ws):
        conn = RelayConnection(fake_ws(fail_send=True), Role.WEB, "token-1")

        with pytest.raises(TransportError, match="closing transport"):
            await conn._write('{"type":"pong"}')

    @pytest.mark.asyncio
    async def test_write_timeout_raises_transport_error(self, fake_ws):
        conn = RelayConnection(fake_ws(hang_send=True), Role.WEB, "token-1", send_timeout=0.01)

        with pytest.raises(TransportError, match="timed out"):
            await conn._write('{"type":"pong"}')


class TestClose:
    """close() is idempotent."""

    @pytest.mark.asyncio
    async def test_close_passes_code_and_reason(self, fake_ws):
        ws = fake_ws()
        conn = RelayConnection(ws, Role.WEB, "token-1")

        await conn.close(4000, "Replaced by new connection")

        assert ws.close_code == 4000
        assert ws.close_message == b"Replaced by new connection"

    @pytest.mark.asyncio
    async def test_double_close_closes_transport_once(self, fake_ws):
        ws = fake_ws()
        conn = RelayConnection(ws, Role.WEB, "token-1")

        await conn.close()
        await conn.close()

        assert ws.close_calls == 1

    @pytest.mark.asyncio
    async def test_close_failure_is_swallowed(self, fake_ws):
        ws = fake_ws()
        ws.close = AsyncMock(side_effect=RuntimeError("boom"))
        conn = RelayConnection(ws, Role.WEB, "token-1")

        await conn.close()

        assert conn.is_open() is False

    def test_is_open_follows_transport(self, fake_ws):
        ws = fake_ws()
        conn = RelayConnection(ws, Role.WEB, "token-1")
        assert conn.is_open() is True

        ws.closed = True
        assert conn.is_open() is False


class TestServe:
    """Receive loop dispatch and cleanup."""

    @pytest.mark.asyncio
    async def test_messages_dispatched_in_order(self, fake_ws):
        ws = fake_ws()
        conn = RelayConnection(ws, Role.WEB, "token-1")
        received = []
        ws.feed_text("one")
        ws.feed_text("two")
        ws.feed_close()

        await conn.serve(on_message=received.append, on_gone=Mock())

        assert received == ["one", "two"]

    @pytest.mark.asyncio
    async def test_close_runs_cleanup_once(self, fake_ws):
        ws = fake_ws()
        conn = RelayConnection(ws, Role.WEB, "token-1")
        on_gone = AsyncMock()
        ws.feed_close()

        await conn.serve(on_message=Mock(), on_gone=on_gone)

        on_gone.assert_awaited_once()
        assert conn.is_open() is False

    @pytest.mark.asyncio
    async def test_error_runs_same_cleanup_without_close(self, fake_ws):
        ws = fake_ws()
        conn = RelayConnection(ws, Role.WEB, "token-1")
        on_gone = Mock()
        ws.feed_error()
        ws.feed_text("never delivered")

        received = []
        await conn.serve(on_message=received.append, on_gone=on_gone)

        on_gone.assert_called_once_with()
        assert received == []
        assert conn.is_open() is False

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_loop(self, fake_ws):
        ws = fake_ws()
        conn = RelayConnection(ws, Role.WEB, "token-1")
        handler = Mock(side_effect=[ValueError("bad"), None])
        ws.feed_text("first")
        ws.feed_text("second")
        ws.feed_close()

        await conn.serve(on_message=handler, on_gone=Mock())

        assert handler.call_count == 2

    @pytest.mark.asyncio
    async def test_async_message_handler_is_awaited(self, fake_ws):
        ws = fake_ws()
        conn = RelayConnection(ws, Role.WEB, "token-1")
        handler = AsyncMock()
        ws.feed_text("hello")
        ws.feed_close()

        await asyncio.wait_for(conn.serve(on_message=handler, on_gone=Mock()), timeout=1)

        handler.assert_awaited_once_with("hello")
