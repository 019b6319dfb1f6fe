"""Pytest configuration and shared fixtures."""

import asyncio
import json
from types import SimpleNamespace

import pytest
from aiohttp import WSMsgType


@pytest.fixture(autouse=True)
def reset_logging_state():
    """Reset logging state before each test."""
    from knockrelay.logging import reset_logging

    reset_logging()
    yield
    reset_logging()


class ManualHandle:
    """Handle returned by ManualScheduler.call_later."""

    def __init__(self, when, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Deterministic clock + scheduler for classifier tests.

    Pass scheduler=s and clock=s.clock; move time with advance().
    """

    def __init__(self):
        self.now = 0.0
        self._handles = []

    def clock(self):
        return self.now

    def call_later(self, delay, callback, *args):
        handle = ManualHandle(self.now + delay, callback, args)
        self._handles.append(handle)
        return handle

    @property
    def pending(self):
        return [h for h in self._handles if not h.cancelled]

    def advance(self, seconds):
        """Move the clock forward, firing due callbacks in order."""
        target = self.now + seconds
        while True:
            due = [h for h in self.pending if h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.when)
            self._handles.remove(handle)
            self.now = max(self.now, handle.when)
            handle.callback(*handle.args)
        self.now = target


@pytest.fixture
def scheduler():
    """Manual scheduler starting at t=0."""
    return ManualScheduler()


class FakeWebSocket:
    """In-memory stand-in for aiohttp's WebSocketResponse."""

    def __init__(self, fail_send: bool = False, hang_send: bool = False):
        self.closed = False
        self.close_code = None
        self.close_message = None
        self.close_calls = 0
        self.sent = []
        self.fail_send = fail_send
        self.hang_send = hang_send
        self._incoming = asyncio.Queue()

    async def send_str(self, data: str) -> None:
        if self.hang_send:
            await asyncio.Event().wait()
        if self.closed or self.fail_send:
            raise ConnectionResetError("Cannot write to closing transport")
        self.sent.append(json.loads(data))

    async def close(self, *, code: int = 1000, message: bytes = b"") -> bool:
        self.close_calls += 1
        if self.closed:
            return False
        self.closed = True
        self.close_code = code
        self.close_message = message
        self._incoming.put_nowait(None)
        return True

    def exception(self):
        return None

    def feed_text(self, data: str) -> None:
        self._incoming.put_nowait(SimpleNamespace(type=WSMsgType.TEXT, data=data))

    def feed_error(self) -> None:
        self._incoming.put_nowait(SimpleNamespace(type=WSMsgType.ERROR, data=None))

    def feed_close(self) -> None:
        self._incoming.put_nowait(SimpleNamespace(type=WSMsgType.CLOSE, data=1000))

    def sent_types(self):
        return [m["type"] for m in self.sent]

    def __aiter__(self):
        return self

    async def __anext__(self):
        msg = await self._incoming.get()
        if msg is None:
            raise StopAsyncIteration
        return msg


@pytest.fixture
def fake_ws():
    """Factory for FakeWebSocket instances."""
    return FakeWebSocket
