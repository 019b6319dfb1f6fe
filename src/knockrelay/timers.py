"""Cancellable deferred callbacks for the input classifiers.

Classifiers own Timer instances instead of free-floating callbacks. A
Scheduler is anything with call_later(delay, callback) returning a handle
with cancel(); by default that is the running asyncio loop.
"""

import asyncio
from typing import Any, Callable, Optional, Protocol


class TimerHandle(Protocol):
    """Handle returned by Scheduler.call_later."""

    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    """Protocol for deferred execution (asyncio loop compatible)."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        ...


class LoopScheduler:
    """Scheduler backed by the running asyncio event loop."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback, *args)


class Timer:
    """One-shot timer that can be re-armed and cancelled any number of times.

    cancel() is a no-op when nothing is pending, including after the
    timer already fired.
    """

    def __init__(self, scheduler: Optional[Scheduler] = None):
        self._scheduler = scheduler or LoopScheduler()
        self._handle: Optional[TimerHandle] = None

    @property
    def pending(self) -> bool:
        """True between start() and fire/cancel."""
        return self._handle is not None

    def start(self, delay: float, callback: Callable[[], Any]) -> None:
        """Arm the timer, cancelling any pending callback first."""
        self.cancel()
        self._handle = self._scheduler.call_later(delay, self._fire, callback)

    def cancel(self) -> bool:
        """Cancel the pending callback.

        Returns:
            True if a pending callback was cancelled.
        """
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        return True

    def _fire(self, callback: Callable[[], Any]) -> None:
        self._handle = None
        callback()
