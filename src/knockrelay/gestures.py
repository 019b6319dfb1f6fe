"""Touch/pointer gesture classifier.

Turns pointer-down/pointer-up pairs into the relay signal vocabulary:

    swipe right  -> signal-1 (next)       immediate
    swipe left   -> signal-2 (previous)   immediate
    double tap   -> signal-2 (previous)   immediate on the second tap
    single tap   -> signal-1 (next)       after tap_window with no second tap

States: IDLE -> ARMED (pointer down) -> TAP_PENDING or resolved back to IDLE.
A single tap always costs up to tap_window of latency; that is the price of
telling it apart from a double tap.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Optional

from knockrelay.config import GestureConfig
from knockrelay.protocol import SIGNAL_NEXT, SIGNAL_PREVIOUS
from knockrelay.timers import Scheduler, Timer

logger = logging.getLogger(__name__)


class GestureState(Enum):
    """Gesture classifier states."""

    IDLE = auto()
    ARMED = auto()  # Pointer is down
    TAP_PENDING = auto()  # Single tap waiting for confirmation


@dataclass
class PointerOrigin:
    """Where and when the pointer went down."""

    x: float
    y: float
    t: float


class GestureClassifier:
    """Per-surface state machine for tap, double tap and swipe."""

    def __init__(
        self,
        emit: Callable[[str], None],
        config: Optional[GestureConfig] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize classifier.

        Args:
            emit: Called with the signal name of each resolved gesture.
            config: Thresholds (distance in px, window in seconds).
            scheduler: Deferred execution for the single-tap timer.
            clock: Monotonic time source in seconds.
        """
        self._emit = emit
        self.config = config or GestureConfig()
        self._clock = clock
        self._tap_timer = Timer(scheduler)
        self._origin: Optional[PointerOrigin] = None
        self._last_tap: Optional[float] = None

    @property
    def state(self) -> GestureState:
        if self._origin is not None:
            return GestureState.ARMED
        if self._tap_timer.pending:
            return GestureState.TAP_PENDING
        return GestureState.IDLE

    def pointer_down(self, x: float, y: float) -> None:
        """Record the gesture origin. Emits nothing."""
        self._origin = PointerOrigin(x=x, y=y, t=self._clock())

    def pointer_up(self, x: float, y: float) -> Optional[str]:
        """Resolve the gesture started by the last pointer_down.

        Returns:
            Signal emitted immediately (swipe or double tap), or None when
            nothing was emitted yet (single tap pending, or no origin).
        """
        origin = self._origin
        if origin is None:
            return None
        self._origin = None
        now = self._clock()

        dx = x - origin.x
        dy = y - origin.y
        if abs(dx) > self.config.swipe_distance and abs(dx) > self.config.swipe_ratio * abs(dy):
            # A swipe cannot complete a pending double tap
            self._tap_timer.cancel()
            self._last_tap = None
            return self._resolve(SIGNAL_NEXT if dx > 0 else SIGNAL_PREVIOUS, "swipe")

        if self._last_tap is not None and now - self._last_tap < self.config.tap_window:
            self._tap_timer.cancel()
            self._last_tap = None
            return self._resolve(SIGNAL_PREVIOUS, "double tap")

        self._last_tap = now
        self._tap_timer.start(self.config.tap_window, self._confirm_single_tap)
        return None

    def cancel(self) -> None:
        """Drop any in-flight gesture without emitting. Idempotent."""
        self._tap_timer.cancel()
        self._origin = None
        self._last_tap = None

    def _confirm_single_tap(self) -> None:
        self._last_tap = None
        self._resolve(SIGNAL_NEXT, "tap")

    def _resolve(self, name: str, gesture: str) -> str:
        logger.debug(f"Gesture {gesture} -> {name}")
        self._emit(name)
        return name
