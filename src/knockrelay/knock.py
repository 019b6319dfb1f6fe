"""Acoustic knock classifier.

Each audio frame is a buffer of unsigned 8-bit time-domain samples (128 is
silence). A frame is a knock when the RMS of its samples, normalized to
[-1, 1], exceeds the threshold.

    one knock, nothing else within pair_window  -> signal-1
    second knock within pair_window             -> signal-2

Timing:
- debounce: after an accepted knock onset, loud frames within this interval
  are the decay tail of the same impact and are ignored.
- pair_window: a second onset up to this long after the first completes a
  double knock. The single-knock confirmation timer runs for the whole
  window, so it is still cancellable when the second knock is evaluated.
"""

import logging
import math
import time
from enum import Enum, auto
from typing import Callable, Optional, Sequence

from knockrelay.config import KnockConfig
from knockrelay.protocol import SIGNAL_NEXT, SIGNAL_PREVIOUS
from knockrelay.timers import Scheduler, Timer

logger = logging.getLogger(__name__)


def frame_rms(samples: Sequence[int]) -> float:
    """Root mean square of unsigned 8-bit samples normalized to [-1, 1].

    Args:
        samples: Byte samples (0-255, 128 is the zero line).

    Returns:
        RMS in [0, 1]; 0.0 for an empty frame.
    """
    if not samples:
        return 0.0
    total = 0.0
    for sample in samples:
        v = (sample - 128) / 128
        total += v * v
    return math.sqrt(total / len(samples))


class KnockState(Enum):
    """Knock classifier states."""

    QUIET = auto()
    PENDING = auto()  # One knock seen, waiting for a second


class KnockClassifier:
    """Per-microphone-session state machine for single/double knocks."""

    def __init__(
        self,
        emit: Callable[[str], None],
        config: Optional[KnockConfig] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize classifier.

        Args:
            emit: Called with the signal name of each resolved knock event.
            config: Threshold and timing (seconds).
            scheduler: Deferred execution for the confirmation timer.
            clock: Monotonic time source in seconds.
        """
        self._emit = emit
        self.config = config or KnockConfig()
        self._clock = clock
        self._confirm_timer = Timer(scheduler)
        self._state = KnockState.QUIET
        self._first_knock: Optional[float] = None
        self._last_onset: Optional[float] = None

    @property
    def state(self) -> KnockState:
        return self._state

    def feed(self, samples: Sequence[int]) -> Optional[str]:
        """Process one audio frame.

        Returns:
            Signal emitted immediately by this frame, if any.
        """
        if frame_rms(samples) > self.config.threshold:
            return self.knock()
        return None

    def knock(self) -> Optional[str]:
        """Register a loud frame at the current clock time.

        Returns:
            Signal emitted immediately (double knock, or a stale pending
            knock flushed as single), or None.
        """
        now = self._clock()
        if self._last_onset is not None and now - self._last_onset < self.config.debounce:
            return None
        self._last_onset = now

        if self._state is KnockState.PENDING:
            elapsed = now - self._first_knock
            if elapsed <= self.config.pair_window:
                self._confirm_timer.cancel()
                self._reset()
                return self._resolve(SIGNAL_PREVIOUS, "double knock")
            # Outside the pairing window: the pending knock stands alone and
            # this one starts a new candidate pair.
            self._confirm_timer.cancel()
            self._reset()
            self._resolve(SIGNAL_NEXT, "single knock")
            self._arm(now)
            return SIGNAL_NEXT

        self._arm(now)
        return None

    def cancel(self) -> None:
        """Drop a pending knock without emitting. Idempotent."""
        self._confirm_timer.cancel()
        self._reset()
        self._last_onset = None

    def _arm(self, now: float) -> None:
        self._state = KnockState.PENDING
        self._first_knock = now
        self._confirm_timer.start(self.config.pair_window, self._confirm_single)

    def _reset(self) -> None:
        self._state = KnockState.QUIET
        self._first_knock = None

    def _confirm_single(self) -> None:
        self._reset()
        self._resolve(SIGNAL_NEXT, "single knock")

    def _resolve(self, name: str, event: str) -> str:
        logger.debug(f"Knock {event} -> {name}")
        self._emit(name)
        return name
