"""Periodic sampling loops over external capture devices.

Device acquisition is not handled here. A microphone is anything with
read_frame() returning the latest byte time-domain buffer; a camera is
anything with read_frame() returning (pixels, width, height). QR decoding
is an injected black box returning a payload string or None.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Protocol

from knockrelay.knock import KnockClassifier
from knockrelay.timers import LoopScheduler, Scheduler, TimerHandle

logger = logging.getLogger(__name__)

Decoder = Callable[[Any, int, int], Optional[str]]


class AudioFrameSource(Protocol):
    """Microphone analyser output."""

    def read_frame(self) -> Optional[bytes]:
        """Most recent time-domain samples, or None if not ready."""
        ...


class VideoFrameSource(Protocol):
    """Camera frame grabber."""

    def read_frame(self) -> Optional[tuple[Any, int, int]]:
        """Current frame as (pixels, width, height), or None if not ready."""
        ...


class PeriodicSampler(ABC):
    """Run _sample() every interval seconds until stopped.

    stop() cancels the next scheduled invocation synchronously, so no
    iteration runs after it returns.
    """

    def __init__(self, interval: float, scheduler: Optional[Scheduler] = None):
        self.interval = interval
        self._scheduler = scheduler or LoopScheduler()
        self._handle: Optional[TimerHandle] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._schedule()

    def stop(self) -> None:
        """Stop sampling. Idempotent."""
        if not self._running:
            return
        self._running = False
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._on_stop()

    def _schedule(self) -> None:
        self._handle = self._scheduler.call_later(self.interval, self._tick)

    def _tick(self) -> None:
        self._handle = None
        if not self._running:
            return
        try:
            self._sample()
        except Exception as e:
            logger.error(f"{type(self).__name__} sample error: {e}")
        if self._running:
            self._schedule()

    @abstractmethod
    def _sample(self) -> None:
        """Take one sample. Exceptions are logged and the loop continues."""
        ...

    def _on_stop(self) -> None:
        pass


class KnockListener(PeriodicSampler):
    """Feed microphone frames to a KnockClassifier."""

    def __init__(
        self,
        source: AudioFrameSource,
        classifier: KnockClassifier,
        interval: Optional[float] = None,
        scheduler: Optional[Scheduler] = None,
    ):
        super().__init__(
            interval if interval is not None else classifier.config.frame_interval,
            scheduler,
        )
        self.source = source
        self.classifier = classifier

    def start(self) -> None:
        if not self.running:
            logger.info("Microphone enabled")
        super().start()

    def _sample(self) -> None:
        frame = self.source.read_frame()
        if frame:
            self.classifier.feed(frame)

    def _on_stop(self) -> None:
        self.classifier.cancel()
        close = getattr(self.source, "close", None)
        if callable(close):
            try:
                close()
            except Exception as e:
                logger.warning(f"Failed to close audio source: {e}")
        logger.info("Microphone disabled")


class TokenScanner(PeriodicSampler):
    """Poll camera frames through a QR decoder until a token is found."""

    def __init__(
        self,
        source: VideoFrameSource,
        decoder: Decoder,
        on_token: Callable[[str], None],
        interval: float = 0.25,
        scheduler: Optional[Scheduler] = None,
    ):
        super().__init__(interval, scheduler)
        self.source = source
        self.decoder = decoder
        self.on_token = on_token
        self.token: Optional[str] = None

    def _sample(self) -> None:
        frame = self.source.read_frame()
        if frame is None:
            return
        pixels, width, height = frame
        payload = self.decoder(pixels, width, height)
        if not payload or not payload.strip():
            return
        self.token = payload.strip()
        logger.info("Token scanned")
        self.stop()
        self.on_token(self.token)
