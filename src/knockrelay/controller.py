"""Controller endpoint wiring input classifiers to a relay client.

The controller owns everything that can emit a signal on its own later: the
gesture classifier's single-tap timer, the microphone loop with its knock
classifier, and the QR scanning loop. Tearing the controller down (or the
relay closing the connection) releases all of them, so nothing fires after
the connection is gone.

Usage:
    controller = Controller(RelayClient(url, token, Role.WEB))
    await controller.connect()
    controller.pointer_down(10, 10)
    controller.pointer_up(200, 12)      # swipe right -> signal-1
    controller.start_microphone(mic)
    ...
    await controller.disconnect()
"""

import logging
import time
from typing import Callable, Optional

from knockrelay.client import RelayClient
from knockrelay.config import GestureConfig, KnockConfig
from knockrelay.gestures import GestureClassifier
from knockrelay.knock import KnockClassifier
from knockrelay.sampling import (
    AudioFrameSource,
    Decoder,
    KnockListener,
    TokenScanner,
    VideoFrameSource,
)
from knockrelay.timers import Scheduler

logger = logging.getLogger(__name__)


class Controller:
    """Handheld side of a paired room."""

    def __init__(
        self,
        client: RelayClient,
        gesture_config: Optional[GestureConfig] = None,
        knock_config: Optional[KnockConfig] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize controller.

        Args:
            client: Relay client, normally joined as Role.WEB.
            gesture_config: Touch thresholds.
            knock_config: Knock thresholds and frame interval.
            scheduler: Deferred execution shared by classifiers and loops.
            clock: Monotonic time source in seconds.
        """
        self.client = client
        self.knock_config = knock_config or KnockConfig()
        self._scheduler = scheduler
        self._clock = clock

        self.gesture = GestureClassifier(self._emit, gesture_config, scheduler, clock)
        self.knock_listener: Optional[KnockListener] = None
        self.scanner: Optional[TokenScanner] = None
        self._stopped = False

        client.on_close(self.release)

    @property
    def microphone_enabled(self) -> bool:
        return self.knock_listener is not None and self.knock_listener.running

    async def connect(self) -> None:
        """Join the relay with the client's current token."""
        self._stopped = False
        await self.client.connect()

    async def disconnect(self) -> None:
        """Release every timer and loop, then close the connection. Idempotent."""
        if self._stopped:
            return
        self._stopped = True
        self.release()
        await self.client.disconnect()

    def release(self) -> None:
        """Cancel pending gestures and knocks and stop all sampling loops."""
        self.gesture.cancel()
        self.stop_microphone()
        self.stop_scan()

    # =========================================================================
    # Touch
    # =========================================================================

    def pointer_down(self, x: float, y: float) -> None:
        self.gesture.pointer_down(x, y)

    def pointer_up(self, x: float, y: float) -> Optional[str]:
        return self.gesture.pointer_up(x, y)

    # =========================================================================
    # Microphone
    # =========================================================================

    def start_microphone(self, source: AudioFrameSource) -> KnockListener:
        """Start feeding microphone frames to a fresh knock classifier.

        A no-op returning the running listener if already enabled.
        """
        if self.microphone_enabled:
            return self.knock_listener

        classifier = KnockClassifier(self._emit, self.knock_config, self._scheduler, self._clock)
        self.knock_listener = KnockListener(source, classifier, scheduler=self._scheduler)
        self.knock_listener.start()
        return self.knock_listener

    def stop_microphone(self) -> None:
        """Stop the microphone loop and drop any pending knock. Idempotent."""
        listener, self.knock_listener = self.knock_listener, None
        if listener is not None:
            listener.stop()

    # =========================================================================
    # QR scanning
    # =========================================================================

    def scan_token(
        self,
        source: VideoFrameSource,
        decoder: Decoder,
        on_token: Optional[Callable[[str], None]] = None,
    ) -> TokenScanner:
        """Scan camera frames until a token is found, then use it for the client.

        Any scan already in progress is stopped first.
        """
        self.stop_scan()

        def found(token: str) -> None:
            self.scanner = None
            self.client.token = token
            if on_token is not None:
                on_token(token)

        self.scanner = TokenScanner(source, decoder, found, scheduler=self._scheduler)
        self.scanner.start()
        return self.scanner

    def stop_scan(self) -> None:
        scanner, self.scanner = self.scanner, None
        if scanner is not None:
            scanner.stop()

    def _emit(self, name: str) -> None:
        if self._stopped:
            logger.debug(f"Controller stopped, dropping {name}")
            return
        self.client.submit_signal(name)
