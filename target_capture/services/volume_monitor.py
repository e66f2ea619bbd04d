"""Coarse level-meter polling decoupled from the detection tick."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from .audio_detector import AdaptiveAudioShotDetector

LOGGER = logging.getLogger(__name__)

VolumeSink = Callable[[float], None]


class VolumeMonitor:
    """Read the detector's current volume every ``interval`` seconds."""

    def __init__(
        self,
        detector: AdaptiveAudioShotDetector,
        interval: float = 0.1,
        sink: Optional[VolumeSink] = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("Polling interval must be positive")
        self.detector = detector
        self.interval = interval
        self.sink = sink
        self.latest = 0.0
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def poll(self) -> float:
        volume = self.detector.get_current_volume() if self.detector.is_listening else 0.0
        self.latest = volume
        if self.sink is not None:
            self.sink(volume)
        return volume

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.interval):
            try:
                self.poll()
            except Exception:
                LOGGER.exception("Volume sink raised; stopping level meter")
                return

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run, args=(self._stop_event,), name="volume-monitor", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        self.latest = 0.0

    def __enter__(self) -> "VolumeMonitor":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
