"""Live microphone shot detection."""
from __future__ import annotations

import logging
import queue
import threading
import time
from enum import Enum
from typing import Callable, Dict, List, Optional

from target_capture.adapters.microphone import AudioStream, MicrophoneSource
from target_capture.core.errors import MicrophoneUnavailable
from target_capture.core.models import AudioDetectionConfig, DetectorError, DetectorEvent, ShotDetected
from target_capture.core.spike_detector import (
    BASELINE_DECAY,
    BASELINE_SAMPLE_COUNT,
    DetectorState,
    SpikeDetector,
    rms_volume,
)

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], float]

_OWNERS_LOCK = threading.Lock()
_MICROPHONE_OWNERS: Dict[int, "AdaptiveAudioShotDetector"] = {}


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class DetectorStatus(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"


class AdaptiveAudioShotDetector:
    """
    Sample a microphone on a fixed tick and publish an event per detected shot.

    Events (ShotDetected / DetectorError) are queued for the caller to drain
    with ``events()`` or ``next_event()``. The microphone is held only while
    listening; ``stop()`` cancels the sampling loop and releases it before
    returning.
    """

    def __init__(
        self,
        microphone: MicrophoneSource,
        config: Optional[AudioDetectionConfig] = None,
        tick_interval: float = 1.0 / 60.0,
        warmup_samples: int = BASELINE_SAMPLE_COUNT,
        baseline_decay: float = BASELINE_DECAY,
        clock: Optional[Clock] = None,
    ) -> None:
        self.microphone = microphone
        self.tick_interval = max(tick_interval, 0.0)
        self.clock: Clock = clock or monotonic_ms
        self._spike = SpikeDetector(config or AudioDetectionConfig(), warmup_samples, baseline_decay)
        self._events: "queue.Queue[DetectorEvent]" = queue.Queue()
        self._lock = threading.RLock()
        self._status = DetectorStatus.IDLE
        self._stream: Optional[AudioStream] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._current_volume = 0.0
        self._detections = 0

    # Lifecycle -----------------------------------------------------------------
    def start(self) -> None:
        with self._lock:
            if self._status is DetectorStatus.LISTENING:
                return
            self._claim_microphone()
            try:
                stream = self.microphone.open()
            except MicrophoneUnavailable as exc:
                self._drop_ownership()
                self._publish_error(exc)
                raise
            except Exception as exc:
                self._drop_ownership()
                error = MicrophoneUnavailable(f"Unable to open audio input: {exc}")
                self._publish_error(error)
                raise error from exc
            self._stream = stream
            self._spike.reset()
            self._current_volume = 0.0
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(stream, self._stop_event),
                name="audio-shot-detector",
                daemon=True,
            )
            self._status = DetectorStatus.LISTENING
            try:
                self._thread.start()
            except RuntimeError as exc:
                self._status = DetectorStatus.IDLE
                self._thread = None
                self._stream = None
                stream.close()
                self._drop_ownership()
                error = MicrophoneUnavailable(f"Unable to start sampling loop: {exc}")
                self._publish_error(error)
                raise error from exc
            LOGGER.info(
                "Shot detector listening (sensitivity=%d, min_delay=%dms)",
                self.config.sensitivity,
                self.config.min_delay_ms,
            )

    def stop(self) -> None:
        # a start() during the join below owns a new session; leave it alone
        with self._lock:
            self._stop_event.set()
            thread, self._thread = self._thread, None
            stream, self._stream = self._stream, None
            was_listening = self._status is DetectorStatus.LISTENING
            self._status = DetectorStatus.IDLE
            self._current_volume = 0.0
        try:
            if thread is not None and thread is not threading.current_thread():
                thread.join()
        finally:
            if stream is not None:
                stream.close()
            self._drop_ownership()
        if was_listening:
            LOGGER.info("Shot detector stopped after %d detections", self._detections)

    def __enter__(self) -> "AdaptiveAudioShotDetector":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _claim_microphone(self) -> None:
        with _OWNERS_LOCK:
            owner = _MICROPHONE_OWNERS.get(id(self.microphone))
            if owner is not None and owner is not self:
                error = MicrophoneUnavailable("Microphone is held by another detector")
                self._publish_error(error)
                raise error
            _MICROPHONE_OWNERS[id(self.microphone)] = self

    def _drop_ownership(self) -> None:
        with self._lock:
            if self._status is not DetectorStatus.IDLE:
                return
            with _OWNERS_LOCK:
                if _MICROPHONE_OWNERS.get(id(self.microphone)) is self:
                    del _MICROPHONE_OWNERS[id(self.microphone)]

    # Sampling loop -------------------------------------------------------------
    def _run(self, stream: AudioStream, stop_event: threading.Event) -> None:
        try:
            while not stop_event.is_set():
                self._tick(stream, stop_event)
                if stop_event.wait(self.tick_interval):
                    break
        except Exception as exc:
            with self._lock:
                current = self._stream is stream
                if current:
                    self._stream = None
                    self._thread = None
                    self._status = DetectorStatus.IDLE
                    self._current_volume = 0.0
                    stop_event.set()
            if not current:
                # stop() owns this stream and closes it after joining
                LOGGER.debug("Sampling loop ended while stopping: %s", exc)
                return
            LOGGER.error("Shot detector sampling failed: %s", exc)
            try:
                stream.close()
            finally:
                self._drop_ownership()
            self._publish_error(exc)

    def _tick(self, stream: AudioStream, stop_event: threading.Event) -> None:
        frame = stream.read()
        volume = rms_volume(frame)
        with self._lock:
            if stop_event.is_set():
                return
            now_ms = self.clock()
            self._current_volume = volume
            decision = self._spike.step(volume, now_ms)
            if not decision.fired:
                return
            self._detections += 1
            detections = self._detections
        LOGGER.debug("Shot %d detected: volume %.4f > %.4f", detections, volume, decision.threshold)
        self._events.put(
            ShotDetected(
                sequence=detections,
                timestamp_ms=now_ms,
                volume=volume,
                threshold=decision.threshold,
                baseline=decision.baseline,
            )
        )

    def _publish_error(self, error: BaseException) -> None:
        self._events.put(DetectorError(timestamp_ms=self.clock(), message=str(error) or type(error).__name__))

    # Queries -------------------------------------------------------------------
    @property
    def status(self) -> DetectorStatus:
        return self._status

    @property
    def is_listening(self) -> bool:
        return self._status is DetectorStatus.LISTENING

    @property
    def config(self) -> AudioDetectionConfig:
        return self._spike.config

    @property
    def warmed_up(self) -> bool:
        return self._spike.warmed_up

    @property
    def detection_count(self) -> int:
        return self._detections

    def state(self) -> DetectorState:
        state = self._spike.state
        return DetectorState(
            baseline_volume=state.baseline_volume,
            baseline_samples=list(state.baseline_samples),
            last_detection_time_ms=state.last_detection_time_ms,
        )

    def get_current_volume(self) -> float:
        if not self.is_listening:
            return 0.0
        return self._current_volume

    def update_config(self, sensitivity: Optional[int] = None, min_delay_ms: Optional[int] = None) -> AudioDetectionConfig:
        """Merge a partial config update; takes effect on the next tick."""

        updates = {}
        if sensitivity is not None:
            updates["sensitivity"] = sensitivity
        if min_delay_ms is not None:
            updates["min_delay_ms"] = min_delay_ms
        config = AudioDetectionConfig(**{**self.config.model_dump(), **updates})
        self._spike.update_config(config)
        return config

    # Event channel -------------------------------------------------------------
    def next_event(self, timeout: Optional[float] = None) -> Optional[DetectorEvent]:
        try:
            return self._events.get(timeout=timeout)
        except queue.Empty:
            return None

    def events(self) -> List[DetectorEvent]:
        drained: List[DetectorEvent] = []
        while True:
            try:
                drained.append(self._events.get_nowait())
            except queue.Empty:
                return drained
