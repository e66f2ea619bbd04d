"""Shot timer that can be stopped by the first detected shot."""
from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from target_capture.core.errors import MicrophoneUnavailable
from target_capture.core.models import DetectorError, ShotDetected

from .audio_detector import AdaptiveAudioShotDetector

LOGGER = logging.getLogger(__name__)


class DelayMode(str, Enum):
    NONE = "none"
    FIXED = "fixed"
    RANDOM = "random"


@dataclass
class TimerResult:
    elapsed_seconds: float
    stopped_by: str
    par_seconds: Optional[float] = None

    @property
    def beat_par(self) -> Optional[bool]:
        if self.par_seconds is None:
            return None
        return self.elapsed_seconds <= self.par_seconds


class ShotTimer:
    """Stopwatch with an optional start delay and auto-stop on a detected shot."""

    def __init__(
        self,
        delay_mode: DelayMode = DelayMode.NONE,
        fixed_delay: float = 3.0,
        random_delay_min: float = 2.0,
        random_delay_max: float = 5.0,
        par_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        if random_delay_min < 0 or random_delay_max < random_delay_min:
            raise ValueError("Random delay bounds must satisfy 0 <= min <= max")
        if fixed_delay < 0:
            raise ValueError("Fixed delay must not be negative")
        self.delay_mode = DelayMode(delay_mode)
        self.fixed_delay = fixed_delay
        self.random_delay_min = random_delay_min
        self.random_delay_max = random_delay_max
        self.par_seconds = par_seconds
        self.clock = clock
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.reset()

    def reset(self) -> None:
        self._go_at: Optional[float] = None
        self._stopped_at: Optional[float] = None
        self._accumulated = 0.0
        self.last_result: Optional[TimerResult] = None

    def _draw_delay(self) -> float:
        if self.delay_mode is DelayMode.FIXED:
            return self.fixed_delay
        if self.delay_mode is DelayMode.RANDOM:
            return self.rng.uniform(self.random_delay_min, self.random_delay_max)
        return 0.0

    @property
    def is_running(self) -> bool:
        return self._go_at is not None and self._stopped_at is None and not self.is_delaying

    @property
    def is_delaying(self) -> bool:
        return self._go_at is not None and self._stopped_at is None and self.clock() < self._go_at

    def delay_remaining(self) -> float:
        if not self.is_delaying:
            return 0.0
        return max(0.0, self._go_at - self.clock())

    def start(self) -> float:
        """Start (or resume) the timer and return the start delay in seconds."""

        if self._go_at is not None and self._stopped_at is None:
            return self.delay_remaining()
        delay = self._draw_delay()
        self._go_at = self.clock() + delay
        self._stopped_at = None
        return delay

    def elapsed(self) -> float:
        if self._go_at is None:
            return self._accumulated
        end = self._stopped_at if self._stopped_at is not None else self.clock()
        return self._accumulated + max(0.0, end - self._go_at)

    def stop(self, stopped_by: str = "manual") -> Optional[TimerResult]:
        """Stop the timer; returns None when stopped during the start delay."""

        if self._go_at is None or self._stopped_at is not None:
            return None
        if self.is_delaying:
            self._go_at = None
            return None
        self._stopped_at = self.clock()
        elapsed = self.elapsed()
        self._accumulated = elapsed
        self._go_at = None
        self._stopped_at = None
        self.last_result = TimerResult(elapsed_seconds=elapsed, stopped_by=stopped_by, par_seconds=self.par_seconds)
        return self.last_result

    def on_shot(self, event: ShotDetected) -> Optional[TimerResult]:
        if not self.is_running:
            return None
        LOGGER.info("Shot %d stopped the timer", event.sequence)
        return self.stop(stopped_by="shot")

    def run_until_shot(
        self,
        detector: AdaptiveAudioShotDetector,
        timeout: Optional[float] = None,
    ) -> Optional[TimerResult]:
        """
        Start the timer, listen once the delay has elapsed, and stop on the first shot.

        The detector is always stopped before returning. A detector error, or
        a microphone that cannot be opened, stops the timer and is re-raised as
        MicrophoneUnavailable; a timeout stops the timer manually.
        """

        delay = self.start()
        if delay > 0:
            self.sleep(delay)
        try:
            detector.start()
        except MicrophoneUnavailable:
            self.stop(stopped_by="error")
            raise
        try:
            deadline = None if timeout is None else self.clock() + timeout
            while True:
                remaining = None if deadline is None else max(0.0, deadline - self.clock())
                if remaining == 0.0:
                    return self.stop(stopped_by="timeout")
                event = detector.next_event(timeout=remaining)
                if isinstance(event, ShotDetected):
                    result = self.on_shot(event)
                    if result is not None:
                        return result
                elif isinstance(event, DetectorError):
                    self.stop(stopped_by="error")
                    raise MicrophoneUnavailable(event.message)
        finally:
            detector.stop()
