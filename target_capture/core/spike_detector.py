"""Adaptive-baseline spike detection over a stream of volume readings."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from .models import AudioDetectionConfig

LOGGER = logging.getLogger(__name__)

BASELINE_SAMPLE_COUNT = 30
BASELINE_DECAY = 0.99
MAX_THRESHOLD_MULTIPLIER = 10.0
MULTIPLIER_RANGE = 8.5


def threshold_multiplier(sensitivity: float) -> float:
    """Map sensitivity 0..100 to a baseline multiplier of 10x..1.5x."""

    return MAX_THRESHOLD_MULTIPLIER - (sensitivity / 100.0) * MULTIPLIER_RANGE


def normalize_frame(frame: np.ndarray) -> np.ndarray:
    """Return the frame as mono float samples in [-1, 1]."""

    samples = np.asarray(frame)
    if samples.dtype == np.uint8:
        normalized = (samples.astype(np.float64) - 128.0) / 128.0
    elif samples.dtype.kind == "i":
        normalized = samples.astype(np.float64) / float(-np.iinfo(samples.dtype).min)
    elif samples.dtype.kind == "u":
        half = (float(np.iinfo(samples.dtype).max) + 1.0) / 2.0
        normalized = (samples.astype(np.float64) - half) / half
    else:
        normalized = samples.astype(np.float64)
    if normalized.ndim > 1:
        normalized = normalized.reshape(normalized.shape[0], -1).mean(axis=1)
    return np.clip(normalized, -1.0, 1.0)


def rms_volume(frame: np.ndarray) -> float:
    """Root-mean-square level of a frame after normalization."""

    samples = normalize_frame(frame)
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(samples ** 2)))


@dataclass
class DetectorState:
    baseline_volume: float = 0.0
    baseline_samples: List[float] = field(default_factory=list)
    last_detection_time_ms: Optional[float] = None

    def reset(self) -> None:
        self.baseline_volume = 0.0
        self.baseline_samples = []
        self.last_detection_time_ms = None


@dataclass
class SpikeDecision:
    fired: bool
    volume: float
    threshold: Optional[float]
    baseline: float


class SpikeDetector:
    """
    Deterministic per-tick detector.

    The first ``warmup_samples`` readings only build the baseline. After that a
    reading above ``baseline * multiplier`` fires when at least ``min_delay_ms``
    has elapsed since the previous detection, and every reading feeds the
    baseline moving average.
    """

    def __init__(
        self,
        config: Optional[AudioDetectionConfig] = None,
        warmup_samples: int = BASELINE_SAMPLE_COUNT,
        baseline_decay: float = BASELINE_DECAY,
    ) -> None:
        if warmup_samples < 1:
            raise ValueError("warmup_samples must be at least 1")
        if not 0.0 <= baseline_decay <= 1.0:
            raise ValueError("baseline_decay must be within [0, 1]")
        self.config = config or AudioDetectionConfig()
        self.warmup_samples = warmup_samples
        self.baseline_decay = baseline_decay
        self.state = DetectorState()

    @property
    def warmed_up(self) -> bool:
        return len(self.state.baseline_samples) >= self.warmup_samples

    def update_config(self, config: AudioDetectionConfig) -> None:
        # baseline and warm-up survive config changes
        self.config = config

    def reset(self) -> None:
        self.state.reset()

    def step(self, volume: float, now_ms: float) -> SpikeDecision:
        state = self.state
        if not self.warmed_up:
            state.baseline_samples.append(volume)
            if self.warmed_up:
                state.baseline_volume = math.fsum(state.baseline_samples) / len(state.baseline_samples)
                LOGGER.debug("Baseline established at %.5f", state.baseline_volume)
            return SpikeDecision(fired=False, volume=volume, threshold=None, baseline=state.baseline_volume)

        baseline = state.baseline_volume
        threshold = baseline * threshold_multiplier(self.config.sensitivity)
        debounced = (
            state.last_detection_time_ms is None
            or now_ms - state.last_detection_time_ms >= self.config.min_delay_ms
        )
        fired = volume > threshold and debounced
        if fired:
            state.last_detection_time_ms = now_ms
        state.baseline_volume = baseline * self.baseline_decay + volume * (1.0 - self.baseline_decay)
        return SpikeDecision(fired=fired, volume=volume, threshold=threshold, baseline=baseline)

    def process(self, volume: float, now_ms: float) -> bool:
        return self.step(volume, now_ms).fired
