"""Capture workflow: calibrate, set the point of aim, mark shots, summarise."""
from __future__ import annotations

import logging
import math
from enum import Enum
from typing import List, Optional

from .calibration import compute_scale, convert_shots, scale_from_preset
from .errors import CaptureStateError, InsufficientShots, InvalidCalibration, InvalidDistance
from .group_metrics import GroupMetricsCalculator
from .models import (
    CalibrationReference,
    CapturedTarget,
    GroupMetrics,
    InchShot,
    PixelPoint,
    PixelShot,
    ScaleFactor,
    TargetPreset,
)

LOGGER = logging.getLogger(__name__)


class CaptureMode(str, Enum):
    IDLE = "idle"
    CALIBRATING = "calibrating"
    SETTING_POA = "setting_poa"
    MARKING_SHOTS = "marking_shots"
    REVIEW = "review"


FROZEN_SCALE_MODES = {CaptureMode.MARKING_SHOTS, CaptureMode.REVIEW}


class CaptureWorkflow:
    """Track one target capture from image load to a CapturedTarget."""

    def __init__(self, calculator: Optional[GroupMetricsCalculator] = None) -> None:
        self.calculator = calculator or GroupMetricsCalculator()
        self.reset()

    def reset(self) -> None:
        self.mode = CaptureMode.IDLE
        self.image_size: Optional[tuple[int, int]] = None
        self.scale: Optional[ScaleFactor] = None
        self.preset: Optional[TargetPreset] = None
        self.custom_points: List[Optional[PixelPoint]] = [None, None]
        self.custom_reference_inches: float = 1.0
        self.distance_yards: Optional[float] = None
        self.poa: Optional[PixelPoint] = None
        self.shots: List[PixelShot] = []
        self.firearm_id: Optional[str] = None
        self.ammo_id: Optional[str] = None
        self.notes: str = ""

    def load_image(self, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid image size {width}x{height}")
        self.image_size = (int(width), int(height))
        self.mode = CaptureMode.CALIBRATING

    def clear_image(self) -> None:
        self.image_size = None
        self.mode = CaptureMode.IDLE

    def set_distance_yards(self, distance_yards: float) -> None:
        if distance_yards is None or not math.isfinite(distance_yards) or distance_yards <= 0:
            raise InvalidDistance(f"Target distance must be positive, got {distance_yards}")
        self.distance_yards = float(distance_yards)

    def _ensure_scale_mutable(self) -> None:
        if self.mode in FROZEN_SCALE_MODES:
            raise CaptureStateError(f"Calibration is frozen while in mode '{self.mode.value}'")

    def apply_preset_calibration(self, preset: TargetPreset, rendered_pixel_size: float) -> ScaleFactor:
        self._ensure_scale_mutable()
        self.scale = scale_from_preset(preset, rendered_pixel_size)
        self.preset = preset
        self.mode = CaptureMode.SETTING_POA
        return self.scale

    def set_custom_point(self, point_number: int, x: float, y: float) -> None:
        if point_number not in (1, 2):
            raise ValueError(f"Calibration point must be 1 or 2, got {point_number}")
        self._ensure_scale_mutable()
        self.custom_points[point_number - 1] = PixelPoint(x=x, y=y)

    def set_custom_reference_inches(self, inches: float) -> None:
        self._ensure_scale_mutable()
        self.custom_reference_inches = float(inches)

    def apply_custom_calibration(self) -> ScaleFactor:
        self._ensure_scale_mutable()
        first, second = self.custom_points
        if first is None or second is None:
            raise InvalidCalibration("Both calibration points must be placed")
        reference = CalibrationReference(
            pixel_points=(first, second),
            physical_length_inches=self.custom_reference_inches,
        )
        self.scale = compute_scale(reference)
        self.preset = None
        self.mode = CaptureMode.SETTING_POA
        return self.scale

    def set_poa(self, x: float, y: float) -> None:
        if self.scale is None:
            raise CaptureStateError("Calibrate before setting the point of aim")
        self.poa = PixelPoint(x=x, y=y)
        self.mode = CaptureMode.MARKING_SHOTS

    def _require_marking(self) -> None:
        if self.mode is not CaptureMode.MARKING_SHOTS:
            raise CaptureStateError(f"Shots can only be edited while marking, not in '{self.mode.value}'")

    def add_shot(self, x: float, y: float) -> PixelShot:
        self._require_marking()
        shot = PixelShot(x=x, y=y, sequence_number=len(self.shots) + 1)
        self.shots.append(shot)
        return shot

    def remove_shot(self, index: int) -> None:
        self._require_marking()
        if not 0 <= index < len(self.shots):
            raise IndexError(f"No shot at index {index}")
        remaining = self.shots[:index] + self.shots[index + 1:]
        self.shots = [
            shot.model_copy(update={"sequence_number": position})
            for position, shot in enumerate(remaining, start=1)
        ]

    def move_shot(self, index: int, x: float, y: float) -> None:
        self._require_marking()
        if not 0 <= index < len(self.shots):
            raise IndexError(f"No shot at index {index}")
        self.shots[index] = self.shots[index].model_copy(update={"x": x, "y": y})

    def undo_last_shot(self) -> None:
        self._require_marking()
        if self.shots:
            self.shots.pop()

    def review(self) -> None:
        self._require_marking()
        if not self.shots:
            raise InsufficientShots("Mark at least one shot before reviewing")
        self.mode = CaptureMode.REVIEW

    def resume_marking(self) -> None:
        if self.mode is not CaptureMode.REVIEW:
            raise CaptureStateError("Nothing to resume")
        self.mode = CaptureMode.MARKING_SHOTS

    def inch_shots(self) -> List[InchShot]:
        if self.scale is None or self.poa is None:
            raise CaptureStateError("Calibration and point of aim are required")
        return convert_shots(self.shots, self.poa, self.scale)

    def group_metrics(self) -> GroupMetrics:
        if self.distance_yards is None:
            raise InvalidDistance("Target distance has not been set")
        return self.calculator.compute(self.inch_shots(), self.distance_yards)

    def create_captured_target(self) -> CapturedTarget:
        shots = self.inch_shots()
        if not shots:
            raise InsufficientShots("A captured target needs at least one shot")
        metrics = self.group_metrics()
        calibration_type = self.scale.calibration_type
        target = CapturedTarget(
            target_type=self.preset.id if self.preset else "custom",
            distance_yards=self.distance_yards,
            calibration_type=calibration_type,
            custom_reference_inches=self.custom_reference_inches if calibration_type == "custom" else None,
            shots=shots,
            metrics=metrics,
            firearm_id=self.firearm_id,
            ammo_id=self.ammo_id,
            notes=self.notes or None,
        )
        LOGGER.info(
            "Captured %d shots at %.0f yd: ES %.2f in (%.2f MOA)",
            metrics.shot_count,
            target.distance_yards,
            metrics.extreme_spread,
            metrics.group_size_moa,
        )
        return target
