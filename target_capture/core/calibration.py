"""Pixel-to-inch calibration for photographed targets."""
from __future__ import annotations

import logging
import math
from typing import Iterable, List

from .errors import InvalidCalibration
from .models import CalibrationReference, InchShot, PixelPoint, PixelShot, ScaleFactor, TargetPreset

LOGGER = logging.getLogger(__name__)

MIN_REASONABLE_PPI = 5.0
MAX_REASONABLE_PPI = 500.0


def pixel_distance(first: PixelPoint, second: PixelPoint) -> float:
    """Return the Euclidean distance between two pixel points."""

    return math.hypot(second.x - first.x, second.y - first.y)


def is_reasonable_scale(
    pixels_per_inch: float,
    minimum: float = MIN_REASONABLE_PPI,
    maximum: float = MAX_REASONABLE_PPI,
) -> bool:
    """Return True when the scale falls in the range typical for target photos."""

    return minimum <= pixels_per_inch <= maximum


def _checked_scale(pixels_per_inch: float, calibration_type: str) -> ScaleFactor:
    if not math.isfinite(pixels_per_inch) or pixels_per_inch <= 0:
        raise InvalidCalibration(f"Scale must be positive and finite, got {pixels_per_inch}")
    if not is_reasonable_scale(pixels_per_inch):
        LOGGER.warning("Calibration scale %.2f px/in is outside the usual range", pixels_per_inch)
    LOGGER.info("Calibrated %s scale at %.3f px/in", calibration_type, pixels_per_inch)
    return ScaleFactor(pixels_per_inch=pixels_per_inch, calibration_type=calibration_type)


def compute_scale(reference: CalibrationReference) -> ScaleFactor:
    """
    Derive pixels-per-inch from two reference points of known separation.

    Raises InvalidCalibration when the points coincide or the physical
    length is not strictly positive.
    """

    if not reference.physical_length_inches > 0:
        raise InvalidCalibration(
            f"Physical length must be positive, got {reference.physical_length_inches}"
        )
    first, second = reference.pixel_points
    distance = pixel_distance(first, second)
    if distance <= 0:
        raise InvalidCalibration("Calibration points must not coincide")
    return _checked_scale(distance / reference.physical_length_inches, "custom")


def scale_from_preset(preset: TargetPreset, rendered_pixel_size: float) -> ScaleFactor:
    """Derive the scale from a preset template aligned over the target image."""

    if not preset.known_dimension_inches > 0:
        raise InvalidCalibration(f"Preset '{preset.id}' must have a positive known dimension")
    if not rendered_pixel_size > 0:
        raise InvalidCalibration(f"Rendered size must be positive, got {rendered_pixel_size}")
    return _checked_scale(rendered_pixel_size / preset.known_dimension_inches, "preset")


def to_inches(shot: PixelShot, poa: PixelPoint, scale: ScaleFactor) -> InchShot:
    """Express a pixel shot as inch offsets from the point of aim, with up positive."""

    ppi = scale.pixels_per_inch
    return InchShot(
        x_inches=(shot.x - poa.x) / ppi,
        # screen y grows downward
        y_inches=(poa.y - shot.y) / ppi,
        sequence_number=shot.sequence_number,
    )


def convert_shots(shots: Iterable[PixelShot], poa: PixelPoint, scale: ScaleFactor) -> List[InchShot]:
    return [to_inches(shot, poa, scale) for shot in shots]


def inches_to_pixels(inches: float, scale: ScaleFactor) -> float:
    return inches * scale.pixels_per_inch


def to_pixels(x_inches: float, y_inches: float, poa: PixelPoint, scale: ScaleFactor) -> PixelPoint:
    """Place an inch offset from the point of aim back on the image."""

    return PixelPoint(
        x=poa.x + inches_to_pixels(x_inches, scale),
        y=poa.y - inches_to_pixels(y_inches, scale),
    )


def marker_display_size(base_size: float, zoom_scale: float) -> float:
    """Return the on-screen marker size that stays constant across zoom levels."""

    if zoom_scale <= 0:
        raise ValueError(f"Zoom scale must be positive, got {zoom_scale}")
    return base_size / zoom_scale
