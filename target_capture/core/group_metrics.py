"""Shot-group statistics computed from inch offsets."""
from __future__ import annotations

import math
from typing import Sequence, Tuple

import numpy as np

from .errors import InsufficientShots, InvalidDistance
from .models import GroupMetrics, InchShot

MOA_INCHES_AT_100_YARDS = 1.047


def _require_distance(distance_yards: float) -> float:
    if distance_yards is None or not math.isfinite(distance_yards) or distance_yards <= 0:
        raise InvalidDistance(f"Target distance must be a positive number of yards, got {distance_yards}")
    return float(distance_yards)


def inches_to_moa(inches: float, distance_yards: float, moa_inches: float = MOA_INCHES_AT_100_YARDS) -> float:
    distance = _require_distance(distance_yards)
    return inches / (distance * moa_inches / 100.0)


def moa_to_inches(moa: float, distance_yards: float, moa_inches: float = MOA_INCHES_AT_100_YARDS) -> float:
    distance = _require_distance(distance_yards)
    return moa * distance * moa_inches / 100.0


def _as_array(shots: Sequence[InchShot]) -> np.ndarray:
    return np.array([[shot.x_inches, shot.y_inches] for shot in shots], dtype=np.float64).reshape(-1, 2)


def group_center(shots: Sequence[InchShot]) -> Tuple[float, float]:
    if not shots:
        raise InsufficientShots("Group center needs at least one shot")
    points = _as_array(shots)
    # fsum keeps the result independent of shot order
    return math.fsum(points[:, 0]) / len(points), math.fsum(points[:, 1]) / len(points)


def extreme_spread(shots: Sequence[InchShot]) -> float:
    """Largest distance between any two shots; zero for a single shot."""

    if len(shots) < 2:
        return 0.0
    points = _as_array(shots)
    deltas = points[:, np.newaxis, :] - points[np.newaxis, :, :]
    return float(np.sqrt((deltas ** 2).sum(axis=-1)).max())


def mean_radius(shots: Sequence[InchShot], center: Tuple[float, float]) -> float:
    if not shots:
        raise InsufficientShots("Mean radius needs at least one shot")
    offsets = _as_array(shots) - np.asarray(center, dtype=np.float64)
    return math.fsum(np.hypot(offsets[:, 0], offsets[:, 1])) / len(offsets)


class GroupMetricsCalculator:
    """Compute centroid, extreme spread, mean radius and MOA size for a shot group."""

    def __init__(self, moa_inches_at_100_yards: float = MOA_INCHES_AT_100_YARDS) -> None:
        self.moa_inches = moa_inches_at_100_yards

    def compute(self, shots: Sequence[InchShot], distance_yards: float) -> GroupMetrics:
        if not shots:
            raise InsufficientShots("A shot group needs at least one shot")
        distance = _require_distance(distance_yards)
        center = group_center(shots)
        spread = extreme_spread(shots)
        return GroupMetrics(
            shot_count=len(shots),
            group_center_x=center[0],
            group_center_y=center[1],
            extreme_spread=spread,
            mean_radius=mean_radius(shots, center),
            group_size_moa=inches_to_moa(spread, distance, self.moa_inches),
        )


def compute_metrics(shots: Sequence[InchShot], distance_yards: float) -> GroupMetrics:
    return GroupMetricsCalculator().compute(shots, distance_yards)


def format_measurement(value: float, decimals: int = 2, unit: str = "") -> str:
    return f"{value:.{decimals}f}{unit}"


def format_group_metrics(metrics: GroupMetrics) -> dict:
    """Return display strings for each metric."""

    return {
        "extreme_spread": format_measurement(metrics.extreme_spread, 2, '"'),
        "mean_radius": format_measurement(metrics.mean_radius, 2, '"'),
        "group_size_moa": format_measurement(metrics.group_size_moa, 2, " MOA"),
        "group_center": f'{metrics.group_center_x:+.2f}", {metrics.group_center_y:+.2f}"',
    }
