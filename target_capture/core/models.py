from typing import List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


class PixelPoint(BaseModel):
    x: float
    y: float


class CalibrationReference(BaseModel):
    pixel_points: Tuple[PixelPoint, PixelPoint]
    physical_length_inches: float


class ScaleFactor(BaseModel):
    model_config = ConfigDict(frozen=True)

    pixels_per_inch: float
    calibration_type: Literal["preset", "custom"] = "custom"


class PixelShot(BaseModel):
    x: float
    y: float
    sequence_number: int


class InchShot(BaseModel):
    x_inches: float
    y_inches: float
    sequence_number: int


class GroupMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    shot_count: int
    group_center_x: float
    group_center_y: float
    extreme_spread: float
    mean_radius: float
    group_size_moa: float


class TargetPreset(BaseModel):
    id: str
    name: str
    known_dimension_inches: float
    description: str = ""
    suggestion: Optional[str] = None


class CapturedTarget(BaseModel):
    target_type: str
    distance_yards: float
    calibration_type: Literal["preset", "custom"]
    custom_reference_inches: Optional[float] = None
    shots: List[InchShot]
    metrics: GroupMetrics
    firearm_id: Optional[str] = None
    ammo_id: Optional[str] = None
    notes: Optional[str] = None


class AudioDetectionConfig(BaseModel):
    sensitivity: int = Field(default=50, ge=0, le=100)
    min_delay_ms: int = Field(default=500, ge=0)


class ShotDetected(BaseModel):
    kind: Literal["shot"] = "shot"
    sequence: int
    timestamp_ms: float
    volume: float
    threshold: float
    baseline: float


class DetectorError(BaseModel):
    kind: Literal["error"] = "error"
    timestamp_ms: float
    message: str


DetectorEvent = Union[ShotDetected, DetectorError]
