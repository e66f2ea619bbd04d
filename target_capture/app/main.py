import logging
import math
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from target_capture.adapters.presets import PresetCatalog
from target_capture.app.cli import build_detector
from target_capture.app.settings import AppSettings, get_settings
from target_capture.core.calibration import (
    compute_scale,
    convert_shots,
    marker_display_size,
    scale_from_preset,
    to_pixels,
)
from target_capture.core.errors import (
    CaptureAnalysisError,
    CaptureStateError,
    InvalidCalibration,
    MicrophoneUnavailable,
)
from target_capture.core.group_metrics import GroupMetricsCalculator, format_group_metrics
from target_capture.core.models import (
    CalibrationReference,
    GroupMetrics,
    InchShot,
    PixelPoint,
    PixelShot,
    ScaleFactor,
    TargetPreset,
)
from target_capture.services.audio_detector import AdaptiveAudioShotDetector


logger = logging.getLogger(__name__)
settings = get_settings()

catalog = PresetCatalog.from_yaml(settings.presets_path)
calculator = GroupMetricsCalculator()
detector = build_detector(settings)


class PresetCalibrationRequest(BaseModel):
    preset_id: str
    rendered_pixels: float


class MetricsRequest(BaseModel):
    poa: PixelPoint
    shots: List[PixelShot]
    pixels_per_inch: float
    distance_yards: Optional[float] = None
    zoom_scale: float = Field(default=1.0, gt=0)
    marker_base_size: float = Field(default=12.0, gt=0)


class MetricsResponse(BaseModel):
    shots: List[InchShot]
    metrics: GroupMetrics
    display: dict
    group_center_pixels: PixelPoint
    marker_size: float


class DetectorConfigUpdate(BaseModel):
    sensitivity: Optional[int] = Field(default=None, ge=0, le=100)
    min_delay_ms: Optional[int] = Field(default=None, ge=0)


def get_app_settings() -> AppSettings:
    return settings


def get_catalog() -> PresetCatalog:
    return catalog


def get_detector() -> AdaptiveAudioShotDetector:
    return detector


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        yield
    finally:
        # the microphone must not outlive the server
        detector.stop()


app = FastAPI(title="Target Capture", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CaptureAnalysisError)
async def capture_error_handler(request: Request, exc: CaptureAnalysisError) -> JSONResponse:
    if isinstance(exc, MicrophoneUnavailable):
        status_code = 503
    elif isinstance(exc, CaptureStateError):
        status_code = 409
    else:
        status_code = 422
    return JSONResponse(status_code=status_code, content={"error": type(exc).__name__, "detail": str(exc)})


def _detector_status(active: AdaptiveAudioShotDetector, cfg: AppSettings) -> dict:
    state = active.state()
    return {
        "status": active.status.value,
        "enabled": cfg.detection_enabled,
        "sensitivity": active.config.sensitivity,
        "min_delay_ms": active.config.min_delay_ms,
        "current_volume": active.get_current_volume(),
        "detections": active.detection_count,
        "baseline_volume": state.baseline_volume,
        "warmed_up": active.warmed_up,
    }


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/presets")
async def list_presets(presets: PresetCatalog = Depends(get_catalog)) -> List[TargetPreset]:
    return presets.all()


@app.post("/calibration/scale")
async def calibration_scale(reference: CalibrationReference) -> ScaleFactor:
    return compute_scale(reference)


@app.post("/calibration/preset")
async def calibration_preset(
    request: PresetCalibrationRequest,
    presets: PresetCatalog = Depends(get_catalog),
) -> dict:
    preset = presets.get(request.preset_id)
    if preset is None:
        raise HTTPException(status_code=404, detail=f"Unknown preset '{request.preset_id}'")
    scale = scale_from_preset(preset, request.rendered_pixels)
    return {"scale": jsonable_encoder(scale), "suggestion": presets.suggestion(preset.id)}


@app.post("/targets/metrics")
async def target_metrics(request: MetricsRequest) -> MetricsResponse:
    if not math.isfinite(request.pixels_per_inch) or request.pixels_per_inch <= 0:
        raise InvalidCalibration(f"Scale must be positive, got {request.pixels_per_inch}")
    scale = ScaleFactor(pixels_per_inch=request.pixels_per_inch)
    inch_shots = convert_shots(request.shots, request.poa, scale)
    metrics = calculator.compute(inch_shots, request.distance_yards)
    return MetricsResponse(
        shots=inch_shots,
        metrics=metrics,
        display=format_group_metrics(metrics),
        group_center_pixels=to_pixels(metrics.group_center_x, metrics.group_center_y, request.poa, scale),
        marker_size=marker_display_size(request.marker_base_size, request.zoom_scale),
    )


@app.get("/detector/status")
async def detector_status(
    active: AdaptiveAudioShotDetector = Depends(get_detector),
    cfg: AppSettings = Depends(get_app_settings),
) -> dict:
    return _detector_status(active, cfg)


@app.post("/detector/start")
def detector_start(
    active: AdaptiveAudioShotDetector = Depends(get_detector),
    cfg: AppSettings = Depends(get_app_settings),
) -> dict:
    if not cfg.detection_enabled:
        raise HTTPException(status_code=409, detail="Shot detection is disabled")
    active.start()
    return _detector_status(active, cfg)


@app.post("/detector/stop")
def detector_stop(
    active: AdaptiveAudioShotDetector = Depends(get_detector),
    cfg: AppSettings = Depends(get_app_settings),
) -> dict:
    active.stop()
    return _detector_status(active, cfg)


@app.patch("/detector/config")
async def detector_config(
    update: DetectorConfigUpdate,
    active: AdaptiveAudioShotDetector = Depends(get_detector),
) -> dict:
    config = active.update_config(sensitivity=update.sensitivity, min_delay_ms=update.min_delay_ms)
    return config.model_dump()


@app.get("/detector/events")
async def detector_events(active: AdaptiveAudioShotDetector = Depends(get_detector)) -> list[dict]:
    return [event.model_dump() for event in active.events()]
