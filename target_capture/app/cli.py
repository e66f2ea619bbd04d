"""Command line entry point for target analysis and live shot detection."""
from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from target_capture.adapters.microphone import MicrophoneSource, PyAudioMicrophone
from target_capture.adapters.presets import PresetCatalog
from target_capture.app.settings import AppSettings, load_settings
from target_capture.core.capture import CaptureWorkflow
from target_capture.core.errors import CaptureAnalysisError, MicrophoneUnavailable
from target_capture.core.group_metrics import format_group_metrics
from target_capture.core.models import CapturedTarget, DetectorError, ShotDetected
from target_capture.services.audio_detector import AdaptiveAudioShotDetector
from target_capture.services.shot_timer import DelayMode, ShotTimer
from target_capture.services.volume_monitor import VolumeMonitor

LOGGER = logging.getLogger(__name__)


def setup_logging(settings: AppSettings) -> None:
    log_level = getattr(logging, settings.log_level, logging.INFO)
    if settings.log_format == "json":
        formatter = logging.Formatter('{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s"}')
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    logging.basicConfig(level=log_level, handlers=[handler], force=True)


def build_detector(settings: AppSettings, microphone: Optional[MicrophoneSource] = None) -> AdaptiveAudioShotDetector:
    if microphone is None:
        microphone = PyAudioMicrophone(
            sample_rate=settings.sample_rate,
            frames_per_buffer=settings.frames_per_buffer,
            device_index=settings.input_device_index,
        )
    return AdaptiveAudioShotDetector(
        microphone,
        config=settings.detection_config(),
        tick_interval=settings.tick_interval_seconds,
        warmup_samples=settings.baseline_sample_count,
        baseline_decay=settings.baseline_decay,
    )


def run_capture(payload: Dict[str, Any], catalog: PresetCatalog) -> CapturedTarget:
    """Replay a capture description through the workflow."""

    workflow = CaptureWorkflow()
    if "distance_yards" in payload:
        workflow.set_distance_yards(payload["distance_yards"])
    calibration = payload.get("calibration") or {}
    preset_id = calibration.get("preset")
    if preset_id:
        preset = catalog.get(preset_id)
        if preset is None:
            raise ValueError(f"Unknown target preset '{preset_id}'")
        workflow.apply_preset_calibration(preset, float(calibration.get("rendered_pixels", 0)))
    else:
        points = calibration.get("points") or []
        for number, point in enumerate(points[:2], start=1):
            workflow.set_custom_point(number, float(point[0]), float(point[1]))
        workflow.set_custom_reference_inches(float(calibration.get("length_inches", 0)))
        workflow.apply_custom_calibration()

    poa = payload.get("poa")
    if not poa:
        raise ValueError("Capture is missing the point of aim")
    workflow.set_poa(float(poa[0]), float(poa[1]))
    for shot in payload.get("shots") or []:
        workflow.add_shot(float(shot[0]), float(shot[1]))
    workflow.firearm_id = payload.get("firearm_id")
    workflow.ammo_id = payload.get("ammo_id")
    workflow.notes = payload.get("notes") or ""
    return workflow.create_captured_target()


def _cmd_analyze(args: argparse.Namespace, settings: AppSettings) -> int:
    payload = yaml.safe_load(Path(args.capture).read_text(encoding="utf-8")) or {}
    if args.distance is not None:
        payload["distance_yards"] = args.distance
    catalog = PresetCatalog.from_yaml(settings.presets_path)
    try:
        target = run_capture(payload, catalog)
    except (CaptureAnalysisError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    output = target.model_dump()
    output["display"] = format_group_metrics(target.metrics)
    print(json.dumps(output, indent=2))
    return 0


def _cmd_presets(args: argparse.Namespace, settings: AppSettings) -> int:
    catalog = PresetCatalog.from_yaml(settings.presets_path)
    for preset in catalog.all():
        print(f"{preset.id:<16} {preset.known_dimension_inches:>5g} in  {preset.name}")
    return 0


def _cmd_listen(args: argparse.Namespace, settings: AppSettings) -> int:
    if not settings.detection_enabled:
        print("error: shot detection is disabled", file=sys.stderr)
        return 2
    detector = build_detector(settings)

    if args.timer:
        timer = ShotTimer(delay_mode=DelayMode(args.delay), par_seconds=args.par)
        try:
            result = timer.run_until_shot(detector, timeout=args.duration)
        except MicrophoneUnavailable as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 3
        if result is None:
            print("Timer cancelled")
        else:
            verdict = "" if result.beat_par is None else (" (par beaten)" if result.beat_par else " (over par)")
            print(f"Time: {result.elapsed_seconds:.2f}s [{result.stopped_by}]{verdict}")
        return 0

    monitor = VolumeMonitor(detector, interval=settings.volume_poll_interval_seconds)
    try:
        detector.start()
    except MicrophoneUnavailable as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 3
    started = time.monotonic()
    exit_code = 0
    try:
        with monitor:
            while args.duration is None or time.monotonic() - started < args.duration:
                event = detector.next_event(timeout=settings.volume_poll_interval_seconds)
                if isinstance(event, ShotDetected):
                    print(f"Shot {event.sequence} at {(event.timestamp_ms / 1000.0):.3f}s (level {event.volume:.3f})")
                elif isinstance(event, DetectorError):
                    print(f"error: {event.message}", file=sys.stderr)
                    exit_code = 3
                    break
                elif args.meter:
                    print(f"level {monitor.latest:.3f}", end="\r", flush=True)
    except KeyboardInterrupt:
        pass
    finally:
        detector.stop()
    return exit_code


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Target capture analysis and audio shot detection")
    parser.add_argument("--log-format", choices=["text", "json"], default=None, help="Logging format")
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze = subparsers.add_parser("analyze", help="Compute group metrics for a capture file (JSON or YAML)")
    analyze.add_argument("capture", type=str, help="Capture description file")
    analyze.add_argument("--distance", type=float, default=None, help="Override target distance in yards")
    analyze.set_defaults(handler=_cmd_analyze)

    presets = subparsers.add_parser("presets", help="List calibration presets")
    presets.set_defaults(handler=_cmd_presets)

    listen = subparsers.add_parser("listen", help="Detect shots from the microphone")
    listen.add_argument("--sensitivity", type=int, default=None, help="Detection sensitivity 0-100")
    listen.add_argument("--min-delay", type=int, default=None, help="Minimum milliseconds between shots")
    listen.add_argument("--device", type=int, default=None, help="Input device index")
    listen.add_argument("--duration", type=float, default=None, help="Stop after N seconds")
    listen.add_argument("--meter", action="store_true", help="Show the live input level")
    listen.add_argument("--timer", action="store_true", help="Run a shot timer stopped by the first shot")
    listen.add_argument("--delay", choices=[mode.value for mode in DelayMode], default="none", help="Timer start delay")
    listen.add_argument("--par", type=float, default=None, help="Par time in seconds")
    listen.set_defaults(handler=_cmd_listen)
    return parser


def resolve_settings(args: argparse.Namespace) -> AppSettings:
    overrides: Dict[str, object] = {}
    if args.log_format:
        overrides["log_format"] = args.log_format
    if getattr(args, "sensitivity", None) is not None:
        overrides["sensitivity"] = args.sensitivity
    if getattr(args, "min_delay", None) is not None:
        overrides["min_delay_ms"] = args.min_delay
    if getattr(args, "device", None) is not None:
        overrides["input_device_index"] = args.device
    return load_settings(**overrides)


def main(argv: Optional[list[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    settings = resolve_settings(args)
    setup_logging(settings)
    return args.handler(args, settings)


if __name__ == "__main__":
    sys.exit(main())
