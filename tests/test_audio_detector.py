import threading
import time
from typing import Callable, List

import numpy as np
import pytest

from target_capture.adapters.microphone import ArrayMicrophone, managed_stream
from target_capture.core.errors import MicrophoneUnavailable
from target_capture.core.models import AudioDetectionConfig, DetectorError, ShotDetected
from target_capture.services.audio_detector import AdaptiveAudioShotDetector, DetectorStatus
from target_capture.services.volume_monitor import VolumeMonitor

QUIET = np.full(256, 0.01, dtype=np.float32)
LOUD = np.full(256, 0.2, dtype=np.float32)


class StepClock:
    def __init__(self, step_ms: float = 10.0) -> None:
        self.now = 0.0
        self.step_ms = step_ms

    def __call__(self) -> float:
        self.now += self.step_ms
        return self.now


def _wait_for(predicate: Callable[[], bool], timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.002)
    return predicate()


def _frames(*segments: tuple) -> List[np.ndarray]:
    frames: List[np.ndarray] = []
    for frame, count in segments:
        frames.extend([frame] * count)
    return frames


def _detector(microphone: ArrayMicrophone, sensitivity: int = 50, min_delay_ms: int = 500) -> AdaptiveAudioShotDetector:
    return AdaptiveAudioShotDetector(
        microphone,
        config=AudioDetectionConfig(sensitivity=sensitivity, min_delay_ms=min_delay_ms),
        tick_interval=0.0,
        clock=StepClock(),
    )


def test_detects_spike_after_warmup() -> None:
    frames = _frames((QUIET, 30), (LOUD, 1), (QUIET, 5))
    microphone = ArrayMicrophone(frames, repeat_last=True)
    detector = _detector(microphone, sensitivity=0)

    detector.start()
    assert detector.status is DetectorStatus.LISTENING
    assert _wait_for(lambda: microphone.frames_read == len(frames))
    event = detector.next_event(timeout=1.0)
    detector.stop()

    assert isinstance(event, ShotDetected)
    assert event.sequence == 1
    assert event.volume == pytest.approx(0.2, rel=1e-6)
    assert event.threshold == pytest.approx(0.1, rel=1e-5)
    assert detector.events() == []
    assert detector.status is DetectorStatus.IDLE
    assert microphone.open_streams == 0


def test_spike_during_warmup_is_ignored() -> None:
    frames = _frames((QUIET, 10), (LOUD, 1), (QUIET, 25))
    microphone = ArrayMicrophone(frames, repeat_last=True)
    detector = _detector(microphone, sensitivity=100)

    with detector:
        assert _wait_for(lambda: microphone.frames_read == len(frames))

    assert [event for event in detector.events() if isinstance(event, ShotDetected)] == []


def test_debounce_merges_close_spikes() -> None:
    frames = _frames((QUIET, 30), (LOUD, 1), (QUIET, 3), (LOUD, 1), (QUIET, 3))
    microphone = ArrayMicrophone(frames, repeat_last=True)
    detector = _detector(microphone, min_delay_ms=500)

    with detector:
        assert _wait_for(lambda: microphone.frames_read == len(frames))

    shots = [event for event in detector.events() if isinstance(event, ShotDetected)]
    assert len(shots) == 1


def test_debounce_allows_spaced_spikes() -> None:
    frames = _frames((QUIET, 30), (LOUD, 1), (QUIET, 80), (LOUD, 1), (QUIET, 3))
    microphone = ArrayMicrophone(frames, repeat_last=True)
    detector = _detector(microphone, min_delay_ms=500)

    with detector:
        assert _wait_for(lambda: microphone.frames_read == len(frames))

    shots = [event for event in detector.events() if isinstance(event, ShotDetected)]
    assert [shot.sequence for shot in shots] == [1, 2]
    assert shots[1].timestamp_ms - shots[0].timestamp_ms >= 500


def test_start_failure_releases_and_reports_once() -> None:
    microphone = ArrayMicrophone([], fail_on_open=True)
    detector = _detector(microphone)

    with pytest.raises(MicrophoneUnavailable):
        detector.start()
    detector.stop()
    detector.stop()

    assert detector.status is DetectorStatus.IDLE
    assert microphone.open_streams == 0
    events = detector.events()
    assert len(events) == 1
    assert isinstance(events[0], DetectorError)


def test_stream_failure_transitions_to_idle() -> None:
    microphone = ArrayMicrophone(_frames((QUIET, 40)), repeat_last=False)
    detector = _detector(microphone)

    detector.start()
    event = detector.next_event(timeout=3.0)

    assert isinstance(event, DetectorError)
    assert "ended" in event.message
    assert not detector.is_listening
    assert microphone.open_streams == 0
    assert detector.events() == []
    detector.stop()
    assert microphone.open_streams == 0


def test_stop_is_idempotent_and_releases_microphone() -> None:
    microphone = ArrayMicrophone([QUIET], repeat_last=True)
    detector = _detector(microphone)

    detector.stop()
    detector.start()
    detector.start()
    assert microphone.open_streams == 1
    detector.stop()
    detector.stop()

    assert detector.status is DetectorStatus.IDLE
    assert microphone.open_streams == 0


def test_no_ticks_after_stop_returns() -> None:
    # baseline keeps drifting towards the louder floor while listening
    microphone = ArrayMicrophone(_frames((QUIET, 30), (QUIET * 2, 1)), repeat_last=True)
    detector = AdaptiveAudioShotDetector(microphone, tick_interval=0.005, clock=StepClock())

    detector.start()
    assert _wait_for(lambda: detector.warmed_up)
    detector.stop()
    samples_after_stop = len(detector.state().baseline_samples)
    baseline_after_stop = detector.state().baseline_volume
    time.sleep(0.05)

    assert len(detector.state().baseline_samples) == samples_after_stop
    assert detector.state().baseline_volume == baseline_after_stop


def test_single_owner_per_microphone() -> None:
    microphone = ArrayMicrophone([QUIET], repeat_last=True)
    first = _detector(microphone)
    second = _detector(microphone)

    first.start()
    try:
        with pytest.raises(MicrophoneUnavailable):
            second.start()
        assert isinstance(second.next_event(timeout=0.1), DetectorError)
    finally:
        first.stop()

    second.start()
    assert second.is_listening
    second.stop()
    assert microphone.open_streams == 0


def test_current_volume_is_zero_when_idle() -> None:
    microphone = ArrayMicrophone([LOUD], repeat_last=True)
    detector = _detector(microphone)

    assert detector.get_current_volume() == 0.0
    detector.start()
    assert _wait_for(lambda: detector.get_current_volume() > 0.0)
    assert detector.get_current_volume() == pytest.approx(0.2, rel=1e-6)
    detector.stop()

    assert detector.get_current_volume() == 0.0


def test_update_config_merges_partial_changes() -> None:
    detector = _detector(ArrayMicrophone([QUIET]), sensitivity=20, min_delay_ms=300)

    config = detector.update_config(sensitivity=80)

    assert config.sensitivity == 80
    assert config.min_delay_ms == 300
    assert detector.config.min_delay_ms == 300
    with pytest.raises(ValueError):
        detector.update_config(sensitivity=101)
    assert detector.config.sensitivity == 80


def test_volume_monitor_reads_detector_level() -> None:
    microphone = ArrayMicrophone([LOUD], repeat_last=True)
    detector = _detector(microphone)
    readings: List[float] = []

    with detector:
        with VolumeMonitor(detector, interval=0.01, sink=readings.append) as monitor:
            assert _wait_for(lambda: monitor.latest > 0.0)

    assert readings
    assert max(readings) == pytest.approx(0.2, rel=1e-6)
    assert monitor.latest == 0.0


def test_volume_monitor_poll_when_idle() -> None:
    detector = _detector(ArrayMicrophone([LOUD]))
    monitor = VolumeMonitor(detector, interval=0.1)

    assert monitor.poll() == 0.0
    with pytest.raises(ValueError):
        VolumeMonitor(detector, interval=0)


def test_managed_stream_closes_on_error() -> None:
    microphone = ArrayMicrophone([QUIET])

    with pytest.raises(RuntimeError):
        with managed_stream(microphone) as stream:
            assert microphone.open_streams == 1
            stream.read()
            raise RuntimeError("boom")

    assert microphone.open_streams == 0


def test_restart_during_stop_keeps_new_session(gated_microphone) -> None:
    detector = AdaptiveAudioShotDetector(gated_microphone, tick_interval=0.001)
    rival = AdaptiveAudioShotDetector(gated_microphone, tick_interval=0.001)
    detector.start()
    stopper = threading.Thread(target=detector.stop)
    stopper.start()
    assert _wait_for(lambda: not detector.is_listening)

    # the first session's loop is still blocked in read() while stop() joins it
    detector.start()
    gated_microphone.gate.set()
    stopper.join(timeout=3.0)

    try:
        assert not stopper.is_alive()
        assert detector.is_listening
        first, second = gated_microphone.streams
        assert first.closed
        assert not second.closed
        with pytest.raises(MicrophoneUnavailable):
            rival.start()
    finally:
        detector.stop()

    assert gated_microphone.streams[1].closed
    rival.start()
    assert rival.is_listening
    rival.stop()
