"""Error kinds raised by the capture and detection core."""


class CaptureAnalysisError(Exception):
    """Base class for all recoverable capture/detection failures."""


class InvalidCalibration(CaptureAnalysisError, ValueError):
    """Calibration reference is degenerate or has a non-positive physical length."""


class InsufficientShots(CaptureAnalysisError, ValueError):
    """Group metrics were requested for an empty shot set."""


class InvalidDistance(CaptureAnalysisError, ValueError):
    """Target distance is missing or not strictly positive."""


class MicrophoneUnavailable(CaptureAnalysisError, RuntimeError):
    """The audio input resource could not be acquired or was lost."""


class CaptureStateError(CaptureAnalysisError, RuntimeError):
    """A capture workflow action is not allowed in the current mode."""
