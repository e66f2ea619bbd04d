"""Microphone capability consumed by the shot detector."""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Generator, Iterable, List, Optional, Protocol

import numpy as np

from target_capture.core.errors import MicrophoneUnavailable

LOGGER = logging.getLogger(__name__)


class AudioStream(Protocol):
    def read(self) -> np.ndarray:
        ...

    def close(self) -> None:
        ...


class MicrophoneSource(Protocol):
    def open(self) -> AudioStream:
        ...


class PyAudioStream:
    """Blocking PyAudio input stream returning int16 frames."""

    def __init__(self, backend, stream, frames_per_buffer: int, channels: int) -> None:
        self._backend = backend
        self._stream = stream
        self.frames_per_buffer = frames_per_buffer
        self.channels = channels
        self._closed = False

    def read(self) -> np.ndarray:
        try:
            raw = self._stream.read(self.frames_per_buffer, exception_on_overflow=False)
        except OSError as exc:
            raise MicrophoneUnavailable(f"Audio input failed: {exc}") from exc
        frame = np.frombuffer(raw, dtype=np.int16)
        if self.channels > 1:
            frame = frame.reshape(-1, self.channels)
        return frame

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if self._stream.is_active():
                self._stream.stop_stream()
            self._stream.close()
        finally:
            self._backend.terminate()


class PyAudioMicrophone:
    """Open the default (or configured) input device through PyAudio."""

    def __init__(
        self,
        sample_rate: int = 44100,
        frames_per_buffer: int = 512,
        device_index: Optional[int] = None,
        channels: int = 1,
    ) -> None:
        self.sample_rate = sample_rate
        self.frames_per_buffer = frames_per_buffer
        self.device_index = device_index
        self.channels = channels

    def open(self) -> PyAudioStream:
        try:
            import pyaudio
        except ImportError as exc:
            raise MicrophoneUnavailable(
                "PyAudio is required for microphone input. Install it via `pip install target-capture[audio]`."
            ) from exc

        backend = pyaudio.PyAudio()
        try:
            stream = backend.open(
                format=pyaudio.paInt16,
                channels=self.channels,
                rate=self.sample_rate,
                frames_per_buffer=self.frames_per_buffer,
                input=True,
                input_device_index=self.device_index,
            )
        except Exception as exc:
            backend.terminate()
            raise MicrophoneUnavailable(f"Unable to open audio input: {exc}") from exc
        LOGGER.info(
            "Audio input opened (device=%s, rate=%d, buffer=%d)",
            self.device_index if self.device_index is not None else "default",
            self.sample_rate,
            self.frames_per_buffer,
        )
        return PyAudioStream(backend, stream, self.frames_per_buffer, self.channels)


class ArrayStream:
    def __init__(self, owner: "ArrayMicrophone") -> None:
        self._owner = owner
        self._cursor = 0

    def read(self) -> np.ndarray:
        owner = self._owner
        with owner.lock:
            if self._cursor < len(owner.frames):
                frame = owner.frames[self._cursor]
                self._cursor += 1
                owner.frames_read += 1
                return frame
        if owner.repeat_last and owner.frames:
            return owner.frames[-1]
        raise MicrophoneUnavailable("Audio input ended")

    def close(self) -> None:
        with self._owner.lock:
            self._owner.open_streams -= 1


class ArrayMicrophone:
    """In-memory frame source, used for replaying prepared audio and in tests."""

    def __init__(
        self,
        frames: Iterable[np.ndarray],
        repeat_last: bool = False,
        fail_on_open: bool = False,
    ) -> None:
        self.frames: List[np.ndarray] = [np.asarray(frame) for frame in frames]
        self.repeat_last = repeat_last
        self.fail_on_open = fail_on_open
        self.lock = threading.Lock()
        self.open_streams = 0
        self.frames_read = 0

    def open(self) -> ArrayStream:
        if self.fail_on_open:
            raise MicrophoneUnavailable("Permission denied")
        with self.lock:
            self.open_streams += 1
        return ArrayStream(self)


@contextmanager
def managed_stream(source: MicrophoneSource) -> Generator[AudioStream, None, None]:
    """Context manager ensuring the audio stream is closed."""

    stream = source.open()
    try:
        yield stream
    finally:
        LOGGER.info("Releasing audio input")
        stream.close()
