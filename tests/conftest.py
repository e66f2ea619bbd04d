import threading
from typing import List

import numpy as np
import pytest

QUIET = np.full(256, 0.01, dtype=np.float32)


class GatedStream:
    def __init__(self, gate: threading.Event) -> None:
        self.gate = gate
        self.closed = False

    def read(self) -> np.ndarray:
        self.gate.wait()
        return QUIET

    def close(self) -> None:
        self.closed = True


class GatedMicrophone:
    """Microphone whose reads block until ``gate`` is set."""

    def __init__(self) -> None:
        self.gate = threading.Event()
        self.streams: List[GatedStream] = []

    def open(self) -> GatedStream:
        stream = GatedStream(self.gate)
        self.streams.append(stream)
        return stream


@pytest.fixture
def gated_microphone():
    microphone = GatedMicrophone()
    yield microphone
    microphone.gate.set()
