from __future__ import annotations

from typing import List, Optional

import numpy as np
import pytest

from camera_controller import CapturedImage, VideoFrame

# Non-thumb fingers: (mcp, pip, dip, tip) and their x position
_FINGERS = {
    "index": ((5, 6, 7, 8), 0.45),
    "middle": ((9, 10, 11, 12), 0.50),
    "ring": ((13, 14, 15, 16), 0.55),
    "pinky": ((17, 18, 19, 20), 0.60),
}


def make_hand(*extended: str) -> np.ndarray:
    """Build an upright right hand with the named digits extended."""
    coords = np.zeros((21, 3))
    coords[0] = (0.52, 0.85, 0.0)

    # Thumb extends sideways: tip to the right of the IP joint
    coords[1] = (0.44, 0.78, 0.0)
    coords[2] = (0.40, 0.72, 0.0)
    coords[3] = (0.38, 0.66, 0.0)
    coords[4] = (0.30, 0.64, 0.0) if "thumb" not in extended else (0.46, 0.62, 0.0)

    for finger, ((mcp, pip, dip, tip), x) in _FINGERS.items():
        coords[mcp] = (x, 0.62, 0.0)
        coords[pip] = (x, 0.52, 0.0)
        if finger in extended:
            coords[dip] = (x, 0.42, 0.0)
            coords[tip] = (x, 0.32, 0.0)
        else:
            coords[dip] = (x, 0.58, 0.0)
            coords[tip] = (x, 0.60, 0.0)
    return coords


ONE = make_hand("index")
TWO = make_hand("index", "middle")
THREE = make_hand("index", "middle", "ring")
FIST = make_hand()
OPEN_PALM = make_hand("thumb", "index", "middle", "ring", "pinky")


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedSource:
    """Video source whose frames are pushed by the test."""

    def __init__(self, width: int = 64, height: int = 48) -> None:
        self.width = width
        self.height = height
        self.fail_open = False
        self.fail_snapshot = False
        self.open_calls = 0
        self.release_calls = 0
        self.snapshot_calls = 0
        self._frame: Optional[VideoFrame] = None
        self._sequence = 0
        self._timestamp_ms = 0

    def open(self) -> None:
        self.open_calls += 1
        if self.fail_open:
            raise RuntimeError("Unable to open webcam")

    def push(self) -> VideoFrame:
        self._sequence += 1
        self._timestamp_ms += 33
        image = np.zeros((self.height, self.width, 3), dtype=np.uint8)
        self._frame = VideoFrame(image, self.width, self.height, self._sequence, self._timestamp_ms)
        return self._frame

    def current_frame(self) -> Optional[VideoFrame]:
        return self._frame

    def snapshot(self) -> Optional[CapturedImage]:
        self.snapshot_calls += 1
        if self.fail_snapshot:
            return None
        return CapturedImage(b"\xff\xd8fake\xff\xd9", self.width, self.height)

    def release(self) -> None:
        self.release_calls += 1


class FakeDetector:
    def __init__(self) -> None:
        self.landmarks: Optional[np.ndarray] = None
        self.error: Optional[Exception] = None
        self.timestamps: List[int] = []
        self.close_calls = 0

    def detect(self, frame: np.ndarray, timestamp_ms: int) -> Optional[np.ndarray]:
        self.timestamps.append(timestamp_ms)
        if self.error is not None:
            raise self.error
        return self.landmarks

    def close(self) -> None:
        self.close_calls += 1


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def source() -> ScriptedSource:
    return ScriptedSource()


@pytest.fixture
def detector() -> FakeDetector:
    return FakeDetector()
