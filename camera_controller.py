"""Webcam access, device discovery and still-image encoding."""

from __future__ import annotations

import base64
import logging
import sys
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import cv2
import numpy as np


logger = logging.getLogger(__name__)

DEFAULT_CAPTURE_WIDTH = 640
DEFAULT_CAPTURE_HEIGHT = 480
DEFAULT_CAPTURE_FPS = 30
DEFAULT_JPEG_QUALITY = 90


@dataclass(frozen=True)
class VideoFrame:
    """One camera image plus the token used to avoid processing it twice."""

    image: np.ndarray
    width: int
    height: int
    sequence: int
    timestamp_ms: int


@dataclass(frozen=True)
class CapturedImage:
    data: bytes
    width: int
    height: int
    mime_type: str = "image/jpeg"

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


@dataclass(frozen=True)
class CameraDevice:
    index: int
    backend: str

    @property
    def label(self) -> str:
        return f"Camera {self.index} ({self.backend})"


def camera_backend_candidates(backend_choice: str) -> List[Tuple[str, int]]:
    if backend_choice == "any":
        return [("any", cv2.CAP_ANY)]
    if backend_choice == "dshow":
        return [("dshow", cv2.CAP_DSHOW)]
    if backend_choice == "avfoundation":
        return [("avfoundation", cv2.CAP_AVFOUNDATION)]
    if sys.platform == "win32":
        return [("dshow", cv2.CAP_DSHOW), ("any", cv2.CAP_ANY)]
    if sys.platform == "darwin":
        return [("avfoundation", cv2.CAP_AVFOUNDATION), ("any", cv2.CAP_ANY)]
    return [("any", cv2.CAP_ANY)]


def encode_jpeg(image: np.ndarray, quality: int = DEFAULT_JPEG_QUALITY) -> Optional[CapturedImage]:
    ok, buffer = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        return None
    height, width = image.shape[:2]
    return CapturedImage(buffer.tobytes(), width, height)


class CameraController:
    """Own one webcam stream for the lifetime of a capture session.

    The host advances the stream with :meth:`grab` once per refresh, like a
    video element; consumers poll :meth:`current_frame`. Frames are mirrored by
    default so the preview behaves like a user-facing camera. Every successful
    grab gets a new sequence number and a timestamp that never decreases.
    """

    def __init__(
        self,
        camera_index: int = 0,
        *,
        width: int = DEFAULT_CAPTURE_WIDTH,
        height: int = DEFAULT_CAPTURE_HEIGHT,
        fps: int = DEFAULT_CAPTURE_FPS,
        mirror: bool = True,
        backend: str = "auto",
        jpeg_quality: int = DEFAULT_JPEG_QUALITY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.camera_index = camera_index
        self.width = width
        self.height = height
        self.fps = fps
        self.mirror = mirror
        self.backend = backend
        self.jpeg_quality = jpeg_quality
        self._clock = clock
        self._cap: Optional[cv2.VideoCapture] = None
        self._sequence = 0
        self._last_timestamp_ms = 0
        self._last_frame: Optional[VideoFrame] = None

    @property
    def is_open(self) -> bool:
        return self._cap is not None

    def open(self) -> None:
        if self._cap is not None:
            return
        for backend_name, backend_code in camera_backend_candidates(self.backend):
            cap = cv2.VideoCapture(self.camera_index, backend_code)
            if not cap.isOpened():
                cap.release()
                continue
            cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
            cap.set(cv2.CAP_PROP_FPS, self.fps)
            actual_width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
            actual_height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
            logger.info(
                f"Camera {self.camera_index} opened via {backend_name}: {actual_width}x{actual_height}"
            )
            self._cap = cap
            return
        raise RuntimeError("Unable to open webcam")

    def grab(self) -> Optional[VideoFrame]:
        """Read the next frame from the device, or return None when it yields nothing."""
        if self._cap is None:
            return None
        success, image = self._cap.read()
        if not success or image is None:
            return None
        if self.mirror:
            image = cv2.flip(image, 1)

        timestamp_ms = max(int(self._clock() * 1000), self._last_timestamp_ms)
        self._last_timestamp_ms = timestamp_ms
        self._sequence += 1
        height, width = image.shape[:2]
        self._last_frame = VideoFrame(image, width, height, self._sequence, timestamp_ms)
        return self._last_frame

    def current_frame(self) -> Optional[VideoFrame]:
        """Latest grabbed frame; repeated calls return the same sequence until the next grab."""
        return self._last_frame

    def snapshot(self) -> Optional[CapturedImage]:
        """Encode the most recent frame as JPEG, reading one if none exists yet."""
        frame = self._last_frame or self.grab()
        if frame is None:
            logger.warning("No camera frame available for capture")
            return None
        return encode_jpeg(frame.image, self.jpeg_quality)

    def release(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            logger.debug(f"Camera {self.camera_index} released")
        self._last_frame = None


def list_available_cameras(backend_choice: str = "auto", max_index: int = 6) -> List[CameraDevice]:
    """Probe camera indices and return the ones that deliver a frame."""
    found: List[CameraDevice] = []
    for camera_index in range(max_index):
        for backend_name, backend_code in camera_backend_candidates(backend_choice):
            capture = cv2.VideoCapture(camera_index, backend_code)
            try:
                if capture.isOpened():
                    ok, _ = capture.read()
                    if ok:
                        found.append(CameraDevice(camera_index, backend_name))
                        break
            finally:
                capture.release()
    return found
