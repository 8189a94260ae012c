"""Hand landmark detection powered by MediaPipe Hand Landmarker."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional
from urllib.request import urlretrieve

import numpy as np

try:
    import cv2
except ImportError as exc:
    raise ImportError("OpenCV (opencv-python) is required for hand detection") from exc

try:
    from mediapipe import Image as MPImage
    from mediapipe import ImageFormat
    from mediapipe.tasks import python as mp_python
    from mediapipe.tasks.python import vision
except ImportError as exc:
    raise ImportError("MediaPipe is required for hand detection. Install mediapipe.") from exc


logger = logging.getLogger(__name__)

MODEL_URL = (
    "https://storage.googleapis.com/mediapipe-models/hand_landmarker/"
    "hand_landmarker/float16/latest/hand_landmarker.task"
)
DEFAULT_MODEL_PATH = Path("models/hand_landmarker.task")

DEFAULT_MIN_DETECTION_CONFIDENCE = 0.5
DEFAULT_MIN_PRESENCE_CONFIDENCE = 0.5
DEFAULT_MIN_TRACKING_CONFIDENCE = 0.5


class DetectorInitError(RuntimeError):
    """Raised when the hand landmarker cannot be loaded."""


class HandLandmarkDetector:
    """Return the landmarks of at most one hand per video frame.

    Runs MediaPipe in VIDEO mode, which keeps tracking state between calls and
    therefore needs timestamps that never go backwards. Thresholds and the
    delegate are fixed for the lifetime of the detector.
    """

    def __init__(
        self,
        model_path: Path | str | None = None,
        *,
        min_hand_detection_confidence: float = DEFAULT_MIN_DETECTION_CONFIDENCE,
        min_hand_presence_confidence: float = DEFAULT_MIN_PRESENCE_CONFIDENCE,
        min_tracking_confidence: float = DEFAULT_MIN_TRACKING_CONFIDENCE,
        delegate: str = "cpu",
    ) -> None:
        self.min_hand_detection_confidence = min_hand_detection_confidence
        self.min_hand_presence_confidence = min_hand_presence_confidence
        self.min_tracking_confidence = min_tracking_confidence
        self.delegate = delegate
        self._last_input_ms: Optional[int] = None
        self._last_sent_ms: Optional[int] = None
        self._closed = False
        try:
            self.model_path = self._ensure_model_exists(model_path)
            self._landmarker = self._create_landmarker()
        except DetectorInitError:
            raise
        except Exception as exc:
            raise DetectorInitError(f"Unable to load hand landmarker: {exc}") from exc

    def _ensure_model_exists(self, model_path: Path | str | None) -> Path:
        """Download the MediaPipe model locally if it is absent."""
        path = Path(model_path) if model_path else DEFAULT_MODEL_PATH
        if not path.exists():
            logger.info(f"Downloading hand landmarker model to {path}")
            path.parent.mkdir(parents=True, exist_ok=True)
            urlretrieve(MODEL_URL, path)
        return path

    def _create_landmarker(self) -> vision.HandLandmarker:
        delegate = (
            mp_python.BaseOptions.Delegate.GPU
            if self.delegate == "gpu"
            else mp_python.BaseOptions.Delegate.CPU
        )
        base_options = mp_python.BaseOptions(
            model_asset_path=str(self.model_path), delegate=delegate
        )
        options = vision.HandLandmarkerOptions(
            base_options=base_options,
            running_mode=vision.RunningMode.VIDEO,
            num_hands=1,
            min_hand_detection_confidence=self.min_hand_detection_confidence,
            min_hand_presence_confidence=self.min_hand_presence_confidence,
            min_tracking_confidence=self.min_tracking_confidence,
        )
        landmarker = vision.HandLandmarker.create_from_options(options)
        logger.info(f"Hand landmarker loaded ({self.delegate} delegate)")
        return landmarker

    def _next_timestamp(self, timestamp_ms: int) -> int:
        """Check the caller timestamp and return a strictly increasing one for the graph."""
        timestamp_ms = int(timestamp_ms)
        if self._last_input_ms is not None and timestamp_ms < self._last_input_ms:
            raise ValueError(
                f"Timestamps must not decrease: got {timestamp_ms} after {self._last_input_ms}"
            )
        self._last_input_ms = timestamp_ms
        if self._last_sent_ms is not None:
            timestamp_ms = max(timestamp_ms, self._last_sent_ms + 1)
        self._last_sent_ms = timestamp_ms
        return timestamp_ms

    def detect(self, frame: np.ndarray, timestamp_ms: int) -> Optional[np.ndarray]:
        """Analyze a BGR frame and return a (21, 3) landmark array or None."""
        if self._closed:
            raise RuntimeError("Detector has been closed")

        timestamp_ms = self._next_timestamp(timestamp_ms)
        rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        mp_image = MPImage(image_format=ImageFormat.SRGB, data=rgb_frame)
        result = self._landmarker.detect_for_video(mp_image, timestamp_ms)

        if not result.hand_landmarks:
            return None
        landmarks = result.hand_landmarks[0]
        return np.array([[lm.x, lm.y, lm.z] for lm in landmarks])

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._landmarker:
            self._landmarker.close()
            logger.debug("Hand landmarker closed")
