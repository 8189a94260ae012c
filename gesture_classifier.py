"""Finger-count gesture classification from MediaPipe hand landmarks."""

from __future__ import annotations

import enum
from typing import Dict, Tuple

import numpy as np


NUM_LANDMARKS = 21

# (mcp, pip, dip, tip); for the thumb the joints are (cmc, mcp, ip, tip)
FINGER_JOINTS: Dict[str, Tuple[int, int, int, int]] = {
    "thumb": (1, 2, 3, 4),
    "index": (5, 6, 7, 8),
    "middle": (9, 10, 11, 12),
    "ring": (13, 14, 15, 16),
    "pinky": (17, 18, 19, 20),
}


class GestureLabel(enum.Enum):
    ONE_FINGER = "One Finger"
    TWO_FINGERS = "Two Fingers"
    THREE_FINGERS = "Three Fingers"
    UNDETECTED = "Undetected"

    @property
    def display_name(self) -> str:
        return self.value


_COUNT_TO_LABEL = {
    1: GestureLabel.ONE_FINGER,
    2: GestureLabel.TWO_FINGERS,
    3: GestureLabel.THREE_FINGERS,
}


def as_landmark_array(landmarks) -> np.ndarray:
    """Coerce a landmark sequence into a (21, 2+) float array."""
    coords = np.asarray(landmarks, dtype=np.float64)
    if coords.ndim != 2 or coords.shape[0] < NUM_LANDMARKS or coords.shape[1] < 2:
        raise ValueError(
            f"Expected {NUM_LANDMARKS} landmarks with at least x/y, got shape {coords.shape}"
        )
    return coords


def extended_fingers(landmarks) -> Dict[str, bool]:
    """Return which digits are extended for an upright, camera-facing hand.

    A finger counts as extended when its tip sits above its PIP joint in image
    space (smaller y). The thumb extends sideways, so it counts when its tip
    lies to the right of its IP joint (larger x).
    """
    coords = as_landmark_array(landmarks)
    result: Dict[str, bool] = {}
    for finger, (_, pip, ip, tip) in FINGER_JOINTS.items():
        if finger == "thumb":
            result[finger] = bool(coords[tip][0] > coords[ip][0])
        else:
            result[finger] = bool(coords[tip][1] < coords[pip][1])
    return result


def count_extended_fingers(landmarks) -> int:
    return sum(1 for value in extended_fingers(landmarks).values() if value)


def classify_gesture(landmarks) -> GestureLabel:
    """Map a landmark set to a finger-count gesture.

    Exactly one, two or three extended digits give the matching label; zero,
    four or five give ``UNDETECTED``.
    """
    return _COUNT_TO_LABEL.get(count_extended_fingers(landmarks), GestureLabel.UNDETECTED)
