# utils/drawing.py
"""Helper functions for the detection overlay and capture UI."""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

import cv2
import numpy as np

from gesture_classifier import GestureLabel
from pose_sequence import PoseInstruction

BOX_PADDING = 0.1
FILL_ALPHA = 0.2

# BGR
MATCH_COLOR: Tuple[int, int, int] = (80, 200, 60)
MISMATCH_COLOR: Tuple[int, int, int] = (0, 140, 255)
PENDING_COLOR: Tuple[int, int, int] = (90, 90, 90)
ACTIVE_COLOR: Tuple[int, int, int] = (220, 130, 40)
ALERT_COLOR: Tuple[int, int, int] = (60, 60, 220)
PANEL_COLOR: Tuple[int, int, int] = (30, 30, 30)
TEXT_COLOR: Tuple[int, int, int] = (240, 240, 240)


# Small utility
def _rounded_rect(img, top_left, bottom_right, color, radius=12, thickness=-1, alpha=1.0):
    x1, y1 = top_left
    x2, y2 = bottom_right
    w = x2 - x1
    h = y2 - y1
    if w <= 0 or h <= 0:
        return img
    radius = max(0, min(radius, w // 2, h // 2))
    overlay = img.copy()
    # draw filled rect with rounded corners using circles & rects
    cv2.rectangle(overlay, (x1 + radius, y1), (x2 - radius, y2), color, thickness)
    cv2.rectangle(overlay, (x1, y1 + radius), (x2, y2 - radius), color, thickness)
    for corner in ((x1 + radius, y1 + radius), (x2 - radius, y1 + radius),
                   (x1 + radius, y2 - radius), (x2 - radius, y2 - radius)):
        cv2.circle(overlay, corner, radius, color, thickness)
    cv2.addWeighted(overlay, alpha, img, 1 - alpha, 0, img)
    return img


def hand_bounding_box(
    landmarks: np.ndarray,
    width: int,
    height: int,
    padding: float = BOX_PADDING,
) -> Tuple[int, int, int, int]:
    """Pixel box (x1, y1, x2, y2) around the landmark extremes.

    The box grows by ``padding`` of its own width/height on every side and is
    clamped to the frame.
    """
    coords = np.asarray(landmarks, dtype=np.float64)
    xs = coords[:, 0] * width
    ys = coords[:, 1] * height
    min_x, max_x = float(xs.min()), float(xs.max())
    min_y, max_y = float(ys.min()), float(ys.max())
    pad_x = (max_x - min_x) * padding
    pad_y = (max_y - min_y) * padding

    x1 = int(max(0.0, min_x - pad_x))
    y1 = int(max(0.0, min_y - pad_y))
    x2 = int(min(width - 1.0, max_x + pad_x))
    y2 = int(min(height - 1.0, max_y + pad_y))
    return x1, y1, x2, y2


def render_hand_overlay(
    width: int,
    height: int,
    landmarks: Optional[np.ndarray],
    gesture: Optional[GestureLabel],
    expected: Optional[GestureLabel],
    padding: float = BOX_PADDING,
) -> np.ndarray:
    """Return a BGRA layer with the hand box, fill and gesture label.

    The layer is fully transparent when no hand is present.
    """
    overlay = np.zeros((height, width, 4), dtype=np.uint8)
    if landmarks is None:
        return overlay

    x1, y1, x2, y2 = hand_bounding_box(landmarks, width, height, padding)
    matches = gesture is not None and gesture is expected
    color = MATCH_COLOR if matches else MISMATCH_COLOR

    cv2.rectangle(overlay, (x1, y1), (x2, y2), (*color, int(255 * FILL_ALPHA)), -1)
    cv2.rectangle(overlay, (x1, y1), (x2, y2), (*color, 255), 3)

    label = (gesture or GestureLabel.UNDETECTED).display_name
    (text_w, text_h), baseline = cv2.getTextSize(label, cv2.FONT_HERSHEY_SIMPLEX, 0.6, 2)
    label_y2 = y1 if y1 - text_h - baseline - 8 >= 0 else y1 + text_h + baseline + 8
    label_y1 = label_y2 - text_h - baseline - 8
    cv2.rectangle(overlay, (x1, label_y1), (x1 + text_w + 12, label_y2), (*color, 255), -1)
    cv2.putText(
        overlay,
        label,
        (x1 + 6, label_y2 - baseline - 4),
        cv2.FONT_HERSHEY_SIMPLEX,
        0.6,
        (255, 255, 255, 255),
        2,
        lineType=cv2.LINE_AA,
    )
    return overlay


def composite_overlay(frame: np.ndarray, overlay: Optional[np.ndarray]) -> np.ndarray:
    """Alpha-blend a BGRA overlay onto a BGR frame of the same size."""
    if overlay is None or not overlay[:, :, 3].any():
        return frame.copy()
    alpha = overlay[:, :, 3:4].astype(np.float32) / 255.0
    blended = frame.astype(np.float32) * (1.0 - alpha) + overlay[:, :, :3].astype(np.float32) * alpha
    return np.clip(blended, 0, 255).astype(np.uint8)


def draw_instruction_banner(
    frame: np.ndarray,
    text: str,
    *,
    color: Tuple[int, int, int] = PANEL_COLOR,
    alpha: float = 0.85,
) -> np.ndarray:
    """Overlay the current instruction centered at the bottom of the frame."""
    output = frame.copy()
    height, width = output.shape[:2]
    padding = 12
    font_scale = 0.8
    thickness = 2
    text_size, _ = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, font_scale, thickness)
    box_w = text_size[0] + padding * 2
    box_h = text_size[1] + padding * 2
    x1 = max((width - box_w) // 2, 0)
    y1 = max(height - box_h - 16, 0)

    _rounded_rect(output, (x1, y1), (x1 + box_w, y1 + box_h), color, radius=14, alpha=alpha)
    cv2.putText(
        output,
        text,
        (x1 + padding, y1 + padding + text_size[1] - 2),
        cv2.FONT_HERSHEY_SIMPLEX,
        font_scale,
        (255, 255, 255),
        thickness,
        lineType=cv2.LINE_AA,
    )
    return output


def draw_status_badge(frame: np.ndarray, text: str, color: Tuple[int, int, int] = ALERT_COLOR) -> np.ndarray:
    """Full-width alert strip at the top, e.g. when no hand is visible."""
    output = frame.copy()
    width = output.shape[1]
    text_size, _ = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, 0.65, 2)
    _rounded_rect(output, (16, 16), (width - 16, 16 + text_size[1] + 20), color, radius=10, alpha=0.8)
    cv2.putText(
        output,
        text,
        ((width - text_size[0]) // 2, 16 + text_size[1] + 10),
        cv2.FONT_HERSHEY_SIMPLEX,
        0.65,
        TEXT_COLOR,
        2,
        lineType=cv2.LINE_AA,
    )
    return output


def draw_pose_checklist(
    frame: np.ndarray,
    instructions: Sequence[PoseInstruction],
    stage: int,
    confirmed: bool,
    origin: Tuple[int, int] = (20, 70),
    font_scale: float = 0.6,
    line_height: int = 30,
) -> np.ndarray:
    """List the pose sequence with done / current / pending markers."""
    output = frame.copy()
    x, y = origin
    rows = []
    for instruction in instructions:
        if instruction.ordinal < stage:
            rows.append((f"[x] {instruction.ordinal}. {instruction.name}", MATCH_COLOR))
        elif instruction.ordinal == stage:
            color = MATCH_COLOR if confirmed else ACTIVE_COLOR
            rows.append((f"[>] {instruction.ordinal}. {instruction.name}", color))
        else:
            rows.append((f"[ ] {instruction.ordinal}. {instruction.name}", PENDING_COLOR))

    total_w = max(
        (cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, font_scale, 2)[0][0] for text, _ in rows),
        default=160,
    ) + 24
    total_h = line_height * len(rows) + 12
    _rounded_rect(output, (x - 10, y - 10), (x + total_w, y + total_h), PANEL_COLOR, radius=12, alpha=0.7)

    yy = y + 16
    for text, color in rows:
        cv2.putText(output, text, (x, yy), cv2.FONT_HERSHEY_SIMPLEX, font_scale, color, 2, lineType=cv2.LINE_AA)
        yy += line_height
    return output


def draw_countdown(frame: np.ndarray, remaining: int) -> np.ndarray:
    """Draw a prominent countdown number at the center of the frame."""
    output = frame.copy()
    height, width = output.shape[:2]
    text = str(remaining) if remaining > 0 else "Smile!"
    font_scale = min(width, height) / 160 if remaining > 0 else min(width, height) / 400
    text_size, _ = cv2.getTextSize(text, cv2.FONT_HERSHEY_DUPLEX, font_scale, 6)
    origin = (
        (width - text_size[0]) // 2,
        (height + text_size[1]) // 2,
    )
    # halo
    cv2.putText(output, text, (origin[0], origin[1] + 4), cv2.FONT_HERSHEY_DUPLEX, font_scale, (10, 10, 10), 10, lineType=cv2.LINE_AA)
    cv2.putText(output, text, origin, cv2.FONT_HERSHEY_DUPLEX, font_scale, (0, 180, 255), 6, lineType=cv2.LINE_AA)
    return output
