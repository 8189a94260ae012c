"""Entry point for the gesture-guided profile photo capture.

Usage:
    pip install -e .
    python main.py --output profile.jpg
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import cv2
import numpy as np

from camera_controller import (
    DEFAULT_CAPTURE_FPS,
    DEFAULT_CAPTURE_HEIGHT,
    DEFAULT_CAPTURE_WIDTH,
    CameraController,
    CameraDevice,
    CapturedImage,
    list_available_cameras,
)
from capture_session import CaptureSession, SessionConfig
from pose_sequence import Phase
from scheduler import FrameScheduler
from utils.drawing import (
    composite_overlay,
    draw_countdown,
    draw_instruction_banner,
    draw_pose_checklist,
    draw_status_badge,
)


logger = logging.getLogger(__name__)

WINDOW_NAME = "Gesture Photo Capture"
CAPTURED_PREVIEW_MS = 1500


@dataclass
class AppConfig:
    camera_index: Optional[int] = None
    camera_backend: str = "auto"
    capture_width: int = DEFAULT_CAPTURE_WIDTH
    capture_height: int = DEFAULT_CAPTURE_HEIGHT
    target_fps: int = DEFAULT_CAPTURE_FPS
    mirror: bool = True
    min_detection_confidence: float = 0.5
    min_presence_confidence: float = 0.5
    min_tracking_confidence: float = 0.5
    delegate: str = "cpu"
    model_path: Optional[str] = None
    strict_hold: bool = False
    hold_delay: float = 1.0
    output: Path = Path("profile_photo.jpg")
    list_cameras: bool = False
    verbose: bool = False


def parse_args(argv: Optional[List[str]] = None) -> AppConfig:
    parser = argparse.ArgumentParser(description="Take a profile photo by following a hand-gesture sequence.")
    parser.add_argument(
        "--camera", type=int, default=None, help="Camera index (default: ask when several cameras exist)"
    )
    parser.add_argument(
        "--camera-backend",
        choices=("auto", "any", "dshow", "avfoundation"),
        default="auto",
        help="Video backend selection (default: auto)",
    )
    parser.add_argument("--width", type=int, default=DEFAULT_CAPTURE_WIDTH, help="Requested camera width")
    parser.add_argument("--height", type=int, default=DEFAULT_CAPTURE_HEIGHT, help="Requested camera height")
    parser.add_argument("--fps", type=int, default=DEFAULT_CAPTURE_FPS, help="Requested camera FPS")
    parser.add_argument("--no-mirror", action="store_true", help="Do not mirror the preview (rear-facing camera)")
    parser.add_argument("--min-det-confidence", type=float, default=0.5, help="Minimum hand detection confidence")
    parser.add_argument("--min-presence-confidence", type=float, default=0.5, help="Minimum hand presence confidence")
    parser.add_argument("--min-track-confidence", type=float, default=0.5, help="Minimum hand tracking confidence")
    parser.add_argument("--gpu-delegate", action="store_true", help="Run the landmarker on the GPU delegate")
    parser.add_argument("--model-path", default=None, help="Path to hand_landmarker.task")
    parser.add_argument(
        "--strict-hold",
        action="store_true",
        help="Require the gesture to stay visible for the whole hold delay",
    )
    parser.add_argument("--hold-delay", type=float, default=1.0, help="Seconds to hold each pose (default: 1.0)")
    parser.add_argument("--output", type=Path, default=Path("profile_photo.jpg"), help="Where to write the JPEG")
    parser.add_argument("--list-cameras", action="store_true", help="List available cameras and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    return AppConfig(
        camera_index=args.camera,
        camera_backend=args.camera_backend,
        capture_width=max(160, args.width),
        capture_height=max(120, args.height),
        target_fps=max(1, args.fps),
        mirror=not args.no_mirror,
        min_detection_confidence=args.min_det_confidence,
        min_presence_confidence=args.min_presence_confidence,
        min_tracking_confidence=args.min_track_confidence,
        delegate="gpu" if args.gpu_delegate else "cpu",
        model_path=args.model_path,
        strict_hold=args.strict_hold,
        hold_delay=max(0.0, args.hold_delay),
        output=args.output,
        list_cameras=args.list_cameras,
        verbose=args.verbose,
    )


def render_frame(session: CaptureSession, frame: Optional[np.ndarray], width: int, height: int) -> np.ndarray:
    """Compose the preview, overlay and UI for the current session state."""
    if frame is None:
        frame = np.zeros((height, width, 3), dtype=np.uint8)
    output = composite_overlay(frame, session.overlay)

    state = session.state
    if session.error:
        output = draw_status_badge(output, "Gesture capture unavailable - press Q to close")
    elif session.loading or state is None:
        output = draw_status_badge(output, "Loading AI model...", color=(90, 90, 90))
    else:
        output = draw_pose_checklist(output, session.instructions, state.stage, state.confirmed)
        if state.phase is Phase.DETECTING and not state.hand_present:
            output = draw_status_badge(output, "Hand not detected - please show your hand clearly")
        if state.phase is Phase.COUNTDOWN and not state.capture_failed:
            output = draw_countdown(output, state.countdown_remaining)

    return draw_instruction_banner(output, session.instruction)


def choose_camera(devices: Sequence[CameraDevice], ask: Callable[[str], str] = input) -> int:
    """Pick a camera index, asking on the terminal when more than one device answers."""
    if not devices:
        return 0
    if len(devices) == 1:
        return devices[0].index

    for number, device in enumerate(devices, start=1):
        print(f"{number}. {device.label}")
    while True:
        try:
            answer = ask(f"Select a camera [1-{len(devices)}, default 1]: ").strip()
        except EOFError:
            return devices[0].index
        if not answer:
            return devices[0].index
        if answer.isdigit() and 1 <= int(answer) <= len(devices):
            return devices[int(answer) - 1].index
        print("Invalid choice")


def run(config: AppConfig) -> Optional[CapturedImage]:
    camera_index = config.camera_index
    if camera_index is None:
        camera_index = choose_camera(list_available_cameras(config.camera_backend))

    camera = CameraController(
        camera_index,
        width=config.capture_width,
        height=config.capture_height,
        fps=config.target_fps,
        mirror=config.mirror,
        backend=config.camera_backend,
    )

    def create_detector():
        from gesture_detector import HandLandmarkDetector

        return HandLandmarkDetector(
            config.model_path,
            min_hand_detection_confidence=config.min_detection_confidence,
            min_hand_presence_confidence=config.min_presence_confidence,
            min_tracking_confidence=config.min_tracking_confidence,
            delegate=config.delegate,
        )

    captured: List[CapturedImage] = []

    def on_capture(image: CapturedImage) -> None:
        config.output.parent.mkdir(parents=True, exist_ok=True)
        config.output.write_bytes(image.data)
        logger.info(f"Saved capture to {config.output}")
        captured.append(image)

    scheduler = FrameScheduler()
    session = CaptureSession(
        camera,
        create_detector,
        scheduler,
        on_capture,
        on_error=lambda message: logger.warning(message),
        config=SessionConfig(hold_delay=config.hold_delay, strict_hold=config.strict_hold),
    )

    cv2.namedWindow(WINDOW_NAME, cv2.WINDOW_NORMAL)
    cv2.resizeWindow(WINDOW_NAME, config.capture_width, config.capture_height)

    session.open()
    try:
        while True:
            frame = camera.grab() if session.active else None
            scheduler.run_pending()

            image = frame.image if frame is not None else None
            composite = render_frame(session, image, config.capture_width, config.capture_height)
            cv2.imshow(WINDOW_NAME, composite)

            if captured:
                cv2.waitKey(CAPTURED_PREVIEW_MS)
                break

            key = cv2.waitKey(1) & 0xFF
            if key in (ord("q"), 27):
                break
            if key == ord("c"):
                session.capture_manually()
            elif key == ord("r"):
                if session.active:
                    session.retry_capture()
                else:
                    session.open()
    finally:
        session.close()
        cv2.destroyAllWindows()

    return captured[0] if captured else None


def main(argv: Optional[List[str]] = None) -> int:
    config = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if config.verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
    )

    if config.list_cameras:
        devices = list_available_cameras(config.camera_backend)
        if not devices:
            logger.warning("No cameras found")
        for device in devices:
            print(device.label)
        return 0

    return 0 if run(config) is not None else 1


if __name__ == "__main__":
    raise SystemExit(main())
