"""Gesture-guided photo capture session.

A session opens the camera and the hand detector, then runs one detection
cycle per display refresh: frame -> landmarks -> gesture -> pose sequence ->
overlay. Once the sequence is complete a 1 Hz countdown takes over and the
final still is handed to ``on_capture``. Closing the session at any point
stops the loop, clears every timer and releases the detector and the camera.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, Sequence

import numpy as np

from camera_controller import CapturedImage, VideoFrame
from gesture_classifier import GestureLabel, classify_gesture
from pose_sequence import (
    COUNTDOWN_SECONDS,
    POSE_INSTRUCTIONS,
    Cancel,
    CaptureFailed,
    CaptureSucceeded,
    CountdownTick,
    Effect,
    Event,
    FrameClassified,
    HoldElapsed,
    Phase,
    PoseInstruction,
    RetryCapture,
    SequenceState,
    SkipToCountdown,
    expected_gesture,
    instruction_text,
    reduce,
    validate_instructions,
)
from scheduler import FrameScheduler
from utils.drawing import BOX_PADDING, render_hand_overlay


logger = logging.getLogger(__name__)

HOLD_DELAY_SECONDS = 1.0
COUNTDOWN_INTERVAL_SECONDS = 1.0


class VideoSource(Protocol):
    def open(self) -> None: ...

    def current_frame(self) -> Optional[VideoFrame]: ...

    def snapshot(self) -> Optional[CapturedImage]: ...

    def release(self) -> None: ...


class LandmarkDetector(Protocol):
    def detect(self, frame: np.ndarray, timestamp_ms: int) -> Optional[np.ndarray]: ...

    def close(self) -> None: ...


@dataclass
class SessionConfig:
    hold_delay: float = HOLD_DELAY_SECONDS
    countdown_seconds: int = COUNTDOWN_SECONDS
    countdown_interval: float = COUNTDOWN_INTERVAL_SECONDS
    # Revoke a confirmed pose when the gesture or the hand is lost mid-hold
    strict_hold: bool = False
    box_padding: float = BOX_PADDING


class CaptureSession:
    """Drive one "capture a profile photo" interaction from open to close."""

    def __init__(
        self,
        source: VideoSource,
        detector_factory: Callable[[], LandmarkDetector],
        scheduler: FrameScheduler,
        on_capture: Callable[[CapturedImage], Any],
        *,
        on_close: Optional[Callable[[], Any]] = None,
        on_error: Optional[Callable[[str], Any]] = None,
        instructions: Sequence[PoseInstruction] = POSE_INSTRUCTIONS,
        config: Optional[SessionConfig] = None,
    ) -> None:
        self.source = source
        self.detector_factory = detector_factory
        self.scheduler = scheduler
        self.on_capture = on_capture
        self.on_close = on_close
        self.on_error = on_error
        self.instructions = validate_instructions(instructions)
        self.config = config or SessionConfig()

        self._state: Optional[SequenceState] = None
        self._detector: Optional[LandmarkDetector] = None
        self._source_open = False
        self._active = False
        self._loading = True
        self._error: Optional[str] = None
        self._frame_handle: Optional[int] = None
        self._hold_handle: Optional[int] = None
        self._countdown_handle: Optional[int] = None
        self._last_sequence: Optional[int] = None
        self._last_frame: Optional[VideoFrame] = None
        self._overlay: Optional[np.ndarray] = None
        self._pending_image: Optional[CapturedImage] = None

    # ------------------------------------------------------------------
    # Read-only views for the host UI

    @property
    def state(self) -> Optional[SequenceState]:
        return self._state

    @property
    def active(self) -> bool:
        return self._active

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def overlay(self) -> Optional[np.ndarray]:
        return self._overlay

    @property
    def last_frame(self) -> Optional[VideoFrame]:
        return self._last_frame

    @property
    def instruction(self) -> str:
        if self._error:
            return f"Gesture capture unavailable: {self._error}"
        return instruction_text(self._state, self.instructions, loading=self._loading)

    # ------------------------------------------------------------------
    # Lifecycle

    def open(self) -> bool:
        """Acquire the camera and the detector and start the frame loop.

        Returns False and stays in the loading state when either resource is
        unavailable; calling ``open`` again retries.
        """
        if self._active:
            return True

        self._loading = True
        self._error = None
        try:
            self.source.open()
            self._source_open = True
            self._detector = self.detector_factory()
        except Exception as exc:
            logger.exception("Failed to initialise gesture capture")
            self._error = str(exc) or exc.__class__.__name__
            self._release_resources()
            return False

        self._state = SequenceState()
        self._last_sequence = None
        self._last_frame = None
        self._overlay = None
        self._active = True
        self._loading = False
        self._frame_handle = self.scheduler.request_frame(self._on_frame)
        logger.info(f"Gesture capture session opened ({len(self.instructions)} poses)")
        return True

    def close(self) -> None:
        """Cancel the session; safe to call any number of times.

        A session stopped by a detector failure is still cancelled here, so
        ``on_close`` fires once for every opened session that was not captured.
        """
        if self._state is None or self._state.terminal:
            self._release_resources()
            return
        self._dispatch(Cancel())

    def capture_manually(self) -> None:
        """Skip the remaining poses and go straight to the countdown."""
        if self._active:
            self._dispatch(SkipToCountdown())

    def retry_capture(self) -> None:
        if self._active:
            self._dispatch(RetryCapture())

    # ------------------------------------------------------------------
    # Frame loop

    def _on_frame(self) -> None:
        self._frame_handle = None
        if not self._active or self._state is None:
            return

        phase = self._state.phase
        if phase is Phase.DETECTING:
            if not self._process_frame():
                return
        elif phase is not Phase.COUNTDOWN:
            return

        if self._active:
            self._frame_handle = self.scheduler.request_frame(self._on_frame)

    def _process_frame(self) -> bool:
        frame = self.source.current_frame()
        if frame is None:
            return True
        if self._last_sequence is not None and frame.sequence <= self._last_sequence:
            return True
        self._last_sequence = frame.sequence
        self._last_frame = frame

        try:
            landmarks = self._detector.detect(frame.image, frame.timestamp_ms)
        except Exception as exc:
            logger.exception("Hand detection failed; stopping gesture capture")
            self._fail(f"Hand detection failed: {exc}")
            return False

        gesture: Optional[GestureLabel] = None
        if landmarks is not None:
            gesture = classify_gesture(landmarks)
        logger.debug(f"Frame {frame.sequence}: {gesture.name if gesture else 'no hand'}")

        expected = expected_gesture(self._state, self.instructions)
        self._dispatch(FrameClassified(gesture))
        if not self._active or self._state.phase is not Phase.DETECTING:
            return self._active

        self._overlay = render_hand_overlay(
            frame.width,
            frame.height,
            landmarks,
            gesture,
            expected,
            self.config.box_padding,
        )
        return True

    # ------------------------------------------------------------------
    # State transitions and effects

    def _dispatch(self, event: Event) -> None:
        if self._state is None:
            return
        self._state, effects = reduce(
            self._state,
            event,
            self.instructions,
            strict_hold=self.config.strict_hold,
            countdown_seconds=self.config.countdown_seconds,
        )
        for effect in effects:
            self._run_effect(effect)

    def _run_effect(self, effect: Effect) -> None:
        state = self._state
        if effect is Effect.POSE_CONFIRMED:
            logger.info(f"Pose {state.stage} confirmed: {state.gesture.display_name}")
            stage = state.stage
            self._hold_handle = self.scheduler.call_later(
                self.config.hold_delay, lambda: self._on_hold_elapsed(stage)
            )
        elif effect is Effect.CANCEL_HOLD:
            self.scheduler.cancel(self._hold_handle)
            self._hold_handle = None
        elif effect is Effect.STAGE_ADVANCED:
            logger.info(f"Advanced to pose {state.stage}/{len(self.instructions)}")
        elif effect is Effect.START_COUNTDOWN:
            logger.info(f"All poses matched, countdown from {state.countdown_remaining}")
            self._overlay = None
            self._countdown_handle = self.scheduler.call_every(
                self.config.countdown_interval, self._on_countdown_tick
            )
        elif effect is Effect.REQUEST_CAPTURE:
            self._stop_countdown()
            self._capture()
        elif effect is Effect.DELIVER_CAPTURE:
            self._deliver()
        elif effect is Effect.TEARDOWN:
            self._teardown(cancelled=state.phase is Phase.CANCELLED)

    def _on_hold_elapsed(self, stage: int) -> None:
        self._hold_handle = None
        if self._active:
            self._dispatch(HoldElapsed(stage))

    def _on_countdown_tick(self) -> None:
        if self._active:
            self._dispatch(CountdownTick())

    def _stop_countdown(self) -> None:
        self.scheduler.cancel(self._countdown_handle)
        self._countdown_handle = None

    def _capture(self) -> None:
        try:
            image = self.source.snapshot()
        except Exception:
            logger.exception("Still capture raised")
            image = None

        if image is None:
            logger.warning("Still capture failed; session stays open for retry")
            self._dispatch(CaptureFailed())
            self._notify(self.on_error, "Failed to capture photo")
            return

        self._pending_image = image
        self._dispatch(CaptureSucceeded())

    def _deliver(self) -> None:
        image, self._pending_image = self._pending_image, None
        logger.info(f"Photo captured ({image.width}x{image.height}, {len(image.data)} bytes)")
        self._notify(self.on_capture, image)

    def _fail(self, message: str) -> None:
        self._error = message
        self._cancel_timers()
        self._release_resources()
        self._active = False
        self._notify(self.on_error, message)

    def _cancel_timers(self) -> None:
        for handle in (self._frame_handle, self._hold_handle, self._countdown_handle):
            self.scheduler.cancel(handle)
        self._frame_handle = None
        self._hold_handle = None
        self._countdown_handle = None

    def _release_resources(self) -> None:
        detector, self._detector = self._detector, None
        if detector is not None:
            try:
                detector.close()
            except Exception:
                logger.exception("Error while closing hand detector")
        if not self._source_open:
            return
        self._source_open = False
        try:
            self.source.release()
        except Exception:
            logger.exception("Error while releasing camera")

    def _teardown(self, cancelled: bool) -> None:
        self._cancel_timers()
        self._release_resources()
        self._active = False
        self._overlay = None
        self._pending_image = None
        if cancelled:
            logger.info("Gesture capture session closed")
            self._notify(self.on_close)
        else:
            logger.info("Gesture capture session finished")

    def _notify(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Capture session callback raised")
