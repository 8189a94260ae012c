import pytest

from conftest import FIST, ONE, THREE, TWO
from capture_session import CaptureSession, SessionConfig
from gesture_classifier import GestureLabel
from pose_sequence import Phase, PoseInstruction
from scheduler import FrameScheduler


class Harness:
    def __init__(self, clock, source, detector, **kwargs):
        self.clock = clock
        self.source = source
        self.detector = detector
        self.scheduler = FrameScheduler(clock)
        self.captured = []
        self.closed = []
        self.errors = []
        factory = kwargs.pop("detector_factory", lambda: detector)
        self.session = CaptureSession(
            source,
            factory,
            self.scheduler,
            self.captured.append,
            on_close=lambda: self.closed.append(True),
            on_error=self.errors.append,
            **kwargs,
        )

    def feed(self, landmarks, frames=1):
        self.detector.landmarks = landmarks
        for _ in range(frames):
            self.source.push()
            self.scheduler.run_pending()

    def wait(self, seconds):
        for _ in range(int(seconds * 2)):
            self.clock.advance(0.5)
            self.scheduler.run_pending()

    @property
    def state(self):
        return self.session.state

    def pass_all_poses(self):
        for landmarks in (ONE, TWO, THREE):
            self.feed(landmarks)
            self.wait(1)


@pytest.fixture
def harness(clock, source, detector):
    h = Harness(clock, source, detector)
    assert h.session.open()
    return h


def test_full_sequence_captures_once_and_releases(harness):
    harness.feed(ONE, frames=3)
    assert harness.state.confirmed
    harness.wait(1)
    assert harness.state.stage == 2

    harness.feed(TWO)
    harness.wait(1)
    assert harness.state.stage == 3

    harness.feed(THREE)
    harness.wait(1)
    assert harness.state.phase is Phase.COUNTDOWN
    assert harness.state.countdown_remaining == 3

    for remaining in (2, 1):
        harness.wait(1)
        assert harness.state.countdown_remaining == remaining
    harness.wait(1)

    assert harness.state.phase is Phase.CAPTURED
    assert len(harness.captured) == 1
    assert harness.captured[0].data.startswith(b"\xff\xd8")
    assert harness.closed == []
    assert not harness.session.active
    assert harness.detector.close_calls == 1
    assert harness.source.release_calls == 1
    assert harness.scheduler.pending == 0

    harness.wait(5)
    assert len(harness.captured) == 1


def test_detector_is_idle_during_countdown(harness):
    harness.pass_all_poses()
    assert harness.state.phase is Phase.COUNTDOWN
    calls = len(harness.detector.timestamps)
    harness.feed(FIST, frames=5)
    assert len(harness.detector.timestamps) == calls
    assert harness.session.overlay is None


def test_same_frame_is_processed_once(harness):
    harness.detector.landmarks = ONE
    harness.source.push()
    for _ in range(4):
        harness.scheduler.run_pending()
    assert len(harness.detector.timestamps) == 1


def test_timestamps_reach_detector_in_order(harness):
    harness.feed(None, frames=4)
    assert harness.detector.timestamps == sorted(harness.detector.timestamps)
    assert len(set(harness.detector.timestamps)) == 4


def test_no_hand_keeps_first_stage(harness):
    harness.feed(None, frames=10)
    harness.wait(3)
    assert harness.state.stage == 1
    assert not harness.state.hand_present
    assert harness.session.instruction == "Please show your hand to the camera"


def test_wrong_gesture_does_not_advance(harness):
    harness.feed(THREE, frames=5)
    harness.wait(2)
    assert harness.state.stage == 1
    assert not harness.state.confirmed
    assert harness.state.gesture is GestureLabel.THREE_FINGERS


def test_overlay_follows_hand(harness):
    harness.feed(ONE)
    overlay = harness.session.overlay
    assert overlay.shape == (48, 64, 4)
    assert overlay.any()

    harness.feed(None)
    assert not harness.session.overlay.any()


def test_lenient_hold_advances_after_hand_leaves(harness):
    harness.feed(ONE)
    harness.feed(None, frames=3)
    harness.wait(1)
    assert harness.state.stage == 2


def test_strict_hold_requires_steady_gesture(clock, source, detector):
    h = Harness(clock, source, detector, config=SessionConfig(strict_hold=True))
    h.session.open()
    h.feed(ONE)
    h.wait(0.5)
    h.feed(TWO)
    h.wait(1)
    assert h.state.stage == 1
    assert not h.state.confirmed

    h.feed(ONE)
    h.wait(1)
    assert h.state.stage == 2


def test_custom_hold_delay(clock, source, detector):
    h = Harness(clock, source, detector, config=SessionConfig(hold_delay=2.0))
    h.session.open()
    h.feed(ONE)
    h.wait(1.5)
    assert h.state.stage == 1
    h.wait(0.5)
    assert h.state.stage == 2


def _to_loaded(h):
    pass


def _to_confirmed(h):
    h.feed(ONE)


def _to_second_stage(h):
    h.feed(ONE)
    h.wait(1)
    h.feed(TWO)


def _to_countdown(h):
    h.pass_all_poses()
    h.wait(1)


def _to_capture_failed(h):
    h.source.fail_snapshot = True
    h.pass_all_poses()
    h.wait(3)
    assert h.state.capture_failed


@pytest.mark.parametrize(
    "reach",
    [_to_loaded, _to_confirmed, _to_second_stage, _to_countdown, _to_capture_failed],
)
def test_close_stops_everything(harness, reach):
    reach(harness)
    snapshots = harness.source.snapshot_calls

    harness.session.close()
    assert harness.state.phase is Phase.CANCELLED
    assert harness.closed == [True]
    assert not harness.session.active
    assert harness.detector.close_calls == 1
    assert harness.source.release_calls == 1
    assert harness.scheduler.pending == 0

    detections = len(harness.detector.timestamps)
    harness.feed(ONE, frames=3)
    harness.wait(5)
    assert len(harness.detector.timestamps) == detections
    assert harness.source.snapshot_calls == snapshots
    assert harness.captured == []
    assert harness.session.overlay is None

    harness.session.close()
    assert harness.closed == [True]
    assert harness.source.release_calls == 1
    assert harness.session.instruction == "Capture cancelled"


def test_close_before_open_is_a_no_op(clock, source, detector):
    h = Harness(clock, source, detector)
    h.session.close()
    assert h.closed == []
    assert source.release_calls == 0
    assert h.session.loading


def test_capture_failure_can_be_retried(harness):
    harness.source.fail_snapshot = True
    harness.pass_all_poses()
    harness.wait(3)

    assert harness.state.phase is Phase.COUNTDOWN
    assert harness.state.capture_failed
    assert harness.errors == ["Failed to capture photo"]
    assert harness.session.active
    assert harness.captured == []
    assert harness.session.instruction == "Capture failed - press R to retry"

    harness.source.fail_snapshot = False
    harness.session.retry_capture()
    assert harness.state.phase is Phase.CAPTURED
    assert len(harness.captured) == 1
    assert harness.source.snapshot_calls == 2


def test_snapshot_exception_counts_as_failure(harness, monkeypatch):
    def explode():
        raise OSError("device gone")

    monkeypatch.setattr(harness.source, "snapshot", explode)
    harness.pass_all_poses()
    harness.wait(3)
    assert harness.state.capture_failed
    assert harness.session.active


def test_retry_without_failure_does_nothing(harness):
    harness.pass_all_poses()
    harness.session.retry_capture()
    assert harness.source.snapshot_calls == 0
    assert harness.state.countdown_remaining == 3


def test_camera_unavailable_keeps_loading(clock, source, detector):
    source.fail_open = True
    h = Harness(clock, source, detector)
    assert not h.session.open()
    assert h.session.loading
    assert not h.session.active
    assert h.session.error == "Unable to open webcam"
    assert h.session.instruction == "Gesture capture unavailable: Unable to open webcam"
    assert h.scheduler.pending == 0

    source.fail_open = False
    assert h.session.open()
    assert h.session.error is None
    assert not h.session.loading
    h.feed(ONE)
    assert h.state.confirmed


def test_detector_init_failure_releases_camera(clock, source, detector):
    def broken_factory():
        raise RuntimeError("model download failed")

    h = Harness(clock, source, detector, detector_factory=broken_factory)
    assert not h.session.open()
    assert h.session.error == "model download failed"
    assert source.release_calls == 1
    assert h.session.instruction.startswith("Gesture capture unavailable")


def test_detector_error_stops_session(harness):
    harness.feed(ONE)
    harness.detector.error = RuntimeError("graph crashed")
    harness.feed(ONE)

    assert not harness.session.active
    assert harness.errors == ["Hand detection failed: graph crashed"]
    assert harness.detector.close_calls == 1
    assert harness.source.release_calls == 1
    assert harness.scheduler.pending == 0

    harness.wait(2)
    assert harness.state.stage == 1

    harness.session.close()
    assert harness.state.phase is Phase.CANCELLED
    assert harness.closed == [True]
    assert harness.source.release_calls == 1
    assert harness.detector.close_calls == 1
    assert harness.session.error == "Hand detection failed: graph crashed"

    harness.session.close()
    assert harness.closed == [True]
    assert harness.source.release_calls == 1


def test_manual_capture_skips_remaining_poses(harness):
    harness.feed(ONE)
    harness.session.capture_manually()
    assert harness.state.phase is Phase.COUNTDOWN
    assert harness.state.stage == 1

    harness.wait(3)
    assert harness.state.phase is Phase.CAPTURED
    assert len(harness.captured) == 1


def test_single_pose_sequence(clock, source, detector):
    instructions = (PoseInstruction(1, GestureLabel.TWO_FINGERS, "Peace", "Show a peace sign"),)
    h = Harness(clock, source, detector, instructions=instructions)
    h.session.open()
    assert h.session.instruction == "Please show your hand to the camera"
    h.feed(TWO)
    assert h.session.instruction == "Great! Peace detected!"
    h.wait(1)
    assert h.state.phase is Phase.COUNTDOWN
    h.wait(3)
    assert len(h.captured) == 1


def test_failing_capture_callback_still_tears_down(clock, source, detector):
    h = Harness(clock, source, detector)

    def on_capture(image):
        raise ValueError("disk full")

    h.session.on_capture = on_capture
    h.session.open()
    h.pass_all_poses()
    h.wait(3)
    assert h.state.phase is Phase.CAPTURED
    assert not h.session.active
    assert detector.close_calls == 1


def test_instruction_tracks_progress(harness):
    harness.feed(ONE)
    assert harness.session.instruction == "Great! One Finger detected!"
    harness.wait(1)
    harness.feed(FIST)
    assert harness.session.instruction == "Show two fingers (peace sign)"
    harness.feed(TWO)
    harness.wait(1)
    harness.feed(THREE)
    harness.wait(1)
    assert harness.session.instruction == "Get ready! 3"
