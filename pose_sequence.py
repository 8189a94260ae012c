"""Three-stage "Simon says" pose sequence as a pure reducer.

The capture session feeds events into :func:`reduce` and carries out the
returned effects (timers, capture, teardown). The reducer never touches a
clock, a camera or a callback, so the whole sequence can be replayed in tests.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Tuple, Union

from gesture_classifier import GestureLabel


COUNTDOWN_SECONDS = 3


class Phase(enum.Enum):
    DETECTING = "Detecting"
    COUNTDOWN = "Countdown"
    CAPTURED = "Captured"
    CANCELLED = "Cancelled"


TERMINAL_PHASES = frozenset({Phase.CAPTURED, Phase.CANCELLED})


@dataclass(frozen=True)
class PoseInstruction:
    ordinal: int
    gesture: GestureLabel
    name: str
    description: str
    emoji: str = ""


POSE_INSTRUCTIONS: Tuple[PoseInstruction, ...] = (
    PoseInstruction(1, GestureLabel.ONE_FINGER, "One Finger", "Show one finger (index)", "☝️"),
    PoseInstruction(2, GestureLabel.TWO_FINGERS, "Two Fingers", "Show two fingers (peace sign)", "✌️"),
    PoseInstruction(3, GestureLabel.THREE_FINGERS, "Three Fingers", "Show three fingers", "\U0001f91f"),
)


def validate_instructions(instructions: Sequence[PoseInstruction]) -> Tuple[PoseInstruction, ...]:
    """Check that stages are numbered 1..N in order."""
    instructions = tuple(instructions)
    if not instructions:
        raise ValueError("A pose sequence needs at least one stage")
    for position, instruction in enumerate(instructions, start=1):
        if instruction.ordinal != position:
            raise ValueError(
                f"Stage {position} has ordinal {instruction.ordinal}; stages must be numbered 1..N"
            )
        if instruction.gesture is GestureLabel.UNDETECTED:
            raise ValueError(f"Stage {position} cannot expect an undetected gesture")
    return instructions


@dataclass(frozen=True)
class SequenceState:
    phase: Phase = Phase.DETECTING
    stage: int = 1
    confirmed: bool = False
    hand_present: bool = False
    countdown_remaining: int = 0
    gesture: Optional[GestureLabel] = None
    capture_failed: bool = False

    @property
    def terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES


# Events


@dataclass(frozen=True)
class FrameClassified:
    gesture: Optional[GestureLabel]


@dataclass(frozen=True)
class HoldElapsed:
    stage: int


@dataclass(frozen=True)
class CountdownTick:
    pass


@dataclass(frozen=True)
class CaptureSucceeded:
    pass


@dataclass(frozen=True)
class CaptureFailed:
    pass


@dataclass(frozen=True)
class RetryCapture:
    pass


@dataclass(frozen=True)
class SkipToCountdown:
    pass


@dataclass(frozen=True)
class Cancel:
    pass


Event = Union[
    FrameClassified,
    HoldElapsed,
    CountdownTick,
    CaptureSucceeded,
    CaptureFailed,
    RetryCapture,
    SkipToCountdown,
    Cancel,
]


class Effect(enum.Enum):
    POSE_CONFIRMED = "pose_confirmed"
    CANCEL_HOLD = "cancel_hold"
    STAGE_ADVANCED = "stage_advanced"
    START_COUNTDOWN = "start_countdown"
    REQUEST_CAPTURE = "request_capture"
    DELIVER_CAPTURE = "deliver_capture"
    TEARDOWN = "teardown"


Transition = Tuple[SequenceState, List[Effect]]


def expected_gesture(state: SequenceState, instructions: Sequence[PoseInstruction]) -> GestureLabel:
    return instructions[state.stage - 1].gesture


def _start_countdown(state: SequenceState, countdown_seconds: int) -> SequenceState:
    return replace(
        state,
        phase=Phase.COUNTDOWN,
        confirmed=False,
        countdown_remaining=countdown_seconds,
        capture_failed=False,
    )


def reduce(
    state: SequenceState,
    event: Event,
    instructions: Sequence[PoseInstruction] = POSE_INSTRUCTIONS,
    *,
    strict_hold: bool = False,
    countdown_seconds: int = COUNTDOWN_SECONDS,
) -> Transition:
    """Apply one event and return the next state plus the effects to run.

    With ``strict_hold`` the confirmation is revoked as soon as a frame stops
    showing the expected gesture (hand lost included); otherwise a confirmed
    stage advances when the hold delay elapses no matter what happens in
    between.
    """
    if state.terminal:
        return state, []

    if isinstance(event, Cancel):
        effects = [Effect.CANCEL_HOLD, Effect.TEARDOWN]
        return replace(state, phase=Phase.CANCELLED, confirmed=False), effects

    if isinstance(event, FrameClassified):
        return _on_frame(state, event, instructions, strict_hold)

    if isinstance(event, HoldElapsed):
        if state.phase is not Phase.DETECTING or not state.confirmed or event.stage != state.stage:
            return state, []
        if state.stage < len(instructions):
            return replace(state, stage=state.stage + 1, confirmed=False), [Effect.STAGE_ADVANCED]
        return _start_countdown(state, countdown_seconds), [Effect.START_COUNTDOWN]

    if isinstance(event, SkipToCountdown):
        if state.phase is not Phase.DETECTING:
            return state, []
        effects = [Effect.CANCEL_HOLD, Effect.START_COUNTDOWN]
        return _start_countdown(state, countdown_seconds), effects

    if isinstance(event, CountdownTick):
        if state.phase is not Phase.COUNTDOWN or state.countdown_remaining <= 0:
            return state, []
        remaining = state.countdown_remaining - 1
        effects = [Effect.REQUEST_CAPTURE] if remaining == 0 else []
        return replace(state, countdown_remaining=remaining), effects

    if not isinstance(event, (CaptureSucceeded, CaptureFailed, RetryCapture)):
        raise TypeError(f"Unknown event: {event!r}")

    # Capture outcomes only count once the countdown has reached zero
    if state.phase is not Phase.COUNTDOWN or state.countdown_remaining != 0:
        return state, []

    if isinstance(event, CaptureSucceeded):
        effects = [Effect.DELIVER_CAPTURE, Effect.TEARDOWN]
        return replace(state, phase=Phase.CAPTURED, capture_failed=False), effects

    if isinstance(event, CaptureFailed):
        return replace(state, capture_failed=True), []

    if not state.capture_failed:
        return state, []
    return replace(state, capture_failed=False), [Effect.REQUEST_CAPTURE]


def _on_frame(
    state: SequenceState,
    event: FrameClassified,
    instructions: Sequence[PoseInstruction],
    strict_hold: bool,
) -> Transition:
    if state.phase is not Phase.DETECTING:
        return state, []

    # Hand lost: keep the stage, skip evaluation
    if event.gesture is None:
        if strict_hold and state.confirmed:
            return replace(state, hand_present=False, gesture=None, confirmed=False), [Effect.CANCEL_HOLD]
        return replace(state, hand_present=False, gesture=None), []

    state = replace(state, hand_present=True, gesture=event.gesture)
    matches = event.gesture is expected_gesture(state, instructions)

    if state.confirmed:
        if strict_hold and not matches:
            return replace(state, confirmed=False), [Effect.CANCEL_HOLD]
        return state, []

    if matches:
        return replace(state, confirmed=True), [Effect.POSE_CONFIRMED]
    return state, []


def instruction_text(
    state: Optional[SequenceState],
    instructions: Sequence[PoseInstruction] = POSE_INSTRUCTIONS,
    *,
    loading: bool = False,
) -> str:
    """User-facing prompt for the current state."""
    if loading or state is None:
        return "Loading hand detection model..."
    if state.phase is Phase.CANCELLED:
        return "Capture cancelled"
    if state.phase is Phase.CAPTURED:
        return "Photo captured!"
    if state.phase is Phase.COUNTDOWN:
        if state.capture_failed:
            return "Capture failed - press R to retry"
        if state.countdown_remaining > 0:
            return f"Get ready! {state.countdown_remaining}"
        return "Capturing..."
    instruction = instructions[state.stage - 1]
    if not state.hand_present:
        return "Please show your hand to the camera"
    if state.confirmed:
        return f"Great! {instruction.name} detected!"
    return instruction.description
