"""Cooperative single-threaded scheduler driven by the display loop."""

from __future__ import annotations

import heapq
import itertools
import time
from typing import Callable, Dict, List, Optional, Tuple

Callback = Callable[[], None]


class FrameScheduler:
    """Next-frame and timer callbacks, pumped once per display refresh.

    The host calls :meth:`run_pending` from its render loop (or a test calls it
    after moving a fake clock). Frame callbacks requested while a step runs are
    deferred to the following step, so a loop that re-requests itself runs at
    most once per refresh.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._ids = itertools.count(1)
        self._frame_callbacks: Dict[int, Callback] = {}
        self._running_frames: Dict[int, Callback] = {}
        self._timers: List[Tuple[float, int]] = []
        self._timer_callbacks: Dict[int, Tuple[Callback, Optional[float]]] = {}

    def now(self) -> float:
        return self._clock()

    def request_frame(self, callback: Callback) -> int:
        handle = next(self._ids)
        self._frame_callbacks[handle] = callback
        return handle

    def call_later(self, delay: float, callback: Callback) -> int:
        return self._add_timer(delay, callback, None)

    def call_every(self, interval: float, callback: Callback) -> int:
        """Repeat ``callback`` every ``interval`` seconds until cancelled."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        return self._add_timer(interval, callback, interval)

    def _add_timer(self, delay: float, callback: Callback, interval: Optional[float]) -> int:
        handle = next(self._ids)
        heapq.heappush(self._timers, (self._clock() + max(delay, 0.0), handle))
        self._timer_callbacks[handle] = (callback, interval)
        return handle

    def cancel(self, handle: Optional[int]) -> None:
        if handle is None:
            return
        self._frame_callbacks.pop(handle, None)
        self._running_frames.pop(handle, None)
        self._timer_callbacks.pop(handle, None)

    @property
    def pending(self) -> int:
        return len(self._frame_callbacks) + len(self._timer_callbacks)

    def run_pending(self) -> int:
        """Fire due timers, then the frame callbacks queued before this step."""
        fired = 0
        now = self._clock()
        while self._timers and self._timers[0][0] <= now:
            due, handle = heapq.heappop(self._timers)
            entry = self._timer_callbacks.get(handle)
            if entry is None:
                continue
            callback, interval = entry
            if interval is None:
                del self._timer_callbacks[handle]
            else:
                heapq.heappush(self._timers, (due + interval, handle))
            callback()
            fired += 1

        self._running_frames = self._frame_callbacks
        self._frame_callbacks = {}
        while self._running_frames:
            handle = next(iter(self._running_frames))
            callback = self._running_frames.pop(handle)
            callback()
            fired += 1
        return fired
