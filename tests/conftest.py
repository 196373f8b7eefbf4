"""
Shared fixtures: synthetic hands and a manually advanced clock for timers.
"""

import heapq

import numpy as np
import pytest

from handsign.landmarks import HAND_LANDMARK_COUNT, Frame

TIME_SLACK = 1e-9


class FakeHandle:
    """Timer handle returned by FakeScheduler.call_at."""

    def __init__(self, when, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """
    Deterministic stand-in for the asyncio loop's timer API.

    Callbacks only run from advance_to()/advance(), in due-time order and
    FIFO among equal times.
    """

    def __init__(self, start: float = 0.0):
        self.now = start
        self._queue = []
        self._seq = 0

    def time(self) -> float:
        return self.now

    def call_at(self, when, callback, *args) -> FakeHandle:
        handle = FakeHandle(when, callback, args)
        heapq.heappush(self._queue, (when, self._seq, handle))
        self._seq += 1
        return handle

    def call_later(self, delay, callback, *args) -> FakeHandle:
        return self.call_at(self.now + delay, callback, *args)

    def advance_to(self, t: float) -> None:
        while self._queue and self._queue[0][0] <= t + TIME_SLACK:
            when, _, handle = heapq.heappop(self._queue)
            self.now = max(self.now, when)
            if not handle.cancelled:
                handle.callback(*handle.args)
        self.now = max(self.now, t)

    def advance(self, dt: float) -> None:
        self.advance_to(self.now + dt)

    @property
    def pending(self) -> int:
        """Number of live (not cancelled) timers."""
        return sum(1 for _, _, h in self._queue if not h.cancelled)


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def make_frame():
    """Factory for a random hand frame with a well separated wrist and MCP."""
    def _make(seed: int = 0, count: int = HAND_LANDMARK_COUNT) -> Frame:
        rng = np.random.default_rng(seed)
        points = rng.uniform(0.0, 1.0, size=(count, 3))
        if count > 9:
            points[0] = (0.5, 0.9, 0.0)
            points[9] = (0.5, 0.5, 0.0)
        return Frame.from_points(points.tolist())
    return _make


@pytest.fixture
def make_sample(make_frame):
    """Factory for an N-frame sample; frames differ by seed."""
    def _make(n: int, seed: int = 0, count: int = HAND_LANDMARK_COUNT):
        return [make_frame(seed * 1000 + i, count) for i in range(n)]
    return _make
