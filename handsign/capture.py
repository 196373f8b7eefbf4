"""
Timed capture of training frames.

A capture runs a countdown (3, 2, 1 at one-second steps), then samples the
current detector frame every 100 ms for five seconds and hands the collected
frames to `on_done`. Every timer is an explicit cancellable handle owned by
the session, and every phase transition cancels the handles of the phase
before it.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional

from .landmarks import Frame

logger = logging.getLogger(__name__)

# Slack for comparing scheduled times built from float sums
TIME_TOLERANCE = 1e-6


class CaptureState(Enum):
    """Lifecycle of a capture session."""
    IDLE = "idle"
    COUNTDOWN = "countdown"
    CAPTURING = "capturing"
    DONE = "done"
    ABORTED = "aborted"


class CaptureStateError(RuntimeError):
    """Raised when a capture is started while another one is active."""


@dataclass
class CaptureConfig:
    """Capture timing settings (seconds)."""
    countdown_from: int = 3
    countdown_interval: float = 1.0
    sample_interval: float = 0.1
    capture_duration: float = 5.0

    @property
    def max_frames(self) -> int:
        """Number of sampler ticks in one capture."""
        return int(self.capture_duration / self.sample_interval + TIME_TOLERANCE)


class CaptureSession:
    """
    Countdown-then-capture state machine.

    States: IDLE -> COUNTDOWN -> CAPTURING -> DONE, with ABORTED reachable
    from COUNTDOWN and CAPTURING. A finished or aborted session can be
    started again.

    The scheduler only needs `time()` and `call_at(when, callback, *args)`
    returning a handle with `cancel()`; the running asyncio loop is used
    when none is given.
    """

    def __init__(
        self,
        frame_source: Callable[[], Optional[Frame]],
        config: Optional[CaptureConfig] = None,
        scheduler: Optional[Any] = None,
        on_countdown: Optional[Callable[[int], None]] = None,
        on_state_change: Optional[Callable[[CaptureState], None]] = None,
        on_done: Optional[Callable[[List[Frame]], None]] = None,
    ):
        """
        Initialize a capture session.

        Args:
            frame_source: Returns the detector's current frame, or None when
                the detector has no valid landmarks this tick
            config: Timing settings
            scheduler: Event loop (or test clock) used for timers
            on_countdown: Called with 3, 2, 1 as the countdown advances
            on_state_change: Called on every state transition
            on_done: Called once with the captured frames when a capture
                completes (not on abort)
        """
        self.frame_source = frame_source
        self.config = config or CaptureConfig()
        self._scheduler = scheduler
        self.on_countdown = on_countdown
        self.on_state_change = on_state_change
        self.on_done = on_done

        self._state = CaptureState.IDLE
        self._generation = 0
        self._countdown: Optional[int] = None
        self._frames: List[Frame] = []
        self._skipped = 0

        # Timer handles
        self._countdown_handle = None
        self._sample_handle = None
        self._deadline_handle = None

        # Phase timing
        self._phase_start = 0.0
        self._tick_count = 0
        self._deadline: Optional[float] = None
        self._next_sample_at: Optional[float] = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def is_active(self) -> bool:
        """True while counting down or capturing."""
        return self._state in (CaptureState.COUNTDOWN, CaptureState.CAPTURING)

    @property
    def countdown(self) -> Optional[int]:
        """Current countdown value, None outside the countdown phase."""
        return self._countdown

    @property
    def frames(self) -> List[Frame]:
        """Frames collected so far in the current capture."""
        return list(self._frames)

    @property
    def skipped_ticks(self) -> int:
        """Sampler ticks that found no valid detection."""
        return self._skipped

    # ------------------------------------------------------------------
    # Public control
    # ------------------------------------------------------------------

    def start(self) -> None:
        """
        Begin a new capture with a countdown.

        Raises:
            CaptureStateError: If a capture is already counting down or
                capturing. Use restart() to replace it.
        """
        if self.is_active:
            raise CaptureStateError(f"Capture already active (state={self._state.value})")
        self._begin_countdown()

    def restart(self) -> None:
        """Cancel any active capture and start over."""
        if self.is_active:
            logger.info(f"Restarting capture from state {self._state.value}")
        self._begin_countdown()

    def abort(self) -> bool:
        """
        Cancel the active capture, discarding its frames.

        Returns:
            True if a capture was aborted, False if none was active
        """
        if not self.is_active:
            return False

        self._cancel_handles()
        self._generation += 1
        self._countdown = None
        self._frames = []
        logger.info("Capture aborted")
        self._set_state(CaptureState.ABORTED)
        return True

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _loop(self):
        if self._scheduler is None:
            self._scheduler = asyncio.get_running_loop()
        return self._scheduler

    def _begin_countdown(self) -> None:
        loop = self._loop()
        self._cancel_handles()
        self._generation += 1
        generation = self._generation

        self._frames = []
        self._skipped = 0
        self._countdown = self.config.countdown_from
        self._phase_start = loop.time()
        self._tick_count = 0

        self._set_state(CaptureState.COUNTDOWN)
        if self._countdown <= 0:
            self._begin_capture(generation)
            return

        self._notify_countdown(self._countdown)
        self._schedule_countdown_tick(generation)

    def _schedule_countdown_tick(self, generation: int) -> None:
        self._tick_count += 1
        when = self._phase_start + self._tick_count * self.config.countdown_interval
        self._countdown_handle = self._loop().call_at(when, self._on_countdown_tick, generation)

    def _on_countdown_tick(self, generation: int) -> None:
        if generation != self._generation or self._state is not CaptureState.COUNTDOWN:
            return
        self._countdown_handle = None

        self._countdown -= 1
        if self._countdown <= 0:
            self._begin_capture(generation)
            return

        self._notify_countdown(self._countdown)
        self._schedule_countdown_tick(generation)

    def _begin_capture(self, generation: int) -> None:
        loop = self._loop()
        self._cancel_handles()
        self._countdown = None

        self._phase_start = loop.time()
        self._tick_count = 0
        self._deadline = self._phase_start + self.config.capture_duration

        self._set_state(CaptureState.CAPTURING)
        logger.info(
            f"Capturing for {self.config.capture_duration:.1f}s "
            f"every {self.config.sample_interval * 1000:.0f}ms"
        )

        self._schedule_sample(generation)
        self._deadline_handle = loop.call_at(self._deadline, self._on_deadline, generation)

    def _schedule_sample(self, generation: int) -> None:
        self._tick_count += 1
        when = self._phase_start + self._tick_count * self.config.sample_interval
        if when > self._deadline + TIME_TOLERANCE:
            self._next_sample_at = None
            return
        self._next_sample_at = when
        self._sample_handle = self._loop().call_at(when, self._on_sample_tick, generation)

    def _on_sample_tick(self, generation: int) -> None:
        if generation != self._generation or self._state is not CaptureState.CAPTURING:
            return
        self._sample_handle = None
        self._next_sample_at = None

        self._take_sample()
        self._schedule_sample(generation)

    def _on_deadline(self, generation: int) -> None:
        if generation != self._generation or self._state is not CaptureState.CAPTURING:
            return
        self._deadline_handle = None

        # A tick due exactly at the deadline still counts
        if (
            self._sample_handle is not None
            and self._next_sample_at is not None
            and self._next_sample_at <= self._deadline + TIME_TOLERANCE
        ):
            self._take_sample()

        self._cancel_handles()
        self._generation += 1
        frames = self._frames
        self._frames = []

        logger.info(
            f"Capture done: {len(frames)} frames, {self._skipped} ticks without detection"
        )
        self._set_state(CaptureState.DONE)
        if self.on_done:
            self.on_done(frames)

    def _take_sample(self) -> None:
        frame = self.frame_source()
        if frame is None or not frame.landmarks:
            self._skipped += 1
            logger.debug("Sampler tick skipped: no valid detection")
            return
        self._frames.append(frame)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _cancel_handles(self) -> None:
        """Cancel every pending timer of this session."""
        for attr in ("_countdown_handle", "_sample_handle", "_deadline_handle"):
            handle = getattr(self, attr)
            if handle is not None:
                handle.cancel()
                setattr(self, attr, None)
        self._next_sample_at = None

    def _set_state(self, state: CaptureState) -> None:
        self._state = state
        logger.debug(f"Capture state -> {state.value}")
        if self.on_state_change:
            self.on_state_change(state)

    def _notify_countdown(self, value: int) -> None:
        logger.debug(f"Countdown {value}")
        if self.on_countdown:
            self.on_countdown(value)
