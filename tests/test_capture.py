"""Tests for the countdown-then-capture state machine."""

import pytest

from handsign.capture import CaptureConfig, CaptureSession, CaptureState, CaptureStateError


class Recorder:
    """Collects callbacks with the scheduler time they fired at."""

    def __init__(self, scheduler):
        self.scheduler = scheduler
        self.countdowns = []
        self.states = []
        self.done = []

    def on_countdown(self, value):
        self.countdowns.append((self.scheduler.time(), value))

    def on_state_change(self, state):
        self.states.append((self.scheduler.time(), state))

    def on_done(self, frames):
        self.done.append((self.scheduler.time(), frames))


@pytest.fixture
def recorder(scheduler):
    return Recorder(scheduler)


def _session(scheduler, recorder, source, config=None):
    return CaptureSession(
        frame_source=source,
        config=config,
        scheduler=scheduler,
        on_countdown=recorder.on_countdown,
        on_state_change=recorder.on_state_change,
        on_done=recorder.on_done,
    )


class TestTimeline:

    def test_full_capture(self, scheduler, recorder, make_frame):
        frame = make_frame(0)
        session = _session(scheduler, recorder, lambda: frame)

        session.start()
        assert session.state is CaptureState.COUNTDOWN
        assert session.countdown == 3

        scheduler.advance_to(2.5)
        assert recorder.countdowns == [(0.0, 3), (1.0, 2), (2.0, 1)]
        assert session.state is CaptureState.COUNTDOWN

        scheduler.advance_to(3.0)
        assert session.state is CaptureState.CAPTURING
        assert session.countdown is None

        scheduler.advance_to(7.95)
        assert session.state is CaptureState.CAPTURING

        scheduler.advance_to(8.0)
        assert session.state is CaptureState.DONE
        assert [s for _, s in recorder.states] == [
            CaptureState.COUNTDOWN, CaptureState.CAPTURING, CaptureState.DONE,
        ]
        assert recorder.states[1][0] == pytest.approx(3.0)

        assert len(recorder.done) == 1
        done_at, frames = recorder.done[0]
        assert done_at == pytest.approx(8.0)
        assert len(frames) == 50
        assert session.skipped_ticks == 0
        assert scheduler.pending == 0

    def test_ticks_without_detection_are_skipped(self, scheduler, recorder, make_frame):
        frame = make_frame(0)
        ticks = []

        def source():
            ticks.append(scheduler.time())
            return frame if len(ticks) % 2 else None

        session = _session(scheduler, recorder, source)
        session.start()
        scheduler.advance_to(20.0)

        _, frames = recorder.done[0]
        assert len(frames) == 25
        assert session.skipped_ticks == 25

    def test_no_detection_at_all(self, scheduler, recorder):
        session = _session(scheduler, recorder, lambda: None)
        session.start()
        scheduler.advance_to(20.0)
        assert recorder.done[0][1] == []
        assert session.skipped_ticks == 50

    def test_custom_timings(self, scheduler, recorder, make_frame):
        frame = make_frame(0)
        config = CaptureConfig(countdown_from=2, countdown_interval=0.5,
                               sample_interval=0.25, capture_duration=1.0)
        session = _session(scheduler, recorder, lambda: frame, config)
        session.start()
        scheduler.advance_to(10.0)

        assert recorder.countdowns == [(0.0, 2), (0.5, 1)]
        assert recorder.done[0][0] == pytest.approx(2.0)
        assert len(recorder.done[0][1]) == config.max_frames == 4

    def test_zero_countdown_captures_immediately(self, scheduler, recorder, make_frame):
        frame = make_frame(0)
        config = CaptureConfig(countdown_from=0)
        session = _session(scheduler, recorder, lambda: frame, config)
        session.start()
        assert session.state is CaptureState.CAPTURING
        assert recorder.countdowns == []


class TestControl:

    def test_start_while_active_raises(self, scheduler, recorder, make_frame):
        frame = make_frame(0)
        session = _session(scheduler, recorder, lambda: frame)
        session.start()
        with pytest.raises(CaptureStateError):
            session.start()
        scheduler.advance_to(4.0)
        with pytest.raises(CaptureStateError):
            session.start()

    def test_abort_during_countdown(self, scheduler, recorder, make_frame):
        frame = make_frame(0)
        session = _session(scheduler, recorder, lambda: frame)
        session.start()
        scheduler.advance_to(1.5)

        assert session.abort()
        assert session.state is CaptureState.ABORTED
        scheduler.advance_to(20.0)

        assert recorder.countdowns == [(0.0, 3), (1.0, 2)]
        assert recorder.done == []
        assert recorder.states[-1][1] is CaptureState.ABORTED
        assert scheduler.pending == 0

    def test_abort_during_capture_discards_frames(self, scheduler, recorder, make_frame):
        frame = make_frame(0)
        session = _session(scheduler, recorder, lambda: frame)
        session.start()
        scheduler.advance_to(5.0)
        assert len(session.frames) > 0

        assert session.abort()
        assert session.frames == []
        scheduler.advance_to(20.0)
        assert recorder.done == []

    def test_abort_when_idle(self, scheduler, recorder):
        session = _session(scheduler, recorder, lambda: None)
        assert not session.abort()
        assert session.state is CaptureState.IDLE

    def test_restart_cancels_previous_timers(self, scheduler, recorder, make_frame):
        frame = make_frame(0)
        session = _session(scheduler, recorder, lambda: frame)
        session.start()
        scheduler.advance_to(4.0)

        session.restart()
        assert session.state is CaptureState.COUNTDOWN
        scheduler.advance_to(30.0)

        assert len(recorder.done) == 1
        done_at, frames = recorder.done[0]
        assert done_at == pytest.approx(12.0)
        assert len(frames) == 50

    def test_can_start_again_after_done(self, scheduler, recorder, make_frame):
        frame = make_frame(0)
        session = _session(scheduler, recorder, lambda: frame)
        session.start()
        scheduler.advance_to(10.0)
        session.start()
        scheduler.advance_to(20.0)
        assert len(recorder.done) == 2
        assert all(len(frames) == 50 for _, frames in recorder.done)
