"""
Single-owner gesture session.

One GestureSession exclusively owns one mutable TemplateModel and every
flow that touches it: continuous prediction over the live stream, timed
capture, curation and training. Saves run as fire-and-forget tasks on a
snapshot taken at training time, so the in-memory model stays authoritative
whatever happens to the write.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from .buffer import SlidingPredictionBuffer
from .capture import CaptureConfig, CaptureSession, CaptureState
from .curator import CurationError, FrameCurator
from .landmarks import Frame, NormalizationError
from .model import TemplateModel, ValidationError
from .snapshot import ModelSnapshot
from .store import ModelStore, PersistenceError

logger = logging.getLogger(__name__)


class GestureSession:
    """
    Owner of one model plus its capture, curation and prediction state.

    Callbacks are plain functions called from the event loop:
    - on_scores(scores) after every prediction
    - on_countdown(value) during a capture countdown
    - on_capture_state(state) on capture transitions
    - on_captured(frames) when a capture finishes and awaits curation
    - on_trained(label, accepted, reason) after every training attempt
    - on_save_failed(name, error) when a background save fails
    """

    def __init__(
        self,
        model: TemplateModel,
        store: Optional[ModelStore] = None,
        capture_config: Optional[CaptureConfig] = None,
        scheduler: Optional[Any] = None,
        on_scores: Optional[Callable[[Dict[str, float]], None]] = None,
        on_countdown: Optional[Callable[[int], None]] = None,
        on_capture_state: Optional[Callable[[CaptureState], None]] = None,
        on_captured: Optional[Callable[[List[Frame]], None]] = None,
        on_trained: Optional[Callable[[str, bool, str], None]] = None,
        on_save_failed: Optional[Callable[[str, PersistenceError], None]] = None,
    ):
        self.model = model
        self.store = store
        self.on_scores = on_scores
        self.on_captured = on_captured
        self.on_trained = on_trained
        self.on_save_failed = on_save_failed

        self.buffer = SlidingPredictionBuffer(model.number_of_frames)
        self.capture = CaptureSession(
            frame_source=self.current_frame,
            config=capture_config,
            scheduler=scheduler,
            on_countdown=on_countdown,
            on_state_change=on_capture_state,
            on_done=self._on_capture_done,
        )
        self.curator: Optional[FrameCurator] = None

        self.last_scores: Dict[str, float] = {}
        self.last_save_error: Optional[PersistenceError] = None
        self._current: Optional[Frame] = None
        self._save_tasks: Set[asyncio.Task] = set()

        # Statistics
        self._detections = 0
        self._predictions = 0
        self._prediction_errors = 0
        self._saves_failed = 0

    # ------------------------------------------------------------------
    # Live stream
    # ------------------------------------------------------------------

    def current_frame(self) -> Optional[Frame]:
        """Most recent valid detection, None if the last tick had none."""
        return self._current

    def handle_detection(self, frame: Optional[Frame]) -> Optional[Dict[str, float]]:
        """
        Feed one detector tick.

        Updates the frame the capture sampler sees and, for valid frames,
        pushes into the prediction window and classifies it once full.

        Returns:
            Scores for this tick, or None when no prediction was made
        """
        self._detections += 1
        self._current = frame if frame is not None and frame.landmarks else None
        if self._current is None:
            return None

        window = self.buffer.push(self._current)
        if window is None:
            return None

        try:
            scores = self.model.predict(window)
        except (ValidationError, NormalizationError) as e:
            self._prediction_errors += 1
            logger.debug(f"Prediction skipped: {e}")
            return None

        self._predictions += 1
        self.last_scores = scores
        if self.on_scores:
            self.on_scores(scores)
        return scores

    # ------------------------------------------------------------------
    # Capture and curation
    # ------------------------------------------------------------------

    def start_capture(self) -> None:
        """
        Start a timed capture. A capture awaiting curation is discarded.

        Raises:
            CaptureStateError: If a capture is already running
        """
        self.capture.start()
        if self.curator is not None:
            logger.info("Discarding uncommitted capture")
            self.curator = None

    def abort_capture(self) -> bool:
        return self.capture.abort()

    def _on_capture_done(self, frames: List[Frame]) -> None:
        self.curator = FrameCurator(frames, self.model.number_of_frames)
        if self.on_captured:
            self.on_captured(frames)

    def _require_curator(self) -> FrameCurator:
        if self.curator is None:
            raise CurationError("No capture is awaiting curation")
        return self.curator

    def toggle_frame(self, index: int) -> bool:
        """Toggle a captured frame. Raises CurationError/IndexError."""
        return self._require_curator().toggle(index)

    def set_page(self, page: int) -> int:
        return self._require_curator().set_page(page)

    def cancel_curation(self) -> bool:
        had_curator = self.curator is not None
        self.curator = None
        return had_curator

    def commit(self, label: str) -> Tuple[bool, str]:
        """
        Train `label` on the curated frames.

        The curation stays open when training rejects the sample so the
        selection can be fixed.

        Returns:
            Tuple of (accepted, reason_string)
        """
        if self.curator is None:
            return False, "no_curation"
        if not self.curator.can_commit:
            return False, "wrong_selection"

        accepted, reason = self.train(label, self.curator.commit())
        if accepted:
            self.curator = None
        return accepted, reason

    # ------------------------------------------------------------------
    # Training and persistence
    # ------------------------------------------------------------------

    def train(self, label: str, frames: Sequence[Frame]) -> Tuple[bool, str]:
        """Train the owned model and schedule a save on success."""
        accepted, reason = self.model.train(label, frames)
        if accepted:
            logger.info(
                f"Trained {label!r} on model {self.model.name!r} "
                f"(samples={self.model.counts[label]})"
            )
            self._schedule_save(self.model.to_snapshot())
        if self.on_trained:
            self.on_trained(label, accepted, reason)
        return accepted, reason

    def _schedule_save(self, snapshot: ModelSnapshot) -> None:
        if self.store is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop; model {self.model.name!r} not saved")
            return
        task = loop.create_task(self._save(snapshot))
        self._save_tasks.add(task)
        task.add_done_callback(self._save_tasks.discard)

    async def _save(self, snapshot: ModelSnapshot) -> None:
        try:
            await self.store.save(snapshot.name, snapshot)
            self.last_save_error = None
        except PersistenceError as e:
            self._saves_failed += 1
            self.last_save_error = e
            logger.error(f"Failed to save model {snapshot.name!r}: {e}")
            if self.on_save_failed:
                self.on_save_failed(snapshot.name, e)

    async def flush(self) -> None:
        """Wait for all pending saves."""
        if self._save_tasks:
            await asyncio.gather(*list(self._save_tasks))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def replace_model(self, model: TemplateModel) -> None:
        """Hand the session a different model, resetting all per-model state."""
        self.close()
        self.model = model
        self.buffer = SlidingPredictionBuffer(model.number_of_frames)
        self.last_scores = {}
        logger.info(f"Session now owns model {model.name!r} (N={model.number_of_frames})")

    def close(self) -> None:
        """Cancel any running capture and drop pending curation."""
        self.capture.abort()
        self.curator = None
        self._current = None

    def get_stats(self) -> dict:
        """Get session statistics."""
        return {
            "model": self.model.name,
            "labels": list(self.model.labels),
            "detections": self._detections,
            "predictions": self._predictions,
            "prediction_errors": self._prediction_errors,
            "saves_failed": self._saves_failed,
            "pending_saves": len(self._save_tasks),
            "capture_state": self.capture.state.value,
        }
