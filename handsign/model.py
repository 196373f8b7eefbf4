"""
Incremental template model for gesture sequences.

Each label keeps one running-average template of normalized samples.
Classification scores every label by inverse Euclidean distance to its
template.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .landmarks import Frame, NormalizationError, normalize_array, sample_to_array
from .snapshot import SNAPSHOT_VERSION, ModelSnapshot

logger = logging.getLogger(__name__)

DISTANCE_EPSILON = 1e-6


class ValidationError(ValueError):
    """Raised when a sample does not fit the model's shape."""

    def __init__(self, reason: str, message: Optional[str] = None):
        super().__init__(message or reason)
        self.reason = reason


def confidence_scores(distances: Dict[str, float]) -> Dict[str, float]:
    """
    Convert per-label distances into a confidence distribution.

    Uses inverse-distance weighting, so scores are non-negative, sum to 1
    and a smaller distance always gives a higher score.

    Args:
        distances: label -> Euclidean distance to the label's template

    Returns:
        label -> score, empty when there are no labels
    """
    if not distances:
        return {}
    inverse = {label: 1.0 / (d + DISTANCE_EPSILON) for label, d in distances.items()}
    total = sum(inverse.values())
    return {label: inv / total for label, inv in inverse.items()}


def best_label(scores: Dict[str, float]) -> Optional[str]:
    """Label with the highest score (first in order on ties), or None."""
    best = None
    for label, score in scores.items():
        if best is None or score > scores[best]:
            best = label
    return best


class TemplateModel:
    """
    Nearest-template gesture classifier with online training.

    Attributes:
        name: Model name, also its key in the model store
        number_of_frames: Fixed sample length N
        labels: Trained labels in first-seen order
        averages: label -> (N, landmarks, 3) normalized running mean
        counts: label -> number of samples averaged into the template
        landmark_count: Per-frame landmark cardinality, fixed by the first
            accepted sample when not given up front
    """

    def __init__(self, name: str, number_of_frames: int, landmark_count: Optional[int] = None):
        if number_of_frames < 1:
            raise ValueError(f"number_of_frames must be positive, got {number_of_frames}")
        if landmark_count is not None and landmark_count < 1:
            raise ValueError(f"landmark_count must be positive, got {landmark_count}")

        self.name = name
        self.number_of_frames = number_of_frames
        self.landmark_count = landmark_count
        self.labels: List[str] = []
        self.averages: Dict[str, np.ndarray] = {}
        self.counts: Dict[str, int] = {}

    def __repr__(self) -> str:
        return (
            f"TemplateModel(name={self.name!r}, number_of_frames={self.number_of_frames}, "
            f"labels={self.labels!r})"
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, frames: Sequence[Frame]) -> Tuple[bool, str]:
        """
        Check that a sample fits this model.

        Args:
            frames: Candidate sample

        Returns:
            Tuple of (is_valid, reason_string)
        """
        if len(frames) != self.number_of_frames:
            return False, "wrong_length"

        if any(len(f.landmarks) == 0 for f in frames):
            return False, "empty_frame"

        counts = {len(f.landmarks) for f in frames}
        if len(counts) != 1:
            return False, "ragged_frames"

        if self.landmark_count is not None and counts.pop() != self.landmark_count:
            return False, "landmark_count_mismatch"

        return True, "ok"

    def _prepare(self, frames: Sequence[Frame]) -> np.ndarray:
        """Validate and normalize, raising ValidationError/NormalizationError."""
        valid, reason = self.validate(frames)
        if not valid:
            raise ValidationError(
                reason,
                f"Sample rejected by model {self.name!r}: {reason} "
                f"(expected {self.number_of_frames} frames, "
                f"landmark_count={self.landmark_count}, got {len(frames)} frames)",
            )
        try:
            arr = sample_to_array(frames)
        except NormalizationError as e:
            raise ValidationError("malformed_landmarks", str(e)) from e
        return normalize_array(arr)

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def train(self, label: str, frames: Sequence[Frame]) -> Tuple[bool, str]:
        """
        Fold one sample into the template for `label`.

        Invalid samples leave the model untouched; the reason is logged and
        returned instead of raised.

        Args:
            label: Gesture label
            frames: Sample of exactly `number_of_frames` frames

        Returns:
            Tuple of (accepted, reason_string)
        """
        if not label:
            logger.warning(f"Skipping training on {self.name!r}: empty label")
            return False, "empty_label"

        try:
            normalized = self._prepare(frames)
        except ValidationError as e:
            logger.warning(f"Skipping training of {label!r}: {e}")
            return False, e.reason
        except NormalizationError as e:
            logger.warning(f"Skipping training of {label!r}: {e}")
            return False, "missing_anchor_landmarks"

        if self.landmark_count is None:
            self.landmark_count = normalized.shape[1]

        if label not in self.averages:
            self.labels.append(label)
            self.averages[label] = normalized.copy()
            self.counts[label] = 1
        else:
            count = self.counts[label] + 1
            avg = self.averages[label]
            self.averages[label] = (avg * (count - 1) + normalized) / count
            self.counts[label] = count

        logger.debug(f"Trained {label!r} on {self.name!r} (count={self.counts[label]})")
        return True, "ok"

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def distances(self, frames: Sequence[Frame]) -> Dict[str, float]:
        """Euclidean distance from the normalized sample to every template."""
        if not self.labels:
            return {}
        normalized = self._prepare(frames)
        return {
            label: float(np.sqrt(np.sum((normalized - self.averages[label]) ** 2)))
            for label in self.labels
        }

    def predict(self, frames: Sequence[Frame]) -> Dict[str, float]:
        """
        Score a sample against every trained label.

        Returns:
            label -> confidence in [0, 1], summing to 1; empty when the model
            has no labels

        Raises:
            ValidationError: Wrong sample length or landmark cardinality
            NormalizationError: First frame lacks the anchor landmarks
        """
        return confidence_scores(self.distances(frames))

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def copy(self) -> 'TemplateModel':
        """Deep copy, used to hand a stable view to persistence."""
        clone = TemplateModel(self.name, self.number_of_frames, self.landmark_count)
        clone.labels = list(self.labels)
        clone.averages = {label: avg.copy() for label, avg in self.averages.items()}
        clone.counts = dict(self.counts)
        return clone

    def to_snapshot(self) -> ModelSnapshot:
        """Plain, JSON-ready view of the model."""
        return ModelSnapshot(
            version=SNAPSHOT_VERSION,
            name=self.name,
            number_of_frames=self.number_of_frames,
            labels=list(self.labels),
            averages={label: self.averages[label].tolist() for label in self.labels},
            counts={label: self.counts[label] for label in self.labels},
            landmark_count=self.landmark_count,
        )

    @classmethod
    def from_snapshot(cls, snapshot: ModelSnapshot) -> 'TemplateModel':
        """Rebuild a model from a validated snapshot."""
        model = cls(snapshot.name, snapshot.number_of_frames, snapshot.landmark_count)
        for label in snapshot.labels:
            model.labels.append(label)
            model.averages[label] = np.asarray(snapshot.averages[label], dtype=np.float64)
            model.counts[label] = int(snapshot.counts[label])
        return model
