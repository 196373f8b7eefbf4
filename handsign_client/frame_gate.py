"""
Quality gates for the client pipeline.

Nothing is sent to the gateway from a failed camera read, and no landmark
list leaves the client unless it has the expected cardinality and finite
coordinates. A rejected tick is reported upstream as "no detection".
"""

import math
import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from handsign.landmarks import HAND_LANDMARK_COUNT

logger = logging.getLogger(__name__)


@dataclass
class FrameValidationResult:
    """Result of frame validation."""
    valid: bool
    reason: str
    frame: Optional[np.ndarray] = None


class FrameGate:
    """
    Camera frame gate.

    Validates:
    - cap.read() success
    - Frame not empty/None
    - Frame has shape (H, W, 3)
    - Shape consistency across frames
    """

    def __init__(self, allow_shape_change: bool = False):
        self.allow_shape_change = allow_shape_change

        self._last_valid_shape: Optional[Tuple[int, int, int]] = None
        self._total_invalid_count: int = 0
        self._total_valid_count: int = 0
        self._consecutive_invalid: int = 0

    def validate(self, ok: bool, frame: Optional[np.ndarray]) -> FrameValidationResult:
        """
        Validate a frame from cap.read().

        Args:
            ok: The boolean return value from cap.read()
            frame: The frame array from cap.read()

        Returns:
            FrameValidationResult with valid flag, reason, and frame if valid.
        """
        if not ok:
            return self._invalid("read_failed")
        if frame is None:
            return self._invalid("frame_none")
        if frame.size == 0:
            return self._invalid("empty_frame")
        if frame.ndim != 3:
            return self._invalid("invalid_dims")
        if frame.shape[2] != 3:
            return self._invalid("invalid_channels")

        if not self.allow_shape_change and self._last_valid_shape is not None:
            if frame.shape != self._last_valid_shape:
                logger.warning(
                    f"Frame shape changed from {self._last_valid_shape} to {frame.shape}"
                )
                return self._invalid("shape_changed")

        self._total_valid_count += 1
        self._consecutive_invalid = 0
        self._last_valid_shape = frame.shape
        return FrameValidationResult(True, "ok", frame)

    def _invalid(self, reason: str) -> FrameValidationResult:
        self._total_invalid_count += 1
        self._consecutive_invalid += 1
        if self._consecutive_invalid == 1:
            logger.debug(f"Camera frame rejected: {reason}")
        return FrameValidationResult(False, reason)

    @property
    def consecutive_invalid(self) -> int:
        return self._consecutive_invalid

    def reset(self) -> None:
        """Reset tracking state."""
        self._last_valid_shape = None
        self._consecutive_invalid = 0

    def get_stats(self) -> dict:
        """Get validation statistics."""
        total = self._total_valid_count + self._total_invalid_count
        return {
            "total_frames": total,
            "valid_frames": self._total_valid_count,
            "invalid_frames": self._total_invalid_count,
            "valid_rate": self._total_valid_count / total if total > 0 else 0.0,
            "last_valid_shape": self._last_valid_shape,
        }


class LandmarkGate:
    """
    Gate for detector output.

    Rejects empty landmark lists, lists of the wrong cardinality and points
    that are not three finite coordinates.
    """

    def __init__(self, expected_count: int = HAND_LANDMARK_COUNT):
        if expected_count < 1:
            raise ValueError(f"expected_count must be positive, got {expected_count}")
        self.expected_count = expected_count
        self._accepted = 0
        self._rejected = 0
        self._reasons: dict = {}

    def validate(self, landmarks: Optional[Sequence[Sequence[float]]]) -> Tuple[bool, str]:
        """
        Validate one detection.

        Args:
            landmarks: Points from the detector, None when no hand was found

        Returns:
            Tuple of (is_valid, reason_string)
        """
        if landmarks is None:
            return False, "no_hand"
        if len(landmarks) == 0:
            return self._reject("empty_landmarks")
        if len(landmarks) != self.expected_count:
            return self._reject("wrong_cardinality")

        for point in landmarks:
            if len(point) != 3:
                return self._reject("landmark_not_3d")
            if not all(math.isfinite(c) for c in point):
                return self._reject("landmark_not_finite")

        self._accepted += 1
        return True, "ok"

    def _reject(self, reason: str) -> Tuple[bool, str]:
        self._rejected += 1
        self._reasons[reason] = self._reasons.get(reason, 0) + 1
        logger.debug(f"Landmarks rejected: {reason}")
        return False, reason

    def get_stats(self) -> dict:
        """Get validation statistics."""
        total = self._accepted + self._rejected
        return {
            "total": total,
            "accepted": self._accepted,
            "rejected": self._rejected,
            "reject_rate": self._rejected / total if total > 0 else 0.0,
            "reasons": dict(self._reasons),
        }

    def reset_stats(self) -> None:
        """Reset statistics counters."""
        self._accepted = 0
        self._rejected = 0
        self._reasons = {}
