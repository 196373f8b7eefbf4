"""
Landmark data types and sequence normalization.

A Frame is one tick's worth of hand landmarks (x, y, z) plus an optional
display artifact. A Sample is an ordered list of Frames. Normalization makes
a whole Sample invariant to where the hand is and how large it appears, using
the wrist and the middle-finger MCP of the first frame as reference points.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)

# ============================================================================
# MediaPipe Hand Landmark Indices
# ============================================================================

WRIST = 0
MIDDLE_MCP = 9
HAND_LANDMARK_COUNT = 21

# Normalization reference points
ANCHOR_INDEX = WRIST
REFERENCE_INDEX = MIDDLE_MCP

SCALE_EPSILON = 1e-6

Landmark = Tuple[float, float, float]


class NormalizationError(ValueError):
    """Raised when a sample cannot be expressed in the normalized frame."""


@dataclass
class Frame:
    """
    One detector tick for a single tracked hand.

    Attributes:
        landmarks: Ordered (x, y, z) points, one per hand joint
        image: Opaque display artifact (thumbnail, data URL, ...), never
            used for learning or classification
    """
    landmarks: List[Landmark]
    image: Optional[Any] = field(default=None, compare=False, repr=False)

    def __len__(self) -> int:
        return len(self.landmarks)

    @classmethod
    def from_points(cls, points: Sequence[Sequence[float]], image: Any = None) -> 'Frame':
        """Build a frame from any sequence of 3-element points."""
        return cls(
            landmarks=[(float(p[0]), float(p[1]), float(p[2])) for p in points],
            image=image,
        )


Sample = List[Frame]


# ============================================================================
# Array Conversion
# ============================================================================

def sample_to_array(frames: Sequence[Frame]) -> np.ndarray:
    """
    Stack a sample into a (frames, landmarks, 3) float array.

    Raises:
        NormalizationError: If frames have differing landmark counts or a
            landmark is not a 3D point.
    """
    if len(frames) == 0:
        return np.zeros((0, 0, 3), dtype=np.float64)

    counts = {len(f.landmarks) for f in frames}
    if len(counts) != 1:
        raise NormalizationError(
            f"Frames have differing landmark counts: {sorted(counts)}"
        )

    try:
        arr = np.asarray([f.landmarks for f in frames], dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise NormalizationError(f"Malformed landmark coordinates: {e}") from e

    if arr.ndim != 3 or arr.shape[2] != 3:
        raise NormalizationError(
            f"Expected (frames, landmarks, 3) coordinates, got shape {arr.shape}"
        )
    return arr


def array_to_frames(arr: np.ndarray, like: Optional[Sequence[Frame]] = None) -> List[Frame]:
    """Convert a (frames, landmarks, 3) array back to frames, carrying images over from `like`."""
    frames = []
    for i, points in enumerate(arr):
        image = like[i].image if like is not None else None
        frames.append(Frame(
            landmarks=[(float(x), float(y), float(z)) for x, y, z in points],
            image=image,
        ))
    return frames


# ============================================================================
# Normalization
# ============================================================================

def normalize_array(arr: np.ndarray) -> np.ndarray:
    """
    Normalize a (frames, landmarks, 3) array against its first frame.

    The anchor (wrist) and reference (middle MCP) are taken from frame 0
    only, so the whole sequence shares one origin and one scale.

    Args:
        arr: Raw landmark coordinates

    Returns:
        New array with every point remapped to (p - anchor) / scale

    Raises:
        NormalizationError: If the first frame lacks the anchor or
            reference landmark.
    """
    if arr.shape[0] == 0:
        return arr.copy()

    if arr.shape[1] <= REFERENCE_INDEX:
        raise NormalizationError(
            f"First frame has {arr.shape[1]} landmarks; anchor index {ANCHOR_INDEX} "
            f"and reference index {REFERENCE_INDEX} are required"
        )

    anchor = arr[0, ANCHOR_INDEX]
    ref = arr[0, REFERENCE_INDEX]
    scale = float(np.linalg.norm(ref - anchor)) + SCALE_EPSILON

    return (arr - anchor) / scale


def normalize_frames(frames: Sequence[Frame]) -> List[Frame]:
    """Normalize a sample of frames; display artifacts are kept as-is."""
    if len(frames) == 0:
        return []
    return array_to_frames(normalize_array(sample_to_array(frames)), like=frames)
