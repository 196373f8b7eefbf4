"""
Message Schema and Validation for client-gateway communication.

Every message is a JSON object with a `type` field. Clients send detections
and user intents; the gateway answers with scores, capture progress,
curation state and training results.
"""

import json
import math
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Sequence, Tuple, Type

from .landmarks import Frame

logger = logging.getLogger(__name__)


class MessageError(ValueError):
    """Raised for malformed or unknown messages."""


_REGISTRY: Dict[str, Type['Message']] = {}


def register(cls: Type['Message']) -> Type['Message']:
    """Class decorator adding a message type to the parser registry."""
    _REGISTRY[cls.type] = cls
    return cls


@dataclass
class Message:
    """Base class; subclasses set `type` and override from_dict when they carry fields."""
    type: ClassVar[str] = ""

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["type"] = self.type
        return payload

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'Message':
        return cls()


def parse_message(data: str) -> Message:
    """
    Deserialize any registered message from a JSON string.

    Raises:
        MessageError: If the JSON is invalid, the type is unknown or a field
            is missing or has the wrong type
    """
    try:
        d = json.loads(data)
    except json.JSONDecodeError as e:
        raise MessageError(f"Invalid JSON: {e}") from e

    if not isinstance(d, dict):
        raise MessageError("Message must be a JSON object")

    msg_type = d.get("type")
    cls = _REGISTRY.get(msg_type)
    if cls is None:
        raise MessageError(f"Unknown message type: {msg_type!r}")

    try:
        return cls.from_dict(d)
    except (KeyError, TypeError, ValueError) as e:
        raise MessageError(f"Malformed {msg_type} message: {e!r}") from e


# ============================================================================
# Client -> Gateway
# ============================================================================

@register
@dataclass
class DetectionMessage(Message):
    """
    One detector tick.

    Attributes:
        landmarks: First hand's (x, y, z) points, None when no hand was found
        ts_ms: Timestamp in milliseconds (monotonic)
    """
    type: ClassVar[str] = "detection"
    landmarks: Optional[List[List[float]]]
    ts_ms: int

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'DetectionMessage':
        landmarks = d.get("landmarks")
        if landmarks is not None:
            landmarks = [[float(c) for c in point] for point in landmarks]
        return cls(landmarks=landmarks, ts_ms=int(d["ts_ms"]))

    def to_frame(self) -> Optional[Frame]:
        """Frame for the core, or None when nothing was detected."""
        if not self.landmarks:
            return None
        return Frame.from_points(self.landmarks)


@register
@dataclass
class CreateModelMessage(Message):
    type: ClassVar[str] = "create_model"
    name: str
    number_of_frames: int

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'CreateModelMessage':
        return cls(name=str(d["name"]), number_of_frames=int(d["number_of_frames"]))


@register
@dataclass
class SelectModelMessage(Message):
    type: ClassVar[str] = "select_model"
    name: str

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'SelectModelMessage':
        return cls(name=str(d["name"]))


@register
@dataclass
class StartCaptureMessage(Message):
    type: ClassVar[str] = "start_capture"


@register
@dataclass
class AbortCaptureMessage(Message):
    type: ClassVar[str] = "abort_capture"


@register
@dataclass
class SetPageMessage(Message):
    type: ClassVar[str] = "set_page"
    page: int

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'SetPageMessage':
        return cls(page=int(d["page"]))


@register
@dataclass
class ToggleFrameMessage(Message):
    type: ClassVar[str] = "toggle_frame"
    index: int

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'ToggleFrameMessage':
        return cls(index=int(d["index"]))


@register
@dataclass
class CommitFramesMessage(Message):
    type: ClassVar[str] = "commit_frames"
    label: str

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'CommitFramesMessage':
        return cls(label=str(d["label"]))


@register
@dataclass
class CancelCurationMessage(Message):
    type: ClassVar[str] = "cancel_curation"


# ============================================================================
# Gateway -> Client
# ============================================================================

@register
@dataclass
class ModelInfoMessage(Message):
    type: ClassVar[str] = "model"
    name: str
    number_of_frames: int
    labels: List[str] = field(default_factory=list)
    counts: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'ModelInfoMessage':
        return cls(
            name=str(d["name"]),
            number_of_frames=int(d["number_of_frames"]),
            labels=[str(label) for label in d.get("labels", [])],
            counts={str(k): int(v) for k, v in d.get("counts", {}).items()},
        )


@register
@dataclass
class ScoresMessage(Message):
    type: ClassVar[str] = "scores"
    scores: Dict[str, float]

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'ScoresMessage':
        return cls(scores={str(k): float(v) for k, v in d["scores"].items()})


@register
@dataclass
class CountdownMessage(Message):
    type: ClassVar[str] = "countdown"
    value: int

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'CountdownMessage':
        return cls(value=int(d["value"]))


@register
@dataclass
class CaptureStateMessage(Message):
    type: ClassVar[str] = "capture_state"
    state: str

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'CaptureStateMessage':
        return cls(state=str(d["state"]))


@register
@dataclass
class CapturedMessage(Message):
    type: ClassVar[str] = "captured"
    count: int

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'CapturedMessage':
        return cls(count=int(d["count"]))


@register
@dataclass
class CurationMessage(Message):
    type: ClassVar[str] = "curation"
    required: int
    selected: List[int]
    page: int
    page_count: int
    frame_count: int

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'CurationMessage':
        return cls(
            required=int(d["required"]),
            selected=[int(i) for i in d["selected"]],
            page=int(d["page"]),
            page_count=int(d["page_count"]),
            frame_count=int(d["frame_count"]),
        )


@register
@dataclass
class TrainedMessage(Message):
    type: ClassVar[str] = "trained"
    label: str
    accepted: bool
    reason: str

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'TrainedMessage':
        return cls(label=str(d["label"]), accepted=bool(d["accepted"]), reason=str(d["reason"]))


@register
@dataclass
class ErrorMessage(Message):
    type: ClassVar[str] = "error"
    reason: str
    detail: str = ""

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'ErrorMessage':
        return cls(reason=str(d["reason"]), detail=str(d.get("detail", "")))


# ============================================================================
# Validation
# ============================================================================

class DetectionValidator:
    """
    Validates incoming detection messages before they reach the core.

    Ensures:
    - landmark lists are non-empty and every point has 3 coordinates
    - coordinates are finite (not NaN/Inf)
    - timestamps are monotonic (non-decreasing)
    """

    def __init__(self):
        self._last_ts: int = 0
        self._dropped_count: int = 0
        self._validated_count: int = 0

    def validate(self, msg: DetectionMessage) -> Tuple[bool, str]:
        """
        Validate a detection message.

        Args:
            msg: The message to validate

        Returns:
            Tuple of (is_valid, reason_string)
        """
        if msg.ts_ms < self._last_ts:
            self._dropped_count += 1
            logger.warning(f"Invalid detection: timestamp {msg.ts_ms} < previous {self._last_ts}")
            return False, "timestamp_regression"

        if msg.landmarks is not None:
            if len(msg.landmarks) == 0:
                self._dropped_count += 1
                logger.warning("Invalid detection: empty landmark list")
                return False, "empty_landmarks"

            for point in msg.landmarks:
                if len(point) != 3:
                    self._dropped_count += 1
                    logger.warning(f"Invalid detection: landmark {point} is not 3D")
                    return False, "landmark_not_3d"
                if not all(math.isfinite(c) for c in point):
                    self._dropped_count += 1
                    logger.warning(f"Invalid detection: landmark {point} is not finite")
                    return False, "landmark_not_finite"

        self._last_ts = msg.ts_ms
        self._validated_count += 1
        return True, "ok"

    def get_stats(self) -> dict:
        """Get validation statistics."""
        total = self._validated_count + self._dropped_count
        return {
            "total_messages": total,
            "validated": self._validated_count,
            "dropped": self._dropped_count,
            "drop_rate": self._dropped_count / total if total > 0 else 0.0,
        }

    def reset_stats(self) -> None:
        """Reset statistics counters."""
        self._dropped_count = 0
        self._validated_count = 0


def create_detection_message(landmarks: Optional[Sequence[Sequence[float]]]) -> DetectionMessage:
    """
    Create a detection message with the current monotonic timestamp.

    Args:
        landmarks: First hand's points, or None for no detection

    Returns:
        DetectionMessage instance
    """
    points = None
    if landmarks is not None:
        points = [[float(p[0]), float(p[1]), float(p[2])] for p in landmarks]
    return DetectionMessage(landmarks=points, ts_ms=int(time.monotonic() * 1000))
