"""
Versioned serialization schema for template models.

Version 1 is the original, unversioned layout
{name, numberOfFrames, labels, averages, counts}. Version 2 adds the
`version` key and `landmarkCount`. Older snapshots are upgraded on load;
newer ones are refused.
"""

import json
import math
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 2
LEGACY_VERSION = 1


class SnapshotError(ValueError):
    """Raised for malformed or unsupported snapshots."""


def _is_finite_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


@dataclass
class ModelSnapshot:
    """
    Plain snapshot of a template model.

    Attributes:
        version: Schema version
        name: Model name
        number_of_frames: Sample length N
        labels: Labels in insertion order
        averages: label -> N x landmarks x 3 nested lists of floats
        counts: label -> training sample count
        landmark_count: Per-frame landmark cardinality, None for an
            untrained model
    """
    name: str
    number_of_frames: int
    labels: List[str] = field(default_factory=list)
    averages: Dict[str, List[List[List[float]]]] = field(default_factory=dict)
    counts: Dict[str, int] = field(default_factory=dict)
    landmark_count: Optional[int] = None
    version: int = SNAPSHOT_VERSION

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready dictionary using the wire field names."""
        return {
            "version": self.version,
            "name": self.name,
            "numberOfFrames": self.number_of_frames,
            "labels": list(self.labels),
            "averages": {label: self.averages[label] for label in self.labels},
            "counts": {label: self.counts[label] for label in self.labels},
            "landmarkCount": self.landmark_count,
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'ModelSnapshot':
        """
        Parse and validate a snapshot dictionary.

        Args:
            d: Decoded JSON object, any supported version

        Returns:
            Snapshot upgraded to the current version

        Raises:
            SnapshotError: If the snapshot is malformed or from a newer schema
        """
        if not isinstance(d, dict):
            raise SnapshotError(f"Snapshot must be an object, got {type(d).__name__}")

        version = d.get("version", LEGACY_VERSION)
        if not isinstance(version, int) or version < LEGACY_VERSION:
            raise SnapshotError(f"Invalid snapshot version: {version!r}")
        if version > SNAPSHOT_VERSION:
            raise SnapshotError(
                f"Snapshot version {version} is newer than supported version {SNAPSHOT_VERSION}"
            )

        try:
            name = str(d["name"])
            number_of_frames = int(d["numberOfFrames"])
            labels = [str(label) for label in d["labels"]]
            averages = dict(d["averages"])
            counts = {str(k): int(v) for k, v in dict(d["counts"]).items()}
        except (KeyError, TypeError, ValueError) as e:
            raise SnapshotError(f"Malformed snapshot: {e!r}") from e

        landmark_count = d.get("landmarkCount") if version >= 2 else None
        if landmark_count is not None:
            try:
                landmark_count = int(landmark_count)
            except (TypeError, ValueError) as e:
                raise SnapshotError(f"Invalid landmarkCount: {landmark_count!r}") from e
        if version == LEGACY_VERSION:
            logger.info(f"Upgrading snapshot {name!r} from version {version}")

        snapshot = cls(
            version=SNAPSHOT_VERSION,
            name=name,
            number_of_frames=number_of_frames,
            labels=labels,
            averages=averages,
            counts=counts,
            landmark_count=landmark_count,
        )
        try:
            snapshot._check()
        except TypeError as e:
            raise SnapshotError(f"Malformed template data: {e}") from e
        return snapshot

    @classmethod
    def from_json(cls, data: str) -> 'ModelSnapshot':
        """Deserialize from JSON string."""
        try:
            d = json.loads(data)
        except json.JSONDecodeError as e:
            raise SnapshotError(f"Snapshot is not valid JSON: {e}") from e
        return cls.from_dict(d)

    def _check(self) -> None:
        """Enforce the structural invariants; infers landmark_count when missing."""
        if self.number_of_frames < 1:
            raise SnapshotError(f"numberOfFrames must be positive, got {self.number_of_frames}")

        if len(set(self.labels)) != len(self.labels):
            raise SnapshotError("Duplicate labels in snapshot")

        label_set = set(self.labels)
        if set(self.averages) != label_set or set(self.counts) != label_set:
            raise SnapshotError("labels, averages and counts disagree on the label set")

        for label in self.labels:
            if self.counts[label] < 1:
                raise SnapshotError(f"Count for {label!r} must be positive")

            frames = self.averages[label]
            if not isinstance(frames, list) or len(frames) != self.number_of_frames:
                raise SnapshotError(
                    f"Template for {label!r} must have {self.number_of_frames} frames"
                )

            for frame in frames:
                if not isinstance(frame, list):
                    raise SnapshotError(f"Template for {label!r} has a frame that is not a list")
                if self.landmark_count is None:
                    self.landmark_count = len(frame)
                if len(frame) != self.landmark_count:
                    raise SnapshotError(
                        f"Template for {label!r} has a frame with {len(frame)} landmarks, "
                        f"expected {self.landmark_count}"
                    )
                for point in frame:
                    if not isinstance(point, list) or len(point) != 3:
                        raise SnapshotError(f"Template for {label!r} has a non-3D landmark")
                    if not all(_is_finite_number(c) for c in point):
                        raise SnapshotError(
                            f"Template for {label!r} has a non-numeric or non-finite coordinate"
                        )
