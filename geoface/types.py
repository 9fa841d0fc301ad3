"""Common dataclasses and type aliases used across the geoface package."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

UNKNOWN_LABEL = "Unknown"
NOT_DETECTED_LABEL = "NotDetected"

Point = Tuple[float, float]


class PoseLabel(str, Enum):
    """Pose quality of the face currently in view."""

    NOT_DETECTED = "NotDetected"
    INVALID = "Invalid"
    MOVE_CLOSER = "MoveCloser"
    MOVE_FARTHER = "MoveFarther"
    MOVE_LEFT = "MoveLeft"
    MOVE_RIGHT = "MoveRight"
    MOVE_UP = "MoveUp"
    MOVE_DOWN = "MoveDown"
    GOOD = "Good"


@dataclass(frozen=True)
class BoundingBox:
    """Face box in frame pixels: top-left corner plus size."""

    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_xyxy(cls, bbox: Sequence[float]) -> "BoundingBox":
        x1, y1, x2, y2 = (float(v) for v in bbox)
        return cls(x=x1, y=y1, width=x2 - x1, height=y2 - y1)

    @property
    def center(self) -> Point:
        return self.x + self.width / 2.0, self.y + self.height / 2.0

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)


@dataclass
class FaceDetection:
    """Single face returned by a detector, with its identity descriptor."""

    box: BoundingBox
    descriptor: np.ndarray
    score: float = 1.0


@dataclass(frozen=True)
class LocationSnapshot:
    latitude: float
    longitude: float
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postcode: Optional[str] = None
    address: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "city": self.city,
            "state": self.state,
            "country": self.country,
            "postcode": self.postcode,
            "address": self.address,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "LocationSnapshot":
        return cls(
            latitude=float(payload["latitude"]),
            longitude=float(payload["longitude"]),
            city=payload.get("city"),
            state=payload.get("state"),
            country=payload.get("country"),
            postcode=payload.get("postcode"),
            address=payload.get("address"),
        )


@dataclass
class CapturedSample:
    """Frame snapshot admitted by the capture gate."""

    image: np.ndarray
    location: Optional[LocationSnapshot] = None
    created_at: float = field(default_factory=time.time)


@dataclass
class LabeledDescriptorSet:
    """All descriptors enrolled under one label, with their capture locations.

    ``descriptors`` and ``locations`` are parallel lists. The set only grows:
    training the same label again appends through :meth:`extend`.
    """

    label: str
    descriptors: List[np.ndarray] = field(default_factory=list)
    locations: List[Optional[LocationSnapshot]] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.label:
            raise ValueError("LabeledDescriptorSet requires a non-empty label")
        if len(self.descriptors) != len(self.locations):
            raise ValueError(
                f"Label {self.label!r}: {len(self.descriptors)} descriptors but "
                f"{len(self.locations)} locations"
            )
        self.descriptors = [as_descriptor(d) for d in self.descriptors]

    def __len__(self) -> int:
        return len(self.descriptors)

    def extend(self, other: "LabeledDescriptorSet") -> "LabeledDescriptorSet":
        """Return a new set with ``other``'s descriptors appended after ours."""
        if other.label != self.label:
            raise ValueError(f"Cannot merge {other.label!r} into {self.label!r}")
        return LabeledDescriptorSet(
            label=self.label,
            descriptors=list(self.descriptors) + list(other.descriptors),
            locations=list(self.locations) + list(other.locations),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LabeledDescriptorSet):
            return NotImplemented
        if self.label != other.label or len(self) != len(other):
            return False
        if self.locations != other.locations:
            return False
        return all(np.array_equal(a, b) for a, b in zip(self.descriptors, other.descriptors))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "descriptors": [d.astype(np.float32).tolist() for d in self.descriptors],
            "locations": [loc.to_dict() if loc is not None else None for loc in self.locations],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "LabeledDescriptorSet":
        descriptors = [as_descriptor(d) for d in payload["descriptors"]]
        raw_locations = payload.get("locations")
        if raw_locations is None:
            # records written before location tagging existed
            raw_locations = [None] * len(descriptors)
        locations = [LocationSnapshot.from_dict(loc) if loc is not None else None for loc in raw_locations]
        return cls(label=str(payload["label"]), descriptors=descriptors, locations=locations)


# label -> descriptor set, in insertion order
Store = Dict[str, LabeledDescriptorSet]


def as_descriptor(raw: Any) -> np.ndarray:
    """Convert a list or array into a 1D float32 descriptor vector."""
    arr = np.asarray(raw, dtype=np.float32).reshape(-1)
    if arr.size == 0:
        raise ValueError("Descriptor must not be empty")
    return arr


def l2_normalize(vec: np.ndarray, eps: float = 1e-6) -> np.ndarray:
    """L2-normalize the input vector."""
    norm = np.linalg.norm(vec)
    if norm < eps:
        return vec
    return vec / norm


def euclidean_distance(a: np.ndarray, b: np.ndarray) -> float:
    if a.shape != b.shape:
        raise ValueError("Descriptor shapes do not match")
    return float(np.linalg.norm(a - b))
