"""Pose-quality guidance from a face box and the frame size."""

from __future__ import annotations

import logging
import math
import numbers
from typing import Any, Optional

from geoface.types import BoundingBox, PoseLabel

LOGGER = logging.getLogger("geoface.guidance.position")

MIN_FACE_FRAC = 0.3
MAX_FACE_FRAC = 0.8
CENTER_MARGIN = 0.2

_BOX_FIELDS = ("x", "y", "width", "height")


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return False
    return math.isfinite(float(value))


class PositionGuidance:
    """Classifies how well a face is framed for enrollment.

    Size is checked before centering: a face that is too small or too large
    is reported as such even if it is also off-center. Centering checks the
    horizontal axis first and reports the direction the user should move to
    bring the face back inside the margin band.
    """

    def __init__(
        self,
        min_frac: float = MIN_FACE_FRAC,
        max_frac: float = MAX_FACE_FRAC,
        center_margin: float = CENTER_MARGIN,
    ) -> None:
        self.min_frac = min_frac
        self.max_frac = max_frac
        self.center_margin = center_margin

    def classify(self, box: Optional[BoundingBox], frame_width: float, frame_height: float) -> PoseLabel:
        if box is None:
            return PoseLabel.NOT_DETECTED
        values = [getattr(box, name, None) for name in _BOX_FIELDS]
        if not all(_is_number(v) for v in values):
            return PoseLabel.INVALID
        if not (_is_number(frame_width) and _is_number(frame_height)) or frame_width <= 0 or frame_height <= 0:
            LOGGER.debug("Invalid frame size %sx%s", frame_width, frame_height)
            return PoseLabel.INVALID

        x, y, width, height = (float(v) for v in values)
        if width < self.min_frac * frame_width or height < self.min_frac * frame_height:
            return PoseLabel.MOVE_CLOSER
        if width > self.max_frac * frame_width or height > self.max_frac * frame_height:
            return PoseLabel.MOVE_FARTHER

        center_x = x + width / 2.0
        center_y = y + height / 2.0
        low, high = self.center_margin, 1.0 - self.center_margin
        if center_x < low * frame_width:
            return PoseLabel.MOVE_RIGHT
        if center_x > high * frame_width:
            return PoseLabel.MOVE_LEFT
        if center_y < low * frame_height:
            return PoseLabel.MOVE_DOWN
        if center_y > high * frame_height:
            return PoseLabel.MOVE_UP
        return PoseLabel.GOOD


_DEFAULT = PositionGuidance()


def classify(box: Optional[BoundingBox], frame_width: float, frame_height: float) -> PoseLabel:
    """Classify with the default thresholds."""
    return _DEFAULT.classify(box, frame_width, frame_height)
