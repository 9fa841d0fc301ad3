"""Admission control for enrollment captures."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Set

import numpy as np

from geoface.capture.buffer import EnrollmentBuffer
from geoface.geo.annotator import GeoAnnotator
from geoface.types import CapturedSample, PoseLabel

LOGGER = logging.getLogger("geoface.capture.gate")

REASON_POSE = "PoseRejected"
REASON_TRAINING = "TrainingInProgress"
REASON_NO_FRAME = "NoFrame"


@dataclass
class CaptureResult:
    admitted: bool
    sample: Optional[CapturedSample] = None
    reason: Optional[str] = None
    pose: Optional[PoseLabel] = None
    buffered: int = 0


class CaptureGate:
    """Admits a capture only for a well-framed face outside of training.

    The frame is copied into the buffer right away. The location is looked up
    afterwards and attached to the sample when it arrives; a failed lookup
    leaves ``location`` as ``None`` and never undoes the capture.
    """

    def __init__(
        self,
        buffer: EnrollmentBuffer,
        geo: Optional[GeoAnnotator] = None,
        training_in_progress: Callable[[], bool] = lambda: False,
    ) -> None:
        self.buffer = buffer
        self.geo = geo
        self.training_in_progress = training_in_progress
        self._generation = 0
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending_locations(self) -> int:
        return len(self._pending)

    def try_capture(self, current_label: PoseLabel, frame: Optional[np.ndarray]) -> CaptureResult:
        if current_label != PoseLabel.GOOD:
            LOGGER.debug("Capture rejected: pose=%s", current_label.value)
            return CaptureResult(False, reason=REASON_POSE, pose=current_label, buffered=len(self.buffer))
        if self.training_in_progress():
            return CaptureResult(False, reason=REASON_TRAINING, pose=current_label, buffered=len(self.buffer))
        if frame is None:
            return CaptureResult(False, reason=REASON_NO_FRAME, pose=current_label, buffered=len(self.buffer))

        sample = CapturedSample(image=np.array(frame, copy=True))
        count = self.buffer.add(sample)
        LOGGER.info("Captured sample %d/%d", count, self.buffer.min_samples)
        if self.geo is not None:
            self._schedule_location(sample)
        return CaptureResult(True, sample=sample, pose=current_label, buffered=count)

    def _schedule_location(self, sample: CapturedSample) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            LOGGER.warning("No running event loop; capture kept without location")
            return
        task = loop.create_task(self._attach_location(sample, self._generation))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _attach_location(self, sample: CapturedSample, generation: int) -> None:
        location = await self.geo.fetch_or_none(join=True)
        if generation != self._generation:
            LOGGER.debug("Dropping location for a capture from a previous session")
            return
        if location is None:
            LOGGER.warning("Capture kept without location")
            return
        sample.location = location

    async def settle(self) -> None:
        """Wait for every pending location lookup to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def reset(self) -> None:
        """Forget buffered captures; late location results are ignored."""
        self._generation += 1
        self.buffer.clear()
