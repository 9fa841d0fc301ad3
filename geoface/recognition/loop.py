"""Periodic, non-reentrant recognition over the live frame."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

import numpy as np

from geoface.detectors.base import BaseFaceDetector
from geoface.errors import ModelNotReady, NoFaceDetected
from geoface.geo.annotator import GeoAnnotator
from geoface.recognition.matcher import MatcherIndex, MatchResult
from geoface.types import NOT_DETECTED_LABEL, UNKNOWN_LABEL, BoundingBox, LocationSnapshot

LOGGER = logging.getLogger("geoface.recognition.loop")

FrameSource = Callable[[], Optional[np.ndarray]]


class SingleSlotScheduler:
    """Runs at most one task; submissions while it is busy are dropped."""

    def __init__(self) -> None:
        self._task: Optional[asyncio.Task] = None
        self.admitted = 0
        self.dropped = 0

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    def try_submit(self, factory: Callable[[], Awaitable[None]]) -> Optional[asyncio.Task]:
        if self.busy:
            self.dropped += 1
            return None
        self._task = asyncio.ensure_future(factory())
        self.admitted += 1
        return self._task

    async def drain(self) -> None:
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)


@dataclass(frozen=True)
class FaceMatch:
    box: BoundingBox
    match: MatchResult


@dataclass
class RecognitionResult:
    label: str
    distance: Optional[float] = None
    location: Optional[LocationSnapshot] = None
    faces: List[FaceMatch] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)

    @property
    def recognized(self) -> bool:
        return self.label not in (UNKNOWN_LABEL, NOT_DETECTED_LABEL)

    def as_dict(self) -> dict:
        return {
            "label": self.label,
            "distance": self.distance,
            "location": self.location.to_dict() if self.location is not None else None,
        }


class RecognitionLoop:
    """Detects and matches every face in the current frame on each tick.

    A tick that arrives while the previous pass (detection, matching and the
    optional location lookup) is still running is dropped, so passes never
    pile up. :meth:`invalidate` makes any pass already in progress discard its
    result instead of publishing it.
    """

    def __init__(
        self,
        detector: BaseFaceDetector,
        index_provider: Callable[[], MatcherIndex],
        frame_source: FrameSource,
        geo: Optional[GeoAnnotator] = None,
        interval: float = 0.1,
    ) -> None:
        self.detector = detector
        self.index_provider = index_provider
        self.frame_source = frame_source
        self.geo = geo
        self.interval = interval
        self.scheduler = SingleSlotScheduler()
        self.latest: Optional[RecognitionResult] = None
        self.passes_completed = 0
        self._generation = 0
        self._on_result: List[Callable[[RecognitionResult], None]] = []

    def subscribe(self, callback: Callable[[RecognitionResult], None]) -> None:
        self._on_result.append(callback)

    def invalidate(self) -> None:
        self._generation += 1
        self.latest = None

    def tick(self) -> bool:
        """Start a pass unless one is already running. Returns whether it started."""
        generation = self._generation
        return self.scheduler.try_submit(lambda: self._pass(generation)) is not None

    async def _pass(self, generation: int) -> None:
        try:
            frame = self.frame_source()
            if frame is None:
                return
            result = await self.recognize(frame)
        except (ModelNotReady, NoFaceDetected) as exc:
            LOGGER.debug("Recognition pass skipped: %s", exc)
            return
        except Exception as exc:
            LOGGER.warning("Recognition pass failed: %s", exc)
            LOGGER.debug("Recognition pass stack trace", exc_info=True)
            return
        if generation != self._generation:
            LOGGER.debug("Discarding recognition result from an invalidated pass")
            return
        self.latest = result
        self.passes_completed += 1
        for callback in self._on_result:
            try:
                callback(result)
            except Exception:
                LOGGER.exception("Recognition subscriber %r failed", callback)

    async def recognize(self, frame: np.ndarray) -> RecognitionResult:
        detections = await self.detector.detect_all(frame)
        if not detections:
            return RecognitionResult(label=NOT_DETECTED_LABEL)
        index = self.index_provider()
        matches = index.match_all([det.descriptor for det in detections])
        faces = [FaceMatch(box=det.box, match=match) for det, match in zip(detections, matches)]
        primary = next((face.match for face in faces if not face.match.is_unknown), None)
        if primary is None:
            return RecognitionResult(label=UNKNOWN_LABEL, distance=faces[0].match.distance, faces=faces)
        location = None
        if self.geo is not None:
            location = await self.geo.fetch_or_none(join=True)
        return RecognitionResult(label=primary.label, distance=primary.distance, location=location, faces=faces)

    async def run(self, stop: asyncio.Event) -> None:
        """Tick every ``interval`` seconds until ``stop`` is set."""
        LOGGER.info("Recognition loop started (interval=%.0fms)", self.interval * 1000.0)
        try:
            while not stop.is_set():
                self.tick()
                try:
                    await asyncio.wait_for(stop.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self.scheduler.drain()
            LOGGER.info(
                "Recognition loop stopped (passes=%d dropped_ticks=%d)",
                self.passes_completed,
                self.scheduler.dropped,
            )
