"""Enrollment + recognition engine: one state machine over all components."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, Optional, Tuple

import numpy as np

from geoface.capture.buffer import EnrollmentBuffer
from geoface.capture.gate import CaptureGate, CaptureResult
from geoface.config import EngineConfig
from geoface.detectors.base import BaseFaceDetector
from geoface.errors import EngineStateError, InsufficientSamples, InvalidLabel, StaleResult
from geoface.geo.annotator import GeoAnnotator
from geoface.geo.nominatim import NominatimGeocoder
from geoface.geo.position import StaticPositionProvider
from geoface.guidance.position import PositionGuidance
from geoface.recognition.loop import RecognitionLoop, RecognitionResult
from geoface.recognition.store import DescriptorRepository, PersistenceStore
from geoface.recognition.trainer import DescriptorTrainer
from geoface.types import LabeledDescriptorSet, PoseLabel

LOGGER = logging.getLogger("geoface.engine")


class EngineMode(str, Enum):
    IDLE = "Idle"
    CAPTURING = "Capturing"
    TRAINING = "Training"
    RECOGNIZING = "Recognizing"


_TRANSITIONS: Dict[EngineMode, FrozenSet[EngineMode]] = {
    EngineMode.IDLE: frozenset({EngineMode.CAPTURING, EngineMode.RECOGNIZING}),
    EngineMode.CAPTURING: frozenset({EngineMode.IDLE, EngineMode.TRAINING, EngineMode.RECOGNIZING}),
    # only train() itself and reset_session() leave Training
    EngineMode.TRAINING: frozenset(),
    EngineMode.RECOGNIZING: frozenset({EngineMode.IDLE, EngineMode.CAPTURING}),
}


class FaceEngine:
    """Drives capture, training and recognition for a single camera.

    Callers push frames with :meth:`push_frame`; the recognition loop reads
    the most recent one, while capture takes the frame :meth:`update_pose`
    last classified. Every mode change that abandons
    work bumps ``session`` so results that arrive late are dropped.
    """

    def __init__(
        self,
        detector: BaseFaceDetector,
        repository: DescriptorRepository,
        config: Optional[EngineConfig] = None,
        geo: Optional[GeoAnnotator] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.detector = detector
        self.repository = repository
        self.geo = geo
        self.guidance = PositionGuidance(
            min_frac=self.config.pose_min_frac,
            max_frac=self.config.pose_max_frac,
            center_margin=self.config.pose_center_margin,
        )
        self.buffer = EnrollmentBuffer(min_samples=self.config.min_samples)
        self.gate = CaptureGate(
            self.buffer,
            geo=geo,
            training_in_progress=lambda: self.mode is EngineMode.TRAINING,
        )
        self.trainer = DescriptorTrainer(detector, repository, min_samples=self.config.min_samples)
        self.loop = RecognitionLoop(
            detector,
            index_provider=lambda: self.repository.index,
            frame_source=lambda: self._frame,
            geo=geo,
            interval=self.config.recognition_interval_s,
        )
        self.mode = EngineMode.IDLE
        self.session = 0
        self._pose = PoseLabel.NOT_DETECTED
        self._pose_frame: Optional[np.ndarray] = None
        self._frame: Optional[np.ndarray] = None
        self._stop: Optional[asyncio.Event] = None
        self._runner: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, config: EngineConfig) -> "FaceEngine":
        from geoface.detectors.insight import InsightFaceDetector

        detector = InsightFaceDetector(
            providers=config.providers,
            det_size=config.det_size,
            det_thresh=config.det_thresh,
        )
        repository = DescriptorRepository(
            PersistenceStore(Path(config.store_path)),
            match_threshold=config.match_threshold,
        )
        geo = None
        if config.has_fixed_position:
            geo = GeoAnnotator(
                StaticPositionProvider(config.latitude, config.longitude),
                NominatimGeocoder(
                    base_url=config.nominatim_url,
                    user_agent=config.user_agent,
                    timeout=config.geo_timeout_s,
                ),
                timeout=config.geo_timeout_s,
                cache_ttl=config.geo_cache_s,
            )
        else:
            LOGGER.info("No coordinates configured; events will not carry a location")
        return cls(detector, repository, config=config, geo=geo)

    async def start(self) -> None:
        """Load models, then the descriptor store."""
        await self.detector.prepare()
        await self.repository.load()
        LOGGER.info("Engine ready with %d enrolled labels", len(self.repository.labels))

    async def close(self) -> None:
        await self.stop_recognition()
        if self.geo is not None and isinstance(self.geo.geocoder, NominatimGeocoder):
            await self.geo.geocoder.aclose()

    def _transition(self, target: EngineMode) -> None:
        if target is self.mode:
            return
        if target not in _TRANSITIONS[self.mode]:
            raise EngineStateError(f"Cannot go from {self.mode.value} to {target.value}")
        LOGGER.debug("Mode %s -> %s", self.mode.value, target.value)
        self.mode = target

    def _invalidate(self) -> None:
        self.session += 1
        self.gate.reset()
        self.loop.invalidate()
        self._pose = PoseLabel.NOT_DETECTED
        self._pose_frame = None

    # frames and pose

    def push_frame(self, frame: Optional[np.ndarray]) -> None:
        self._frame = frame

    async def update_pose(self, frame: Optional[np.ndarray] = None) -> PoseLabel:
        """Detect the best face in ``frame`` (default: latest frame) and classify it."""
        self.detector.ensure_ready()
        if frame is None:
            frame = self._frame
        if frame is None:
            self._pose = PoseLabel.NOT_DETECTED
            self._pose_frame = None
            return self._pose
        session = self.session
        detection = await self.detector.detect_best_single(frame)
        if session != self.session:
            return self._pose
        height, width = frame.shape[:2]
        self._pose = self.guidance.classify(detection.box if detection else None, width, height)
        self._pose_frame = frame
        return self._pose

    def current_pose_label(self) -> PoseLabel:
        return self._pose

    # enrollment

    @property
    def capture_progress(self) -> Tuple[int, int]:
        return len(self.buffer), self.config.min_samples

    async def begin_capture(self) -> None:
        self.detector.ensure_ready()
        if self.mode is EngineMode.RECOGNIZING:
            await self.stop_recognition()
        self._transition(EngineMode.CAPTURING)

    def capture(self, frame: Optional[np.ndarray] = None) -> CaptureResult:
        """Capture the frame the current pose label was computed on.

        An explicit ``frame`` is only admitted if it is that same frame; any
        other frame has not been classified and counts as ``NotDetected``.
        """
        self.detector.ensure_ready()
        if self.mode is EngineMode.IDLE:
            self._transition(EngineMode.CAPTURING)
        if self.mode is EngineMode.RECOGNIZING:
            raise EngineStateError("Stop recognition before capturing")
        if frame is None or frame is self._pose_frame:
            return self.gate.try_capture(self._pose, self._pose_frame)
        LOGGER.debug("Capture frame was never classified; treating as NotDetected")
        return self.gate.try_capture(PoseLabel.NOT_DETECTED, frame)

    async def train(self, label: str) -> Optional[LabeledDescriptorSet]:
        """Train ``label`` from the buffered captures.

        Returns ``None`` when the session was reset while training ran. Any
        :class:`TrainingError` reaches the caller; the captures are consumed
        either way.
        """
        self.detector.ensure_ready()
        if self.mode is EngineMode.TRAINING:
            raise EngineStateError("Training already in progress")
        if self.mode is not EngineMode.CAPTURING:
            raise EngineStateError(f"Nothing captured to train on (mode={self.mode.value})")
        if not (label or "").strip():
            raise InvalidLabel("Label must be a non-empty name")
        if len(self.buffer) < self.config.min_samples:
            raise InsufficientSamples(len(self.buffer), self.config.min_samples)

        session = self.session
        self._transition(EngineMode.TRAINING)
        try:
            await self.gate.settle()
            if session != self.session:
                return None
            samples = self.buffer.drain()
            return await self.trainer.train(label, samples, is_current=lambda: session == self.session)
        except StaleResult as exc:
            LOGGER.info("%s", exc)
            return None
        finally:
            if session == self.session and self.mode is EngineMode.TRAINING:
                self.mode = EngineMode.CAPTURING

    # recognition

    async def start_recognition(self) -> None:
        self.detector.ensure_ready()
        if self.mode is EngineMode.RECOGNIZING:
            return
        if self.mode is EngineMode.TRAINING:
            raise EngineStateError("Wait for training to finish before recognizing")
        if self.mode is EngineMode.CAPTURING:
            self._invalidate()
        self._transition(EngineMode.RECOGNIZING)
        self._stop = asyncio.Event()
        self._runner = asyncio.ensure_future(self.loop.run(self._stop))

    async def stop_recognition(self) -> None:
        if self._runner is None:
            return
        runner, self._runner = self._runner, None
        self._stop.set()
        self.loop.invalidate()
        await runner
        if self.mode is EngineMode.RECOGNIZING:
            self._transition(EngineMode.IDLE)

    def current_recognition_result(self) -> Optional[RecognitionResult]:
        if self.mode is not EngineMode.RECOGNIZING:
            return None
        return self.loop.latest

    async def reset_session(self) -> None:
        """Drop buffered captures and anything still in flight; back to Idle."""
        await self.stop_recognition()
        self._invalidate()
        self.mode = EngineMode.IDLE
        LOGGER.info("Session reset (session=%d)", self.session)
