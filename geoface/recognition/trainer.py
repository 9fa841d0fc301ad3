"""Turns buffered captures into descriptors and merges them into the store."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence

import numpy as np

from geoface.detectors.base import BaseFaceDetector
from geoface.errors import InsufficientSamples, InvalidLabel, NoFaceDetected, NoUsableCaptures, StaleResult
from geoface.recognition.store import DescriptorRepository
from geoface.types import CapturedSample, LabeledDescriptorSet, LocationSnapshot

LOGGER = logging.getLogger("geoface.recognition.trainer")


class DescriptorTrainer:
    def __init__(
        self,
        detector: BaseFaceDetector,
        repository: DescriptorRepository,
        min_samples: int = 5,
    ) -> None:
        self.detector = detector
        self.repository = repository
        self.min_samples = min_samples

    async def train(
        self,
        label: str,
        samples: Sequence[CapturedSample],
        is_current: Optional[Callable[[], bool]] = None,
    ) -> LabeledDescriptorSet:
        """Extract one descriptor per usable sample and append them under ``label``.

        Samples without a detectable face, or whose extraction fails, are
        skipped. Raises :class:`NoUsableCaptures` when none survive, and
        :class:`StaleResult` when ``is_current`` reports the session moved on
        before the merge.
        Returns the set contributed by this call; the merged total lives in
        the repository.
        """
        label = (label or "").strip()
        if not label:
            raise InvalidLabel("Label must be a non-empty name")
        if len(samples) < self.min_samples:
            raise InsufficientSamples(len(samples), self.min_samples)
        self.detector.ensure_ready()

        descriptors: List[np.ndarray] = []
        locations: List[Optional[LocationSnapshot]] = []
        for idx, sample in enumerate(samples):
            try:
                detection = await self.detector.detect_best_single(sample.image)
            except NoFaceDetected:
                detection = None
            except Exception as exc:
                LOGGER.warning("Sample %d for %s failed extraction (%s); skipping", idx, label, exc)
                LOGGER.debug("Extraction stack trace", exc_info=True)
                continue
            if detection is None:
                LOGGER.info("Sample %d for %s has no detectable face; skipping", idx, label)
                continue
            descriptors.append(detection.descriptor)
            locations.append(sample.location)

        if not descriptors:
            raise NoUsableCaptures(f"No face found in any of the {len(samples)} captures for {label}")
        if is_current is not None and not is_current():
            raise StaleResult(f"Training for {label} finished after its session ended; discarded")

        entry = LabeledDescriptorSet(label=label, descriptors=descriptors, locations=locations)
        merged = await self.repository.merge(entry)
        LOGGER.info(
            "Trained %s: %d/%d captures usable, %d descriptors stored",
            label,
            len(entry),
            len(samples),
            len(merged),
        )
        return entry
