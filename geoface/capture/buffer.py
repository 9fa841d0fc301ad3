"""Captures collected for one identity until training runs."""

from __future__ import annotations

import logging
from typing import List, Tuple

from geoface.types import CapturedSample

LOGGER = logging.getLogger("geoface.capture.buffer")


class EnrollmentBuffer:
    def __init__(self, min_samples: int = 5) -> None:
        self.min_samples = min_samples
        self._samples: List[CapturedSample] = []

    def __len__(self) -> int:
        return len(self._samples)

    def __contains__(self, sample: object) -> bool:
        return any(s is sample for s in self._samples)

    @property
    def samples(self) -> Tuple[CapturedSample, ...]:
        return tuple(self._samples)

    @property
    def is_ready(self) -> bool:
        return len(self._samples) >= self.min_samples

    def add(self, sample: CapturedSample) -> int:
        self._samples.append(sample)
        LOGGER.debug("Buffered capture %d/%d", len(self._samples), self.min_samples)
        return len(self._samples)

    def drain(self) -> List[CapturedSample]:
        """Hand all samples to the caller and empty the buffer."""
        samples, self._samples = self._samples, []
        return samples

    def clear(self) -> None:
        if self._samples:
            LOGGER.info("Discarding %d buffered captures", len(self._samples))
        self._samples = []
