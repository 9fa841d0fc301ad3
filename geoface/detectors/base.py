"""Detection capability consumed by the engine."""

from __future__ import annotations

from typing import List, Optional

import numpy as np

from geoface.errors import ModelNotReady
from geoface.types import FaceDetection


class BaseFaceDetector:
    """Narrow interface over a face detector + descriptor extractor.

    Subclasses implement :meth:`_detect_all` and :meth:`_detect_best_single`
    and flip ``ready`` once their models are loaded. The public coroutines
    refuse to run before that.
    """

    def __init__(self) -> None:
        self.ready = False

    def ensure_ready(self) -> None:
        if not self.ready:
            raise ModelNotReady(f"{type(self).__name__} has not finished loading")

    async def prepare(self) -> None:
        self.ready = True

    async def detect_all(self, frame: np.ndarray) -> List[FaceDetection]:
        self.ensure_ready()
        return await self._detect_all(frame)

    async def detect_best_single(self, image: np.ndarray) -> Optional[FaceDetection]:
        self.ensure_ready()
        return await self._detect_best_single(image)

    async def _detect_all(self, frame: np.ndarray) -> List[FaceDetection]:
        raise NotImplementedError

    async def _detect_best_single(self, image: np.ndarray) -> Optional[FaceDetection]:
        detections = await self._detect_all(image)
        if not detections:
            return None
        return max(detections, key=lambda det: det.score)
