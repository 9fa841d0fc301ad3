"""InsightFace detection + recognition adapter."""

from __future__ import annotations

import asyncio
import logging
import os
import platform
from typing import List, Optional, Sequence, Tuple

import numpy as np

from geoface.detectors.base import BaseFaceDetector
from geoface.types import BoundingBox, FaceDetection, l2_normalize

LOGGER = logging.getLogger("geoface.detectors.insight")


def _default_providers() -> Tuple[str, ...]:
    """Choose default ONNX providers based on platform."""
    system = platform.system()
    machine = platform.machine().lower()
    if system == "Darwin" and machine in {"arm64", "aarch64"}:
        return ("CoreMLExecutionProvider", "CPUExecutionProvider")
    return ("CPUExecutionProvider",)


class InsightFaceDetector(BaseFaceDetector):
    """Wraps InsightFace ``FaceAnalysis`` for boxes and ArcFace descriptors.

    Model loading is slow, so it happens in :meth:`prepare` on a worker thread.
    Inference calls are also pushed off the event loop; the engine still only
    awaits one of them at a time.
    """

    def __init__(
        self,
        model_name: str = "buffalo_l",
        providers: Optional[Sequence[str]] = None,
        det_size: Tuple[int, int] = (640, 640),
        det_thresh: float = 0.5,
    ) -> None:
        super().__init__()
        self.model_name = model_name
        self.det_size = tuple(det_size)
        self.det_thresh = det_thresh
        provider_list: Tuple[str, ...]
        if providers is None:
            provider_list = _default_providers()
        else:
            provider_list = tuple(providers)
        self.providers = provider_list
        self.app = None

    def load(self) -> None:
        os.environ.setdefault("OMP_NUM_THREADS", "2")
        os.environ.setdefault("MKL_NUM_THREADS", "2")
        os.environ.setdefault("ORT_INTRA_OP_NUM_THREADS", "2")
        try:
            from insightface.app import FaceAnalysis
        except ImportError as exc:  # pragma: no cover - import guard
            raise RuntimeError(
                "insightface is required for InsightFaceDetector. "
                "Install it via `pip install insightface`."
            ) from exc

        app = FaceAnalysis(
            name=self.model_name,
            allowed_modules=["detection", "recognition"],
            providers=list(self.providers),
        )
        app.prepare(ctx_id=0, det_size=self.det_size, det_thresh=self.det_thresh)
        backend = None
        try:
            detection_model = app.models.get("detection")
            if detection_model is not None and hasattr(detection_model, "session"):
                backend = detection_model.session.get_providers()[0]
        except Exception:  # pragma: no cover - optional logging
            backend = None
        self.app = app
        self.ready = True
        LOGGER.info(
            "Loaded InsightFace %s det_size=%s det_thresh=%.2f providers=%s backend=%s",
            self.model_name,
            self.det_size,
            self.det_thresh,
            self.providers,
            backend,
        )

    async def prepare(self) -> None:
        if self.ready:
            return
        await asyncio.to_thread(self.load)

    def _run(self, image: np.ndarray) -> List[FaceDetection]:
        faces = self.app.get(image)
        detections: List[FaceDetection] = []
        for face in faces:
            score = float(face.det_score)
            if score < self.det_thresh:
                continue
            embedding = getattr(face, "embedding", None)
            if embedding is None:
                LOGGER.debug("Face without embedding skipped (score=%.2f)", score)
                continue
            descriptor = l2_normalize(np.asarray(embedding, dtype=np.float32).reshape(-1))
            detections.append(
                FaceDetection(
                    box=BoundingBox.from_xyxy(face.bbox),
                    descriptor=descriptor,
                    score=score,
                )
            )
        return detections

    async def _detect_all(self, frame: np.ndarray) -> List[FaceDetection]:
        return await asyncio.to_thread(self._run, frame)
