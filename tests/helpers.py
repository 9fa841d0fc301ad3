"""Stub collaborators shared by the test modules."""

import asyncio
from typing import Optional

import numpy as np

from geoface.detectors.base import BaseFaceDetector
from geoface.errors import GeoError
from geoface.geo.nominatim import ReverseGeocoder
from geoface.types import BoundingBox, FaceDetection, LocationSnapshot

PARIS = LocationSnapshot(
    latitude=48.8566,
    longitude=2.3522,
    city="Paris",
    state="Ile-de-France",
    country="France",
    postcode="75001",
    address="Paris, Ile-de-France, France",
)


class RowDetector(BaseFaceDetector):
    """Every non-zero row of the frame is a face whose descriptor is the row."""

    def __init__(self, box_frac=(0.25, 0.25, 0.5, 0.5), ready: bool = True) -> None:
        super().__init__()
        self.ready = ready
        self.box_frac = box_frac
        self.calls = 0
        self.release: Optional[asyncio.Event] = None

    async def _detect_all(self, frame):
        self.calls += 1
        if self.release is not None:
            await self.release.wait()
        else:
            await asyncio.sleep(0)
        rows = np.atleast_2d(np.asarray(frame, dtype=np.float32))
        height, width = rows.shape[:2]
        fx, fy, fw, fh = self.box_frac
        box = BoundingBox(fx * width, fy * height, fw * width, fh * height)
        return [
            FaceDetection(box=box, descriptor=row.copy(), score=1.0 - 0.01 * idx)
            for idx, row in enumerate(rows)
            if np.any(row)
        ]


class StubGeocoder(ReverseGeocoder):
    def __init__(self, snapshot: Optional[LocationSnapshot] = PARIS, error: Optional[Exception] = None) -> None:
        self.snapshot = snapshot
        self.error = error
        self.calls = 0
        self.release: Optional[asyncio.Event] = None

    async def reverse(self, latitude, longitude):
        self.calls += 1
        if self.release is not None:
            await self.release.wait()
        else:
            await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.snapshot


class FailingPositionProvider:
    def __init__(self, error: GeoError) -> None:
        self.error = error

    async def current_position(self):
        raise self.error
