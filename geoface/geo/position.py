"""Sources of the device's current coordinates."""

from __future__ import annotations

import logging
from typing import Tuple

from geoface.errors import GeoPermissionDenied, GeoUnavailable

LOGGER = logging.getLogger("geoface.geo.position")

Coordinates = Tuple[float, float]


class PositionProvider:
    """Returns ``(latitude, longitude)`` or raises a :class:`GeoError`."""

    async def current_position(self) -> Coordinates:
        raise NotImplementedError


class StaticPositionProvider(PositionProvider):
    """Fixed coordinates, e.g. a camera mounted at a known site."""

    def __init__(self, latitude: float, longitude: float) -> None:
        if not -90.0 <= latitude <= 90.0 or not -180.0 <= longitude <= 180.0:
            raise ValueError(f"Coordinates out of range: {latitude}, {longitude}")
        self.latitude = float(latitude)
        self.longitude = float(longitude)

    async def current_position(self) -> Coordinates:
        return self.latitude, self.longitude


class DeniedPositionProvider(PositionProvider):
    """Used when the operator has not allowed location tagging."""

    async def current_position(self) -> Coordinates:
        raise GeoPermissionDenied("Location access has not been granted")


class UnavailablePositionProvider(PositionProvider):
    async def current_position(self) -> Coordinates:
        raise GeoUnavailable("No position source configured")
