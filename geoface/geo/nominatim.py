"""Reverse geocoding through a Nominatim-compatible HTTP service."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import httpx

from geoface.errors import GeoServiceError
from geoface.types import LocationSnapshot

LOGGER = logging.getLogger("geoface.geo.nominatim")


class ReverseGeocoder:
    async def reverse(self, latitude: float, longitude: float) -> LocationSnapshot:
        raise NotImplementedError


def parse_reverse_payload(payload: Any, latitude: float, longitude: float) -> LocationSnapshot:
    """Turn a Nominatim ``/reverse`` JSON body into a snapshot.

    City falls back to town, then village. The remaining address parts pass
    through unchanged.
    """
    if not isinstance(payload, Mapping):
        raise GeoServiceError(f"Unexpected reverse geocode payload type {type(payload).__name__}")
    if "error" in payload:
        raise GeoServiceError(f"Reverse geocode failed: {payload['error']}")
    address = payload.get("address")
    if not isinstance(address, Mapping):
        raise GeoServiceError("Reverse geocode payload has no address")
    city = address.get("city") or address.get("town") or address.get("village")
    return LocationSnapshot(
        latitude=latitude,
        longitude=longitude,
        city=city,
        state=address.get("state"),
        country=address.get("country"),
        postcode=address.get("postcode"),
        address=payload.get("display_name"),
    )


class NominatimGeocoder(ReverseGeocoder):
    """Async client for the Nominatim ``/reverse`` endpoint."""

    def __init__(
        self,
        base_url: str = "https://nominatim.openstreetmap.org",
        user_agent: str = "geoface/0.1",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent},
            )
            LOGGER.info("Created HTTP client for %s", self.base_url)
        return self._client

    async def reverse(self, latitude: float, longitude: float) -> LocationSnapshot:
        client = self._get_client()
        try:
            response = await client.get(
                f"{self.base_url}/reverse",
                params={"format": "json", "lat": latitude, "lon": longitude},
                headers={"User-Agent": self.user_agent},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as exc:
            raise GeoServiceError(f"Reverse geocode timed out for {latitude},{longitude}") from exc
        except httpx.HTTPStatusError as exc:
            raise GeoServiceError(
                f"Reverse geocode HTTP {exc.response.status_code} for {latitude},{longitude}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise GeoServiceError(f"Reverse geocode request failed: {exc}") from exc
        snapshot = parse_reverse_payload(payload, latitude, longitude)
        LOGGER.debug("Reverse geocoded %.5f,%.5f -> %s", latitude, longitude, snapshot.city)
        return snapshot

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
            LOGGER.info("Closed HTTP client for %s", self.base_url)
