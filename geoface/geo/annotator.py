"""Single-flight location lookup shared by capture and recognition."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional, Tuple

from geoface.errors import GeoError, GeoServiceError, GeoTimeout, GeoUnavailable, LocationBusy
from geoface.geo.nominatim import ReverseGeocoder
from geoface.geo.position import PositionProvider
from geoface.types import LocationSnapshot

LOGGER = logging.getLogger("geoface.geo.annotator")


class GeoAnnotator:
    """Resolves the current position to an address, one request at a time.

    While a lookup is pending, further callers either attach to the same
    result (``join=True``) or get :class:`LocationBusy`. Every lookup is
    bounded by ``timeout`` seconds.

    The last address is reused for ``cache_ttl`` seconds while the position
    stays within ``cache_precision`` decimal places, so a fixed camera hits
    the reverse geocoder about once per ``cache_ttl`` rather than once per
    recognition pass. Failures are never cached.
    """

    def __init__(
        self,
        position_provider: PositionProvider,
        geocoder: ReverseGeocoder,
        timeout: float = 10.0,
        cache_ttl: float = 60.0,
        cache_precision: int = 4,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.position_provider = position_provider
        self.geocoder = geocoder
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self.cache_precision = cache_precision
        self._clock = clock
        self._inflight: Optional[asyncio.Task] = None
        self._cached: Optional[Tuple[Tuple[float, float], float, LocationSnapshot]] = None
        self.requests_started = 0
        self.cache_hits = 0

    @property
    def busy(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def _resolve(self) -> LocationSnapshot:
        try:
            latitude, longitude = await self.position_provider.current_position()
        except GeoError:
            raise
        except Exception as exc:
            raise GeoUnavailable(f"Position provider raised {type(exc).__name__}: {exc}") from exc
        key = (round(latitude, self.cache_precision), round(longitude, self.cache_precision))
        cached = self._lookup_cache(key)
        if cached is not None:
            return cached
        try:
            snapshot = await self.geocoder.reverse(latitude, longitude)
        except GeoError:
            raise
        except Exception as exc:
            raise GeoServiceError(f"Reverse geocoder raised {type(exc).__name__}: {exc}") from exc
        self._cached = (key, self._clock(), snapshot)
        return snapshot

    def _lookup_cache(self, key: Tuple[float, float]) -> Optional[LocationSnapshot]:
        if self._cached is None or self.cache_ttl <= 0:
            return None
        cached_key, stored_at, snapshot = self._cached
        if cached_key != key or self._clock() - stored_at >= self.cache_ttl:
            return None
        self.cache_hits += 1
        LOGGER.debug("Reusing cached address for %s", key)
        return snapshot

    async def _resolve_bounded(self) -> LocationSnapshot:
        try:
            return await asyncio.wait_for(self._resolve(), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise GeoTimeout(f"Location lookup exceeded {self.timeout:.1f}s") from exc

    def _on_done(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled():
            # mark retrieved; waiters see the exception through the shield
            task.exception()

    async def fetch_location(self, join: bool = True) -> LocationSnapshot:
        if self.busy:
            if not join:
                raise LocationBusy("A location request is already in flight")
            LOGGER.debug("Joining in-flight location request")
            task = self._inflight
        else:
            task = asyncio.ensure_future(self._resolve_bounded())
            task.add_done_callback(self._on_done)
            self._inflight = task
            self.requests_started += 1
        return await asyncio.shield(task)

    async def fetch_or_none(self, join: bool = True) -> Optional[LocationSnapshot]:
        """Like :meth:`fetch_location` but logs failures and returns ``None``."""
        try:
            return await self.fetch_location(join=join)
        except GeoError as exc:
            LOGGER.warning("Location unavailable (%s): %s", type(exc).__name__, exc)
            return None
