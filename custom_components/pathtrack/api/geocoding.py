"""
Reverse geocoding (lat/lon -> place name) through OpenStreetMap Nominatim.

Nominatim is rate-limited: requests are spaced by a minimum interval and
carry a descriptive User-Agent. Results are cached by rounded coordinate so a
device standing still does not hit the service again.

Example request:
https://nominatim.openstreetmap.org/reverse?format=jsonv2&lat=17.385&lon=78.486&zoom=18&addressdetails=1
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict

import aiohttp

from ..const import (
    DEFAULT_GEOCODER_URL,
    GEOCODE_CACHE_PRECISION,
    GEOCODE_CACHE_SIZE,
    GEOCODE_MIN_INTERVAL,
    GEOCODER_USER_AGENT,
)
from ..errors import EnrichmentFailed
from ..geo import coord_key
from ..requests import ApiResponseError, build_headers, make_request

_LOGGER = logging.getLogger(__name__)


class NominatimGeocoder:
    """Reverse geocoder with request spacing and an in-memory LRU cache."""

    def __init__(
        self,
        url: str = DEFAULT_GEOCODER_URL,
        *,
        language: str | None = None,
        min_interval: float = GEOCODE_MIN_INTERVAL,
        precision: int = GEOCODE_CACHE_PRECISION,
        cache_size: int = GEOCODE_CACHE_SIZE,
    ) -> None:
        self._url = url
        self._headers = build_headers(user_agent=GEOCODER_USER_AGENT)
        if language:
            self._headers["Accept-Language"] = language
        self._min_interval = min_interval
        self._precision = precision
        self._cache_size = cache_size
        self._cache: OrderedDict[str, str] = OrderedDict()
        self._lock = asyncio.Lock()
        self._last_request_at = 0.0

    def cached(self, lat: float, lon: float) -> str | None:
        key = coord_key(lat, lon, self._precision)
        address = self._cache.get(key)
        if address is not None:
            self._cache.move_to_end(key)
        return address

    async def async_reverse(self, lat: float, lon: float) -> str:
        """
        Resolve a coordinate to a display name.

        Raises:
            EnrichmentFailed: On timeout, quota, network errors or an empty answer
        """
        address = self.cached(lat, lon)
        if address is not None:
            return address

        params = {
            "format": "jsonv2",
            "lat": f"{lat:.8f}",
            "lon": f"{lon:.8f}",
            "zoom": "18",
            "addressdetails": "1",
        }
        # Serialise requests so the minimum interval holds across concurrent callers
        async with self._lock:
            await self._wait_for_slot()
            try:
                raw_json = await make_request(
                    "GET", self._url, self._headers, params=params, max_attempts=1
                )
            except (asyncio.TimeoutError, TimeoutError) as e:
                raise EnrichmentFailed(f"Timeout reverse geocoding ({lat:.5f}, {lon:.5f})") from e
            except (ApiResponseError, ValueError, aiohttp.ClientError) as e:
                raise EnrichmentFailed(f"Reverse geocoding ({lat:.5f}, {lon:.5f}) failed: {e}") from e
            finally:
                self._last_request_at = time.monotonic()

        if not isinstance(raw_json, dict) or raw_json.get("error"):
            raise EnrichmentFailed(f"No address for ({lat:.5f}, {lon:.5f}): {raw_json}")
        address = str(raw_json.get("display_name") or "")
        if not address:
            raise EnrichmentFailed(f"Empty address for ({lat:.5f}, {lon:.5f})")

        self._remember(coord_key(lat, lon, self._precision), address)
        return address

    def _remember(self, key: str, address: str) -> None:
        self._cache[key] = address
        self._cache.move_to_end(key)
        while len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)

    async def _wait_for_slot(self) -> None:
        wait = self._min_interval - (time.monotonic() - self._last_request_at)
        if wait > 0:
            await asyncio.sleep(wait)
