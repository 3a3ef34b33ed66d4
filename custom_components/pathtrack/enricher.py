"""
Place enricher — attaches a human-readable address to a fix.

Best effort: any failure leaves the address unset and the fix continues to
the path store. The geocoder's coordinate cache makes the next lookup at the
same place cheap, which is how a failed lookup gets retried on a later cycle.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from .const import ENRICH_TIMEOUT
from .errors import EnrichmentFailed
from .models import Fix

_LOGGER = logging.getLogger(__name__)


class ReverseGeocoder(Protocol):
    async def async_reverse(self, lat: float, lon: float) -> str: ...


class PlaceEnricher:

    def __init__(self, geocoder: ReverseGeocoder | None, timeout: float = ENRICH_TIMEOUT) -> None:
        self._geocoder = geocoder
        self._timeout = timeout
        self.failures = 0

    @property
    def enabled(self) -> bool:
        return self._geocoder is not None

    async def async_enrich(self, fix: Fix) -> Fix:
        """Return fix with its address set, or fix unchanged when enrichment fails."""
        if self._geocoder is None or fix.address or not fix.has_coordinates:
            return fix

        try:
            address = await asyncio.wait_for(
                self._geocoder.async_reverse(fix.latitude, fix.longitude),
                timeout=self._timeout,
            )
        except (asyncio.TimeoutError, TimeoutError):
            self.failures += 1
            _LOGGER.warning(
                "Reverse geocoding timed out for %s at (%.5f, %.5f); keeping fix without address",
                fix.entity_id, fix.latitude, fix.longitude,
            )
            return fix
        except EnrichmentFailed as exc:
            self.failures += 1
            _LOGGER.warning("Enrichment failed for %s: %s", fix.entity_id, exc)
            return fix
        except Exception as exc:
            self.failures += 1
            _LOGGER.error("Unexpected error enriching fix for %s: %s", fix.entity_id, exc)
            return fix

        return fix.with_address(address)
