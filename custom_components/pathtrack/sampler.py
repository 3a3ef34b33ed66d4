"""
Position sampler — obtains raw fixes from the platform positioning source.

The source is a Home Assistant location entity (a companion-app
device_tracker or a person). Its attributes carry latitude, longitude and
gps_accuracy; its last_updated time is the capture time of the fix.

Failures are typed (PermissionDenied, PositionUnavailable,
AcquisitionTimeout) and never replaced by a stale value.
"""
from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Callable

from homeassistant.const import (
    ATTR_GPS_ACCURACY,
    ATTR_LATITUDE,
    ATTR_LONGITUDE,
    STATE_UNAVAILABLE,
    STATE_UNKNOWN,
)
from homeassistant.core import Event, HomeAssistant, State, callback
from homeassistant.helpers.event import async_track_state_change_event
from homeassistant.util import dt as dt_util

from .errors import AcquisitionError, AcquisitionTimeout, PermissionDenied, PositionUnavailable
from .models import RawFix, SamplerOptions

_LOGGER = logging.getLogger(__name__)

ATTR_SPEED = "speed"
ATTR_COURSE = "course"


def _optional_float(value) -> float | None:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class PositionSampler:
    """Reads fixes from one Home Assistant location entity."""

    def __init__(self, hass: HomeAssistant, source_entity_id: str) -> None:
        self._hass = hass
        self.source_entity_id = source_entity_id

    def read_state(self, state: State | None) -> RawFix:
        """Convert a source state into a RawFix or raise the matching AcquisitionError."""
        if state is None:
            raise PositionUnavailable(f"Location source {self.source_entity_id} does not exist")
        if state.state in (STATE_UNAVAILABLE, STATE_UNKNOWN):
            raise PositionUnavailable(f"Location source {self.source_entity_id} is {state.state}")

        lat = _optional_float(state.attributes.get(ATTR_LATITUDE))
        lon = _optional_float(state.attributes.get(ATTR_LONGITUDE))
        if lat is None or lon is None:
            raise PermissionDenied(
                f"Location source {self.source_entity_id} does not share coordinates"
            )

        return RawFix(
            latitude=lat,
            longitude=lon,
            accuracy_m=_optional_float(state.attributes.get(ATTR_GPS_ACCURACY)),
            captured_at=state.last_updated,
            speed=_optional_float(state.attributes.get(ATTR_SPEED)),
            heading=_optional_float(state.attributes.get(ATTR_COURSE)),
        )

    @staticmethod
    def _satisfies(raw: RawFix, options: SamplerOptions) -> bool:
        # High accuracy needs a reported accuracy to be judged at all
        return not options.high_accuracy_requested or raw.accuracy_m is not None

    async def async_acquire_once(self, options: SamplerOptions) -> RawFix:
        """
        Return one fix.

        The current state is used when it is at most max_cache_age seconds old
        (max_cache_age=0 always waits for a new fix). Otherwise waits up to
        options.timeout for the next usable update.
        """
        last_error: AcquisitionError | None = None
        try:
            raw = self.read_state(self._hass.states.get(self.source_entity_id))
        except PermissionDenied:
            raise
        except PositionUnavailable as exc:
            last_error = exc
        else:
            age = (dt_util.utcnow() - raw.captured_at).total_seconds()
            if options.max_cache_age > 0 and age <= options.max_cache_age and self._satisfies(raw, options):
                return raw

        def _remember(exc: AcquisitionError) -> None:
            nonlocal last_error
            last_error = exc

        stream = self.acquire_stream(options, on_error=_remember)
        try:
            return await asyncio.wait_for(anext(stream), timeout=options.timeout)
        except (asyncio.TimeoutError, TimeoutError):
            if last_error is not None:
                # The source kept failing the whole time: report why
                raise last_error from None
            raise AcquisitionTimeout(
                f"No fix from {self.source_entity_id} within {options.timeout:.0f}s"
            ) from None
        finally:
            await stream.aclose()

    async def acquire_stream(
        self,
        options: SamplerOptions,
        on_error: Callable[[AcquisitionError], None] | None = None,
    ) -> AsyncIterator[RawFix]:
        """
        Yield every usable fix the source publishes until the consumer stops.

        Unusable updates (unavailable source, no coordinates) are reported to
        on_error and skipped; the subscription stays open. Closing or
        cancelling the consumer unsubscribes from state changes.
        """
        queue: asyncio.Queue[State] = asyncio.Queue()

        @callback
        def _on_state_change(event: Event) -> None:
            new_state = event.data.get("new_state")
            if new_state is not None:
                queue.put_nowait(new_state)

        unsubscribe = async_track_state_change_event(
            self._hass, [self.source_entity_id], _on_state_change
        )
        try:
            while True:
                state = await queue.get()
                try:
                    raw = self.read_state(state)
                except AcquisitionError as exc:
                    _LOGGER.debug("Skipping update from %s: %s", self.source_entity_id, exc)
                    if on_error is not None:
                        on_error(exc)
                    continue
                if not self._satisfies(raw, options):
                    _LOGGER.debug("Skipping fix without reported accuracy from %s", self.source_entity_id)
                    continue
                yield raw
        finally:
            unsubscribe()
