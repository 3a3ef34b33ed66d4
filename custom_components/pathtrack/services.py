"""
Home Assistant services for the Path Track integration.

Services address a config entry by its entry_id; when only one entry is
loaded it may be omitted. Acquisition and accuracy failures are raised to the
caller as HomeAssistantError carrying the remediation hint.
"""
from __future__ import annotations

import logging

import homeassistant.helpers.config_validation as cv
import voluptuous as vol
from homeassistant.config_entries import ConfigEntryState
from homeassistant.core import HomeAssistant, ServiceCall, ServiceResponse, SupportsResponse
from homeassistant.exceptions import HomeAssistantError, ServiceValidationError

from .const import (
    DEFAULT_ACQUIRE_TIMEOUT,
    DEFAULT_MAX_CACHE_AGE,
    DOMAIN,
    SERVICE_AVAILABLE_DATES,
    SERVICE_CAPTURE_LOCATION,
    SERVICE_LOAD_HISTORY,
    SERVICE_PURGE_PATH,
    SERVICE_QUERY_RANGE,
    SERVICE_START_OBSERVING,
    SERVICE_STOP_OBSERVING,
)
from .coordinator import PathTrackCoordinator
from .errors import AccuracyRejected, AcquisitionError, SyncFailed
from .models import FixRole, SamplerOptions

_LOGGER = logging.getLogger(__name__)

ATTR_CONFIG_ENTRY = "config_entry_id"
ATTR_ENTITY = "entity"
ATTR_BACKGROUND = "background"
ATTR_ROLE = "role"
ATTR_HIGH_ACCURACY = "high_accuracy"
ATTR_TIMEOUT = "timeout"
ATTR_MAX_CACHE_AGE = "max_cache_age"
ATTR_START_DATE = "start_date"
ATTR_END_DATE = "end_date"

_BASE = {vol.Optional(ATTR_CONFIG_ENTRY): cv.string}

START_OBSERVING_SCHEMA = vol.Schema(
    {
        **_BASE,
        vol.Required(ATTR_ENTITY): cv.string,
        vol.Optional(ATTR_BACKGROUND, default=False): cv.boolean,
    }
)
STOP_OBSERVING_SCHEMA = vol.Schema({**_BASE, vol.Optional(ATTR_ENTITY): cv.string})
CAPTURE_LOCATION_SCHEMA = vol.Schema(
    {
        **_BASE,
        vol.Optional(ATTR_ROLE, default=FixRole.CURRENT.value): vol.In([r.value for r in FixRole]),
        vol.Optional(ATTR_HIGH_ACCURACY, default=True): cv.boolean,
        vol.Optional(ATTR_TIMEOUT, default=DEFAULT_ACQUIRE_TIMEOUT): vol.All(vol.Coerce(float), vol.Range(min=1)),
        vol.Optional(ATTR_MAX_CACHE_AGE, default=DEFAULT_MAX_CACHE_AGE): vol.All(vol.Coerce(float), vol.Range(min=0)),
    }
)
RANGE_SCHEMA = vol.Schema(
    {
        **_BASE,
        vol.Required(ATTR_ENTITY): cv.string,
        vol.Required(ATTR_START_DATE): cv.date,
        vol.Optional(ATTR_END_DATE): cv.date,
    }
)
ENTITY_SCHEMA = vol.Schema({**_BASE, vol.Required(ATTR_ENTITY): cv.string})


def _get_coordinator(hass: HomeAssistant, call: ServiceCall) -> PathTrackCoordinator:
    """Resolve the coordinator of the addressed (or only) loaded entry."""
    entries = [
        entry for entry in hass.config_entries.async_entries(DOMAIN)
        if entry.state is ConfigEntryState.LOADED
    ]
    entry_id = call.data.get(ATTR_CONFIG_ENTRY)
    if entry_id is not None:
        entries = [entry for entry in entries if entry.entry_id == entry_id]
        if not entries:
            raise ServiceValidationError(f"Config entry {entry_id} is not loaded")
    elif len(entries) != 1:
        raise ServiceValidationError(
            f"{len(entries)} Path Track entries are loaded; pass {ATTR_CONFIG_ENTRY}"
        )
    return entries[0].runtime_data


def _date_range(call: ServiceCall):
    start = call.data[ATTR_START_DATE]
    end = call.data.get(ATTR_END_DATE) or start
    if end < start:
        raise ServiceValidationError(f"{ATTR_END_DATE} {end} is before {ATTR_START_DATE} {start}")
    return start, end


async def _async_start_observing(hass: HomeAssistant, call: ServiceCall) -> None:
    coordinator = _get_coordinator(hass, call)
    coordinator.start_observing(call.data[ATTR_ENTITY], background=call.data[ATTR_BACKGROUND])


async def _async_stop_observing(hass: HomeAssistant, call: ServiceCall) -> None:
    coordinator = _get_coordinator(hass, call)
    if not coordinator.stop_observing(call.data.get(ATTR_ENTITY)):
        _LOGGER.debug("stop_observing: %s was not observed", call.data.get(ATTR_ENTITY))


async def _async_capture_location(hass: HomeAssistant, call: ServiceCall) -> ServiceResponse:
    coordinator = _get_coordinator(hass, call)
    options = SamplerOptions(
        high_accuracy_requested=call.data[ATTR_HIGH_ACCURACY],
        timeout=call.data[ATTR_TIMEOUT],
        max_cache_age=call.data[ATTR_MAX_CACHE_AGE],
    )
    try:
        fix = await coordinator.async_capture_fix(options, role=FixRole(call.data[ATTR_ROLE]))
    except AcquisitionError as exc:
        message = str(exc)
        if exc.remediation:
            message = f"{message}. {exc.remediation}"
        raise HomeAssistantError(message) from exc
    except AccuracyRejected as exc:
        raise HomeAssistantError(
            f"{exc}. Move to open sky or allow degraded fixes in the integration options."
        ) from exc
    return {"fix": fix.to_record()}


async def _async_query_range(hass: HomeAssistant, call: ServiceCall) -> ServiceResponse:
    coordinator = _get_coordinator(hass, call)
    entity_id = call.data[ATTR_ENTITY]
    start, end = _date_range(call)
    fixes = coordinator.query_range(entity_id, start, end)
    return {
        "entity": entity_id,
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "fixes": [fix.to_record() for fix in fixes],
        "stats": coordinator.route_stats(entity_id, start, end).as_dict(),
    }


async def _async_available_dates(hass: HomeAssistant, call: ServiceCall) -> ServiceResponse:
    coordinator = _get_coordinator(hass, call)
    entity_id = call.data[ATTR_ENTITY]
    dates = await coordinator.async_fetch_available_dates(entity_id)
    return {"entity": entity_id, "dates": [entry.as_dict() for entry in dates]}


async def _async_load_history(hass: HomeAssistant, call: ServiceCall) -> ServiceResponse:
    coordinator = _get_coordinator(hass, call)
    entity_id = call.data[ATTR_ENTITY]
    start, end = _date_range(call)
    try:
        fixes = await coordinator.async_load_range(entity_id, start, end)
    except SyncFailed as exc:
        raise HomeAssistantError(f"Unable to load history for {entity_id}: {exc}") from exc
    return {"entity": entity_id, "loaded": len(fixes)}


async def _async_purge_path(hass: HomeAssistant, call: ServiceCall) -> None:
    coordinator = _get_coordinator(hass, call)
    try:
        await coordinator.async_purge_entity(call.data[ATTR_ENTITY])
    except SyncFailed as exc:
        raise HomeAssistantError(f"Unable to purge {call.data[ATTR_ENTITY]}: {exc}") from exc


def async_register_services(hass: HomeAssistant) -> None:
    """Register the integration services once per Home Assistant instance."""
    if hass.services.has_service(DOMAIN, SERVICE_START_OBSERVING):
        return

    def _bind(handler):
        async def _handle(call: ServiceCall):
            return await handler(hass, call)
        return _handle

    hass.services.async_register(
        DOMAIN, SERVICE_START_OBSERVING, _bind(_async_start_observing), schema=START_OBSERVING_SCHEMA
    )
    hass.services.async_register(
        DOMAIN, SERVICE_STOP_OBSERVING, _bind(_async_stop_observing), schema=STOP_OBSERVING_SCHEMA
    )
    hass.services.async_register(
        DOMAIN,
        SERVICE_CAPTURE_LOCATION,
        _bind(_async_capture_location),
        schema=CAPTURE_LOCATION_SCHEMA,
        supports_response=SupportsResponse.OPTIONAL,
    )
    hass.services.async_register(
        DOMAIN,
        SERVICE_QUERY_RANGE,
        _bind(_async_query_range),
        schema=RANGE_SCHEMA,
        supports_response=SupportsResponse.ONLY,
    )
    hass.services.async_register(
        DOMAIN,
        SERVICE_AVAILABLE_DATES,
        _bind(_async_available_dates),
        schema=ENTITY_SCHEMA,
        supports_response=SupportsResponse.ONLY,
    )
    hass.services.async_register(
        DOMAIN,
        SERVICE_LOAD_HISTORY,
        _bind(_async_load_history),
        schema=RANGE_SCHEMA,
        supports_response=SupportsResponse.OPTIONAL,
    )
    hass.services.async_register(DOMAIN, SERVICE_PURGE_PATH, _bind(_async_purge_path), schema=ENTITY_SCHEMA)


def async_unregister_services(hass: HomeAssistant) -> None:
    """Remove the services once the last entry is unloaded."""
    for service in (
        SERVICE_START_OBSERVING,
        SERVICE_STOP_OBSERVING,
        SERVICE_CAPTURE_LOCATION,
        SERVICE_QUERY_RANGE,
        SERVICE_AVAILABLE_DATES,
        SERVICE_LOAD_HISTORY,
        SERVICE_PURGE_PATH,
    ):
        hass.services.async_remove(DOMAIN, service)
