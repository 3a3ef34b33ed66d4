import logging

from homeassistant import config_entries, core
from homeassistant.const import Platform
from homeassistant.core import HomeAssistant
from homeassistant.exceptions import ConfigEntryNotReady

from .const import CONF_API_TOKEN, CONF_API_URL, DOMAIN, HEALTH_PATH
from .coordinator import PathTrackCoordinator
from .requests import build_headers, check_availability
from .services import async_register_services, async_unregister_services

PLATFORMS: list[Platform] = [Platform.DEVICE_TRACKER, Platform.SENSOR]
_LOGGER = logging.getLogger(__name__)


def _entry_data(entry: config_entries.ConfigEntry) -> dict:
    """Entry data with options applied on top."""
    return {**entry.data, **entry.options}


async def _validate_connection(api_url: str, token: str | None) -> str | None:
    """
    Check that the remote path store answers on its health endpoint.

    Returns:
        None when reachable, "cannot_connect" otherwise
    """
    url = f"{api_url.rstrip('/')}/{HEALTH_PATH}"
    if await check_availability(url, headers=build_headers(token)):
        return None
    return "cannot_connect"


async def async_setup_entry(
    hass: core.HomeAssistant, entry: config_entries.ConfigEntry
) -> bool:
    """Set up platform from a ConfigEntry."""
    data = _entry_data(entry)

    error = await _validate_connection(data[CONF_API_URL], data.get(CONF_API_TOKEN))
    if error == "cannot_connect":
        raise ConfigEntryNotReady(f"Path store at {data[CONF_API_URL]} is not reachable")

    coordinator = PathTrackCoordinator(hass, data, entry)
    await coordinator.async_config_entry_first_refresh()
    entry.runtime_data = coordinator

    entry.async_on_unload(
        entry.add_update_listener(_async_update_listener)
    )

    await hass.config_entries.async_forward_entry_setups(entry, PLATFORMS)

    coordinator.start_recording()
    async_register_services(hass)
    return True


async def _async_update_listener(hass: HomeAssistant, config_entry):
    """Handle config options update."""
    # Reload the integration when the options change.
    await hass.config_entries.async_reload(config_entry.entry_id)


async def async_unload_entry(
    hass: core.HomeAssistant, entry: config_entries.ConfigEntry
) -> bool:
    """Unload a config entry."""
    unloaded = await hass.config_entries.async_unload_platforms(entry, PLATFORMS)
    if unloaded:
        await entry.runtime_data.async_shutdown()
        remaining = [
            other for other in hass.config_entries.async_entries(DOMAIN)
            if other.entry_id != entry.entry_id and other.state is config_entries.ConfigEntryState.LOADED
        ]
        if not remaining:
            async_unregister_services(hass)
    return unloaded
