"""Config flow for Path Track integration."""
from __future__ import annotations
import logging
import uuid
from typing import Any, Dict, Optional
import homeassistant.helpers.config_validation as cv
import voluptuous as vol

from homeassistant import config_entries
from homeassistant.core import callback
from homeassistant.util import dt as dt_util

from . import _validate_connection
from .const import (
    CONF_ACCURACY_THRESHOLD,
    CONF_ALLOW_DEGRADED,
    CONF_API_TOKEN,
    CONF_API_URL,
    CONF_BACKGROUND_INTERVAL,
    CONF_DEVICE_ID,
    CONF_DUPLICATE_EPSILON,
    CONF_ENTRY_NAME,
    CONF_GEOCODER_URL,
    CONF_OBSERVE_INTERVAL,
    CONF_REVERSE_GEOCODE,
    CONF_SOURCE_ENTITY,
    CONF_TIME_ZONE,
    DEFAULT_ACCURACY_THRESHOLD,
    DEFAULT_BACKGROUND_INTERVAL,
    DEFAULT_DUPLICATE_EPSILON,
    DEFAULT_GEOCODER_URL,
    DEFAULT_OBSERVE_INTERVAL,
    DOMAIN,
)

_LOGGER = logging.getLogger(__name__)

interval = vol.All(vol.Coerce(int), vol.Range(min=1, max=3600))

# key → default; the order is the form order
FIELD_DEFAULTS: Dict[str, Any] = {
    CONF_ENTRY_NAME: "My Path Track",
    CONF_API_URL: "",
    CONF_API_TOKEN: "",
    CONF_DEVICE_ID: "",
    CONF_SOURCE_ENTITY: "",
    CONF_ACCURACY_THRESHOLD: DEFAULT_ACCURACY_THRESHOLD,
    CONF_ALLOW_DEGRADED: False,
    CONF_DUPLICATE_EPSILON: DEFAULT_DUPLICATE_EPSILON,
    CONF_OBSERVE_INTERVAL: DEFAULT_OBSERVE_INTERVAL,
    CONF_BACKGROUND_INTERVAL: DEFAULT_BACKGROUND_INTERVAL,
    CONF_REVERSE_GEOCODE: False,
    CONF_GEOCODER_URL: DEFAULT_GEOCODER_URL,
    CONF_TIME_ZONE: "",
}

VALIDATORS: Dict[str, Any] = {
    CONF_ENTRY_NAME: cv.string,
    CONF_API_URL: cv.string,
    CONF_API_TOKEN: cv.string,
    CONF_DEVICE_ID: cv.string,
    CONF_SOURCE_ENTITY: cv.string,
    CONF_ACCURACY_THRESHOLD: vol.Coerce(float),
    CONF_ALLOW_DEGRADED: cv.boolean,
    CONF_DUPLICATE_EPSILON: vol.Coerce(float),
    CONF_OBSERVE_INTERVAL: interval,
    CONF_BACKGROUND_INTERVAL: interval,
    CONF_REVERSE_GEOCODE: cv.boolean,
    CONF_GEOCODER_URL: cv.string,
    CONF_TIME_ZONE: cv.string,
}


def build_schema(defaults: Dict[str, Any]) -> vol.Schema:
    return vol.Schema(
        {
            vol.Required(key, default=defaults.get(key, default)): VALIDATORS[key]
            for key, default in FIELD_DEFAULTS.items()
        }
    )


CONFIG_SCHEMA = build_schema(FIELD_DEFAULTS)


def validate_input(data: Dict[str, Any]) -> Dict[str, str]:
    """Return form errors for user input; empty when the input is usable."""
    errors: Dict[str, str] = {}
    # If entry_name is null or empty string, add error
    if not data.get(CONF_ENTRY_NAME):
        errors['base'] = 'entry_name_required'
    # If api_url is null or empty string, add error
    if not data.get(CONF_API_URL):
        errors['base'] = 'api_url_required'
    elif not str(data[CONF_API_URL]).startswith(("http://", "https://")):
        errors['base'] = 'invalid_api_url'
    # A source entity records fixes, so it needs a device id to record them for
    if data.get(CONF_SOURCE_ENTITY) and not data.get(CONF_DEVICE_ID):
        errors['base'] = 'device_id_required'
    if data.get(CONF_ACCURACY_THRESHOLD) is not None and float(data[CONF_ACCURACY_THRESHOLD]) <= 0:
        errors['base'] = 'invalid_threshold'
    if data.get(CONF_DUPLICATE_EPSILON) is not None and float(data[CONF_DUPLICATE_EPSILON]) < 0:
        errors['base'] = 'invalid_epsilon'
    if data.get(CONF_TIME_ZONE) and dt_util.get_time_zone(data[CONF_TIME_ZONE]) is None:
        errors['base'] = 'invalid_time_zone'
    return errors


class CustomFlow(config_entries.ConfigFlow, domain=DOMAIN):
    data: Optional[Dict[str, Any]]

    async def async_step_user(self, user_input: Optional[Dict[str, Any]] = None):
        errors: Dict[str, str] = {}
        if user_input is not None:
            self.data = dict(user_input)
            # Create new guid for the entry
            self.data['guid'] = str(uuid.uuid4())
            errors = validate_input(self.data)
            if not errors:
                # One entry per store and recorded device
                self._async_abort_entries_match(
                    {CONF_API_URL: self.data[CONF_API_URL], CONF_DEVICE_ID: self.data.get(CONF_DEVICE_ID, "")}
                )
                error = await _validate_connection(self.data[CONF_API_URL], self.data.get(CONF_API_TOKEN))
                if error:
                    errors["base"] = error
            if not errors:
                return self.async_create_entry(title=f"{self.data[CONF_ENTRY_NAME]}", data=self.data)

        return self.async_show_form(step_id="user", data_schema=CONFIG_SCHEMA, errors=errors)

    @staticmethod
    @callback
    def async_get_options_flow(config_entry):
        """Get the options flow for this handler."""
        return OptionsFlowHandler(config_entry)


class OptionsFlowHandler(config_entries.OptionsFlow):
    """Handles options flow for the component."""

    def __init__(self, config_entry: config_entries.ConfigEntry) -> None:
        self._entry = config_entry

    def _defaults(self) -> Dict[str, Any]:
        # Options override data
        defaults = dict(FIELD_DEFAULTS)
        for key in FIELD_DEFAULTS:
            if key in self._entry.data:
                defaults[key] = self._entry.data[key]
            if key in self._entry.options:
                defaults[key] = self._entry.options[key]
        return defaults

    async def async_step_init(
        self, user_input: Dict[str, Any] = None
    ) -> Dict[str, Any]:
        errors: Dict[str, str] = {}

        if user_input is not None:
            errors = validate_input(user_input)
            if not errors:
                new_data = {'guid': self._entry.data['guid'], **user_input}

                # Rename the entry in the UI
                self.hass.config_entries.async_update_entry(
                    self._entry,
                    title=new_data[CONF_ENTRY_NAME],
                )

                return self.async_create_entry(title=f"{new_data[CONF_ENTRY_NAME]}", data=new_data)

        return self.async_show_form(step_id="init", data_schema=build_schema(self._defaults()), errors=errors)
