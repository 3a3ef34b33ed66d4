"""
Platform for path sensors.
This module is responsible for setting up the tracking status, point count
and distance sensors of the recorded device.
"""
from __future__ import annotations

import logging

from homeassistant import config_entries
from homeassistant.components.sensor import SensorDeviceClass, SensorEntity, SensorStateClass
from homeassistant.const import UnitOfLength
from homeassistant.core import HomeAssistant
from homeassistant.helpers.entity import DeviceInfo
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from .coordinator import PathTrackCoordinator
from .models import TrackingStatus

_LOGGER = logging.getLogger(__name__)


class PathTrackSensor(CoordinatorEntity[PathTrackCoordinator], SensorEntity):
    """Base for sensors describing the path of one entity."""

    _key: str = ""
    _label: str = ""

    def __init__(self, coordinator: PathTrackCoordinator, entity_id: str) -> None:
        super().__init__(coordinator)
        self._tracked_id = entity_id
        guid = coordinator.entry_data.get("guid", "default")
        self._attr_unique_id = f"pathtrack_{guid}_{entity_id}_{self._key}"
        self._attr_name = f"{entity_id} {self._label}"

    @property
    def device_info(self) -> DeviceInfo | None:
        """Return the device info."""
        return self.coordinator.get_device_info(self._tracked_id)


class PathTrackStatusSensor(PathTrackSensor):
    """
    Why the path looks the way it does: tracking, low accuracy, no signal,
    permission denied or sync error.
    """

    _key = "status"
    _label = "Tracking Status"
    _attr_icon = "mdi:crosshairs-question"
    _attr_device_class = SensorDeviceClass.ENUM
    _attr_options = [status.value for status in TrackingStatus]

    @property
    def native_value(self) -> str:
        return self.coordinator.data.status_of(self._tracked_id).value

    @property
    def extra_state_attributes(self) -> dict:
        rejection = self.coordinator.data.rejections.get(self._tracked_id)
        if rejection is None:
            return {}
        return {
            "rejected_accuracy_m": rejection.accuracy_m,
            "accuracy_threshold_m": rejection.threshold_m,
            "rejected_at": rejection.rejected_at.isoformat(),
        }


class PathTrackPointsSensor(PathTrackSensor):
    """Number of fixes in the reconciled path."""

    _key = "points"
    _label = "Path Points"
    _attr_icon = "mdi:map-marker-multiple"
    _attr_state_class = SensorStateClass.MEASUREMENT

    @property
    def native_value(self) -> int:
        return len(self.coordinator.get_current_path(self._tracked_id))


class PathTrackDistanceSensor(PathTrackSensor):
    """Distance travelled along the reconciled path."""

    _key = "distance"
    _label = "Path Distance"
    _attr_icon = "mdi:map-marker-distance"
    _attr_device_class = SensorDeviceClass.DISTANCE
    _attr_state_class = SensorStateClass.MEASUREMENT
    _attr_native_unit_of_measurement = UnitOfLength.METERS
    _attr_suggested_display_precision = 0

    @property
    def native_value(self) -> float:
        return round(self.coordinator.route_stats(self._tracked_id).total_distance_m, 1)


async def async_setup_entry(
    hass: HomeAssistant,
    config_entry: config_entries.ConfigEntry,
    async_add_entities,
):
    """Add sensors for passed config_entry in HA."""
    coordinator: PathTrackCoordinator = config_entry.runtime_data
    if not coordinator.device_id:
        _LOGGER.debug("No recorded device configured, skipping path sensors")
        return

    device_id = coordinator.device_id
    async_add_entities(
        [
            PathTrackStatusSensor(coordinator, device_id),
            PathTrackPointsSensor(coordinator, device_id),
            PathTrackDistanceSensor(coordinator, device_id),
        ]
    )
