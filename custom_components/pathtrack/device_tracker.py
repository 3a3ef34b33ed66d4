"""
Platform for GPS tracker integration.
This module is responsible for setting up the device tracker entities
and updating their position from the reconciled path held by the coordinator.
"""
from __future__ import annotations

import logging

from homeassistant import config_entries
from homeassistant.components.device_tracker import SourceType
from homeassistant.components.device_tracker.config_entry import TrackerEntity
from homeassistant.core import HomeAssistant
from homeassistant.helpers.entity import DeviceInfo
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from .coordinator import PathTrackCoordinator
from .models import Fix

_LOGGER = logging.getLogger(__name__)


class PathTrackTracker(CoordinatorEntity[PathTrackCoordinator], TrackerEntity):
    """
    Position of one tracked entity.
    Shows the newest fix of the entity's reconciled path.
    """

    _attr_icon = "mdi:map-marker-path"

    def __init__(self, coordinator: PathTrackCoordinator, entity_id: str) -> None:
        """Initialize the tracker."""
        super().__init__(coordinator)
        self._tracked_id = entity_id
        guid = coordinator.entry_data.get("guid", "default")
        self._attr_unique_id = f"pathtrack_{guid}_{entity_id}_location"
        self._attr_name = f"{entity_id} Location"

    @property
    def tracked_id(self) -> str | None:
        return self._tracked_id

    @property
    def _fix(self) -> Fix | None:
        if self.tracked_id is None:
            return None
        fix = self.coordinator.data.latest(self.tracked_id)
        if fix is None or not fix.has_coordinates:
            return None
        return fix

    @property
    def device_info(self) -> DeviceInfo | None:
        """Return the device info."""
        if self.tracked_id is None:
            return None
        return self.coordinator.get_device_info(self.tracked_id)

    @property
    def available(self) -> bool:
        return super().available and self._fix is not None

    @property
    def latitude(self) -> float | None:
        """Return latitude value of the device."""
        fix = self._fix
        return fix.latitude if fix is not None else None

    @property
    def longitude(self) -> float | None:
        """Return longitude value of the device."""
        fix = self._fix
        return fix.longitude if fix is not None else None

    @property
    def location_accuracy(self) -> int:
        fix = self._fix
        if fix is None or fix.accuracy_m is None:
            return 0
        return int(round(fix.accuracy_m))

    @property
    def source_type(self) -> SourceType:
        """Return the source type, eg gps or router, of the device."""
        return SourceType.GPS

    @property
    def extra_state_attributes(self) -> dict:
        fix = self._fix
        attributes = {"tracked_entity": self.tracked_id}
        if self.tracked_id is not None:
            attributes["status"] = self.coordinator.data.status_of(self.tracked_id).value
        if fix is not None:
            attributes.update(
                {
                    "captured_at": fix.captured_at.isoformat(),
                    "source_kind": fix.source_kind.value,
                    "address": fix.address,
                    "speed": fix.speed,
                    "heading": fix.heading,
                }
            )
        return attributes


class PathTrackObservedTracker(PathTrackTracker):
    """Follows whatever entity the sync scheduler currently observes."""

    _attr_icon = "mdi:crosshairs-gps"

    def __init__(self, coordinator: PathTrackCoordinator) -> None:
        super().__init__(coordinator, "observed")
        guid = coordinator.entry_data.get("guid", "default")
        self._attr_unique_id = f"pathtrack_{guid}_observed_location"
        self._attr_name = "Observed Location"

    @property
    def tracked_id(self) -> str | None:
        return self.coordinator.data.observed_entity

    @property
    def device_info(self) -> DeviceInfo | None:
        return None


async def async_setup_entry(
    hass: HomeAssistant,
    config_entry: config_entries.ConfigEntry,
    async_add_entities,
):
    """Add trackers for passed config_entry in HA."""
    coordinator: PathTrackCoordinator = config_entry.runtime_data

    entities = [PathTrackObservedTracker(coordinator)]
    if coordinator.device_id:
        entities.append(PathTrackTracker(coordinator, coordinator.device_id))
    _LOGGER.debug("Adding %s Path Track trackers", len(entities))
    async_add_entities(entities)
