"""
Shared helpers and factory functions for Path Track tests.
Import from this module in each test file to avoid duplication.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

from custom_components.pathtrack.coordinator import PathTrackCoordinator
from custom_components.pathtrack.models import Fix, FixRole, RawFix, SourceKind


def ts(value: str) -> datetime:
    """Aware UTC datetime from an ISO string without offset."""
    return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)


def make_raw(lat: float = 17.385, lon: float = 78.486, accuracy: float | None = 8.0,
             captured_at: str = "2024-01-01T10:00:00", **kwargs) -> RawFix:
    return RawFix(latitude=lat, longitude=lon, accuracy_m=accuracy, captured_at=ts(captured_at), **kwargs)


def make_fix(entity_id: str = "T1", lat: float | None = 17.385, lon: float | None = 78.486,
             captured_at: str = "2024-01-01T10:00:00", accuracy: float | None = 8.0,
             source_kind: SourceKind = SourceKind.SATELLITE, role: FixRole | None = None,
             **kwargs) -> Fix:
    return Fix(
        entity_id=entity_id,
        latitude=lat,
        longitude=lon,
        accuracy_m=accuracy,
        captured_at=ts(captured_at),
        source_kind=source_kind,
        role=role,
        **kwargs,
    )


def make_store(stored: dict | None = None) -> MagicMock:
    """A stand-in for homeassistant.helpers.storage.Store."""
    store = MagicMock()
    store.async_load = AsyncMock(return_value=stored)
    store.async_save = AsyncMock()
    store.async_delay_save = MagicMock()
    return store


def make_entry_data(**kwargs) -> dict:
    defaults = dict(
        guid="test-guid",
        entry_name="Test Entry",
        api_url="http://pathstore.local:5000",
        api_token="",
        device_id="T1",
        source_entity="device_tracker.phone",
        accuracy_threshold=50.0,
        allow_degraded=False,
        duplicate_epsilon=1e-6,
        observe_interval=5,
        background_interval=30,
        reverse_geocode=False,
        geocoder_url="",
        time_zone="",
    )
    defaults.update(kwargs)
    return defaults


def make_hass() -> MagicMock:
    hass = MagicMock()
    hass.async_create_task = lambda coro, *args, **kwargs: asyncio.ensure_future(coro)
    hass.async_create_background_task = lambda coro, *args, **kwargs: asyncio.ensure_future(coro)
    return hass


def make_coordinator(hass=None, stored: dict | None = None, **entry_kwargs) -> PathTrackCoordinator:
    """Build a coordinator with a mocked hass, a mocked Store and a mocked remote store."""
    if hass is None:
        hass = make_hass()
    with patch("custom_components.pathtrack.local_cache.Store", return_value=make_store(stored)):
        coord = PathTrackCoordinator(hass, make_entry_data(**entry_kwargs))

    remote = coord.store.remote
    remote.async_post_fix = AsyncMock()
    remote.async_fetch_range = AsyncMock(return_value=[])
    remote.async_fetch_since = AsyncMock(return_value=[])
    remote.async_fetch_latest = AsyncMock(return_value=None)
    remote.async_fetch_available_dates = AsyncMock(return_value=[])
    remote.async_purge = AsyncMock()
    return coord
