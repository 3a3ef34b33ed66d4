"""
DataUpdateCoordinator for the Path Track integration.

Responsibilities:
- Own the path store (remote client + local cache mirror), the enricher,
  the position sampler and the sync scheduler for the lifetime of a config entry.
- Run the write pipeline: sampler → classifier → enricher → path store.
- Be the single writer of reconciled paths: every source batch goes through
  _apply_merge, which builds the merged path immutably and swaps the snapshot.
- Expose the produced interface: start_observing, stop_observing,
  get_current_path, query_range, list_available_dates.
- Retry unsynced local writes on every update_interval tick.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from datetime import date, datetime, time, timedelta
from typing import Iterable

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant
from homeassistant.helpers.update_coordinator import DataUpdateCoordinator, UpdateFailed
from homeassistant.util import dt as dt_util

from .api.geocoding import NominatimGeocoder
from .api.path_store import RemotePathStore
from .classifier import classify
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
    DEFAULT_ACQUIRE_TIMEOUT,
    DEFAULT_BACKGROUND_INTERVAL,
    DEFAULT_DUPLICATE_EPSILON,
    DEFAULT_GEOCODER_URL,
    DEFAULT_MAX_CACHE_AGE,
    DEFAULT_OBSERVE_INTERVAL,
    DOMAIN,
    PENDING_FLUSH_INTERVAL,
    STORAGE_KEY,
    VERSION,
)
from .coordinator_data import TrackerData
from .enricher import PlaceEnricher
from .errors import AccuracyRejected, AcquisitionError, PermissionDenied, SyncFailed
from .local_cache import LocalPathCache
from .models import (
    AccuracyPolicy,
    DateAvailability,
    Fix,
    FixRole,
    RawFix,
    Rejection,
    RouteStats,
    SamplerOptions,
    TrackingStatus,
)
from .path_store import PathStore
from .query import list_available_dates, query_range, route_stats
from .reconciliation import latest_timestamp, merge
from .sampler import PositionSampler
from .scheduler import SyncScheduler

__all__ = ["PathTrackCoordinator", "TrackerData"]

_LOGGER = logging.getLogger(__name__)


class PathTrackCoordinator(DataUpdateCoordinator[TrackerData]):
    """
    Coordinator for the Path Track integration.

    Keeps the reconciled path of every known entity in an immutable snapshot
    and pushes a new snapshot to entities whenever a merge changes it.
    """

    def __init__(
        self,
        hass: HomeAssistant,
        entry_data: dict,
        config_entry: ConfigEntry | None = None,
    ) -> None:
        """Initialize the coordinator from config-entry data and options."""
        super().__init__(
            hass,
            _LOGGER,
            config_entry=config_entry,
            name=DOMAIN,
            # HA's own tick only retries pending writes; observation runs on the scheduler
            update_interval=timedelta(seconds=PENDING_FLUSH_INTERVAL),
        )
        self._entry_data = entry_data

        self.policy = AccuracyPolicy(
            max_accuracy_m=float(entry_data.get(CONF_ACCURACY_THRESHOLD, DEFAULT_ACCURACY_THRESHOLD)),
            allow_degraded=bool(entry_data.get(CONF_ALLOW_DEGRADED, False)),
        )
        self.epsilon = float(entry_data.get(CONF_DUPLICATE_EPSILON, DEFAULT_DUPLICATE_EPSILON))
        self.device_id: str | None = entry_data.get(CONF_DEVICE_ID) or None
        self.time_zone = dt_util.DEFAULT_TIME_ZONE
        if entry_data.get(CONF_TIME_ZONE):
            self.time_zone = dt_util.get_time_zone(entry_data[CONF_TIME_ZONE]) or dt_util.DEFAULT_TIME_ZONE

        remote = RemotePathStore(entry_data[CONF_API_URL], entry_data.get(CONF_API_TOKEN), self.policy)
        cache = LocalPathCache(
            hass, self.policy, key=f"{STORAGE_KEY}.{entry_data.get('guid', 'default')}", epsilon=self.epsilon
        )
        self.store = PathStore(remote, cache)

        geocoder = None
        if entry_data.get(CONF_REVERSE_GEOCODE, False):
            geocoder = NominatimGeocoder(entry_data.get(CONF_GEOCODER_URL) or DEFAULT_GEOCODER_URL)
        self.enricher = PlaceEnricher(geocoder)

        source = entry_data.get(CONF_SOURCE_ENTITY)
        self.sampler: PositionSampler | None = PositionSampler(hass, source) if source else None

        self.scheduler = SyncScheduler(
            self._async_sync_tick,
            interval=float(entry_data.get(CONF_OBSERVE_INTERVAL, DEFAULT_OBSERVE_INTERVAL)),
            background_interval=float(entry_data.get(CONF_BACKGROUND_INTERVAL, DEFAULT_BACKGROUND_INTERVAL)),
        )

        # Entities whose local cache mirror has been merged during the current observation
        self._local_merged: set[str] = set()
        # entity_id → (path the index was computed from, index)
        self._availability: dict[str, tuple[tuple[Fix, ...], tuple[DateAvailability, ...]]] = {}
        self._recording_task: asyncio.Task | None = None
        self._initial_refresh_done: bool = False

        self.data = TrackerData()

    # ------------------------------------------------------------------
    # HA entry point
    # ------------------------------------------------------------------

    async def _async_update_data(self) -> TrackerData:
        """
        First call: load the local cache mirror and seed every cached path.
        Subsequent calls: push fixes that are still pending to the remote store.
        """
        if not self._initial_refresh_done:
            try:
                await self.store.async_load()
            except Exception as exc:
                raise UpdateFailed(f"Unable to load local path cache: {exc}") from exc

            paths = dict(self.data.paths)
            for entity_id in self.store.cache.entities():
                paths[entity_id] = merge(paths.get(entity_id, ()), self.store.local_fixes(entity_id), self.epsilon)
            self._initial_refresh_done = True
            return dataclasses.replace(self.data, paths=paths)

        await self.store.async_flush_pending()
        return self.data

    # ------------------------------------------------------------------
    # Single writer of canonical path state
    # ------------------------------------------------------------------

    def _apply_merge(
        self,
        entity_id: str,
        incoming: Iterable[Fix],
        *,
        status: TrackingStatus | None = None,
        last_known: datetime | None = None,
    ) -> tuple[Fix, ...]:
        """Merge incoming into the entity's path and publish a new snapshot."""
        merged = merge(self.data.path(entity_id), incoming, self.epsilon)

        paths = dict(self.data.paths)
        paths[entity_id] = merged
        known = dict(self.data.last_known)
        if last_known is not None and (entity_id not in known or last_known > known[entity_id]):
            known[entity_id] = last_known
        statuses = dict(self.data.status)
        if status is not None:
            statuses[entity_id] = status

        self.async_set_updated_data(
            dataclasses.replace(self.data, paths=paths, last_known=known, status=statuses)
        )
        return merged

    def _set_status(self, entity_id: str, status: TrackingStatus) -> None:
        if self.data.status.get(entity_id) == status:
            return
        statuses = dict(self.data.status)
        statuses[entity_id] = status
        self.async_set_updated_data(dataclasses.replace(self.data, status=statuses))

    def _record_rejection(self, entity_id: str, exc: AccuracyRejected) -> None:
        rejections = dict(self.data.rejections)
        rejections[entity_id] = Rejection(
            accuracy_m=exc.accuracy_m,
            threshold_m=exc.threshold_m,
            rejected_at=dt_util.utcnow(),
            reason=str(exc),
        )
        statuses = dict(self.data.status)
        statuses[entity_id] = TrackingStatus.LOW_ACCURACY
        self.async_set_updated_data(
            dataclasses.replace(self.data, rejections=rejections, status=statuses)
        )

    # ------------------------------------------------------------------
    # Write path: sampler → classifier → enricher → path store
    # ------------------------------------------------------------------

    async def async_record_raw_fix(
        self,
        raw: RawFix,
        *,
        entity_id: str | None = None,
        role: FixRole | None = None,
        manual: bool = False,
    ) -> Fix:
        """
        Classify, enrich and persist one raw fix, then merge it into the path.

        Raises:
            AccuracyRejected: The fix failed the accuracy policy; the rejection
                is recorded so the entity reports low_accuracy, not no data.
        """
        entity_id = entity_id or self.device_id
        if not entity_id:
            raise ValueError("No entity to record the fix for")

        try:
            fix = classify(raw, entity_id, self.policy, role=role, manual=manual)
        except AccuracyRejected as exc:
            _LOGGER.debug("Rejected fix for %s: %s", entity_id, exc)
            self._record_rejection(entity_id, exc)
            raise

        fix = await self.enricher.async_enrich(fix)
        await self.store.async_append(fix)
        self._apply_merge(entity_id, (fix,), status=TrackingStatus.TRACKING)
        return fix

    async def async_capture_fix(
        self,
        options: SamplerOptions | None = None,
        role: FixRole | None = FixRole.CURRENT,
    ) -> Fix:
        """
        Acquire one fix from the location source and record it.

        Raises:
            AcquisitionError: The source could not deliver a fix
            AccuracyRejected: The fix failed the accuracy policy
        """
        if self.sampler is None or not self.device_id:
            raise PermissionDenied(
                "No location source configured",
                remediation="Configure a source entity and device id for this entry.",
            )
        if options is None:
            options = SamplerOptions(timeout=DEFAULT_ACQUIRE_TIMEOUT, max_cache_age=DEFAULT_MAX_CACHE_AGE)
        try:
            raw = await self.sampler.async_acquire_once(options)
        except AcquisitionError as exc:
            self._on_acquisition_error(exc)
            raise
        return await self.async_record_raw_fix(raw, role=role)

    def _on_acquisition_error(self, exc: AcquisitionError) -> None:
        if self.device_id is None:
            return
        if isinstance(exc, PermissionDenied):
            self._set_status(self.device_id, TrackingStatus.PERMISSION_DENIED)
        else:
            self._set_status(self.device_id, TrackingStatus.NO_SIGNAL)

    # ------------------------------------------------------------------
    # Live stream
    # ------------------------------------------------------------------

    @property
    def is_recording(self) -> bool:
        return self._recording_task is not None and not self._recording_task.done()

    def start_recording(self) -> bool:
        """Subscribe to the location source and record every usable fix."""
        if self.sampler is None or not self.device_id:
            return False
        if self.is_recording:
            return True
        self._recording_task = self.hass.async_create_background_task(
            self._async_record_stream(), f"{DOMAIN} recording {self.device_id}"
        )
        return True

    def stop_recording(self) -> None:
        if self._recording_task is not None:
            self._recording_task.cancel()
        self._recording_task = None

    async def _async_record_stream(self) -> None:
        options = SamplerOptions(high_accuracy_requested=False, max_cache_age=0)
        last_reading = None
        async for raw in self.sampler.acquire_stream(options, on_error=self._on_acquisition_error):
            reading = (raw.latitude, raw.longitude, raw.accuracy_m)
            if reading == last_reading:
                # Attribute-only update of the source (battery, ...)
                _LOGGER.debug("Skipping unchanged position of %s", self.device_id)
                continue
            last_reading = reading
            try:
                await self.async_record_raw_fix(raw)
            except AccuracyRejected:
                # Recorded as low_accuracy; wait for a better fix
                continue
            except Exception as exc:
                _LOGGER.error("Failed to record fix for %s: %s", self.device_id, exc)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def start_observing(self, entity_id: str, *, background: bool = False) -> None:
        """Start syncing entity_id; any other observation is stopped first."""
        if self.scheduler.observed_entity != entity_id:
            self._local_merged.discard(entity_id)
        self.scheduler.start_observing(entity_id, background=background)
        if self.data.observed_entity != entity_id:
            self.async_set_updated_data(dataclasses.replace(self.data, observed_entity=entity_id))

    def stop_observing(self, entity_id: str | None = None) -> bool:
        """Stop syncing; no further tick mutates the path of that entity."""
        stopped = self.scheduler.stop_observing(entity_id)
        if stopped:
            self.async_set_updated_data(dataclasses.replace(self.data, observed_entity=None))
        return stopped

    async def _async_sync_tick(self, entity_id: str, generation: int) -> None:
        """
        One scheduler tick: pull fixes newer than the last known timestamp and
        merge them. The local cache mirror joins the first tick of an observation.
        """
        local: tuple[Fix, ...] = ()
        if entity_id not in self._local_merged:
            local = self.store.local_fixes(entity_id)

        since = self.data.last_known.get(entity_id)
        try:
            fetched = await self._async_fetch_new(entity_id, since)
        except SyncFailed as exc:
            if not self.scheduler.is_current(entity_id, generation):
                return
            _LOGGER.warning("Sync for %s failed, retrying on next tick: %s", entity_id, exc)
            self._local_merged.add(entity_id)
            self._apply_merge(entity_id, local, status=TrackingStatus.SYNC_ERROR)
            return

        if not self.scheduler.is_current(entity_id, generation):
            _LOGGER.debug("Discarding late sync response for %s", entity_id)
            return

        self._local_merged.add(entity_id)
        status = None
        if self.data.status_of(entity_id) in (TrackingStatus.IDLE, TrackingStatus.SYNC_ERROR):
            status = TrackingStatus.TRACKING
        self._apply_merge(
            entity_id, (*local, *fetched), status=status, last_known=latest_timestamp(fetched)
        )

    async def _async_fetch_new(self, entity_id: str, since: datetime | None) -> list[Fix]:
        if since is not None:
            return await self.store.async_fetch_since(entity_id, since)
        # Nothing known yet: today's fixes plus the latest one so the current
        # position is known even when it is older. Earlier days load on demand.
        midnight = datetime.combine(dt_util.now(self.time_zone).date(), time.min, tzinfo=self.time_zone)
        fetched = await self.store.async_fetch_since(entity_id, midnight)
        if not fetched:
            latest = await self.store.async_fetch_latest(entity_id)
            if latest is not None:
                fetched = [latest]
        return fetched

    # ------------------------------------------------------------------
    # Read accessors over the in-memory snapshot
    # ------------------------------------------------------------------

    def get_current_path(self, entity_id: str) -> tuple[Fix, ...]:
        return self.data.path(entity_id)

    def query_range(self, entity_id: str, start_date: date, end_date: date) -> tuple[Fix, ...]:
        return query_range(self.data.path(entity_id), start_date, end_date, self.time_zone)

    def list_available_dates(self, entity_id: str) -> tuple[DateAvailability, ...]:
        """Availability index, recomputed lazily when the path changed."""
        path = self.data.path(entity_id)
        cached = self._availability.get(entity_id)
        if cached is not None and cached[0] is path:
            return cached[1]
        index = list_available_dates(entity_id, path, self.time_zone)
        self._availability[entity_id] = (path, index)
        return index

    def route_stats(
        self, entity_id: str, start_date: date | None = None, end_date: date | None = None
    ) -> RouteStats:
        fixes = self.data.path(entity_id)
        if start_date is not None:
            fixes = query_range(fixes, start_date, end_date or start_date, self.time_zone)
        return route_stats(fixes)

    # ------------------------------------------------------------------
    # Async helpers backed by the remote store
    # ------------------------------------------------------------------

    async def async_fetch_available_dates(self, entity_id: str) -> tuple[DateAvailability, ...]:
        """
        Per-day availability in the reference time zone, so every listed date
        answers query_range with its fixes.

        The store groups by UTC day; with UTC as reference its aggregate is used
        as-is. Otherwise the entity's history is loaded and grouped locally.
        Falls back to the in-memory index when the store is unreachable.
        """
        try:
            if str(self.time_zone) in ("UTC", "Etc/UTC"):
                return tuple(await self.store.async_available_dates(entity_id))
            fixes = await self.store.async_fetch_range(entity_id, None, None)
        except SyncFailed as exc:
            _LOGGER.warning("Remote availability for %s unavailable, using local path: %s", entity_id, exc)
            return self.list_available_dates(entity_id)
        self._apply_merge(entity_id, fixes)
        return self.list_available_dates(entity_id)

    async def async_load_range(self, entity_id: str, start_date: date, end_date: date) -> tuple[Fix, ...]:
        """
        Pull a historical range from the remote store into the path, then query it.

        Raises:
            SyncFailed: The remote store could not be reached
        """
        start = datetime.combine(start_date, time.min, tzinfo=self.time_zone)
        end = datetime.combine(end_date, time.max, tzinfo=self.time_zone)
        fixes = await self.store.async_fetch_range(entity_id, start, end)
        self._apply_merge(entity_id, fixes)
        return self.query_range(entity_id, start_date, end_date)

    async def async_purge_entity(self, entity_id: str) -> None:
        """Drop the whole path of a deregistered entity, remotely and locally."""
        self.stop_observing(entity_id)
        await self.store.async_purge(entity_id)
        self._availability.pop(entity_id, None)
        self._local_merged.discard(entity_id)

        def _without(mapping: dict) -> dict:
            return {k: v for k, v in mapping.items() if k != entity_id}

        self.async_set_updated_data(
            dataclasses.replace(
                self.data,
                paths=_without(self.data.paths),
                last_known=_without(self.data.last_known),
                status=_without(self.data.status),
                rejections=_without(self.data.rejections),
            )
        )

    # ------------------------------------------------------------------
    # Device info
    # ------------------------------------------------------------------

    def get_device_info(self, entity_id: str) -> dict:
        """Return the HA DeviceInfo dict for a tracked entity."""
        return {
            "identifiers": {(DOMAIN, f"{self._entry_data.get('guid', 'default')}_{entity_id}")},
            "name": f"{self._entry_data.get(CONF_ENTRY_NAME) or 'Path Track'} {entity_id}",
            "manufacturer": "Path Track",
            "model": "Tracked entity",
            "sw_version": VERSION,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def async_shutdown(self) -> None:
        """Clean up all resources owned by this coordinator."""
        task = self._recording_task
        self.stop_recording()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        await self.scheduler.async_shutdown()
        if self._initial_refresh_done:
            await self.store.cache.async_flush()
        await super().async_shutdown()

    @property
    def entry_data(self):
        return self._entry_data
