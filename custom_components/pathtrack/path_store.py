"""
Path store — per-entity append-only record of accepted, enriched fixes.

Backed by the remote store (canonical) and the local cache mirror. Writes go
to the local cache first so an unreachable remote never loses a fix; pending
fixes are pushed again by ``async_flush_pending``. Reads fetch from the
remote and mirror the result locally.
"""
from __future__ import annotations

import logging
from datetime import datetime

from .api.path_store import RemotePathStore
from .errors import SyncFailed
from .local_cache import LocalPathCache
from .models import DateAvailability, Fix

_LOGGER = logging.getLogger(__name__)


class PathStore:

    def __init__(self, remote: RemotePathStore, cache: LocalPathCache) -> None:
        self.remote = remote
        self.cache = cache

    async def async_load(self) -> None:
        await self.cache.async_load()

    async def _async_upload(self, fix: Fix) -> bool:
        """
        POST one pending fix and mark it synced. Raises SyncFailed.

        Returns False without sending when the fix is no longer pending or
        another POST of it is still running.
        """
        if fix not in self.cache.pending(fix.entity_id) or not self.cache.begin_upload(fix):
            return False
        try:
            await self.remote.async_post_fix(fix)
        finally:
            self.cache.end_upload(fix)
        self.cache.mark_synced(fix)
        return True

    async def async_append(self, fix: Fix) -> bool:
        """
        Persist one fix. Returns True when the remote store accepted it.

        A remote failure is logged and the fix stays pending in the local
        cache; it is never dropped.
        """
        self.cache.add_pending(fix)
        try:
            return await self._async_upload(fix)
        except SyncFailed as exc:
            _LOGGER.warning("Fix for %s kept locally, remote write failed: %s", fix.entity_id, exc)
            return False

    async def async_flush_pending(self) -> int:
        """Push pending fixes of every entity. Returns how many were synced."""
        synced = 0
        for entity_id in self.cache.pending_entities():
            for fix in self.cache.pending(entity_id):
                try:
                    if not await self._async_upload(fix):
                        continue
                except SyncFailed as exc:
                    _LOGGER.warning("Still unable to sync pending fixes for %s: %s", entity_id, exc)
                    # Keep order per entity: stop at the first failure
                    break
                synced += 1
        if synced:
            _LOGGER.debug("Synced %s pending fixes", synced)
        return synced

    async def async_fetch_since(self, entity_id: str, since: datetime | None) -> list[Fix]:
        """Fetch new fixes from the remote store; raises SyncFailed."""
        fixes = await self.remote.async_fetch_since(entity_id, since)
        if fixes:
            self.cache.remember(entity_id, fixes)
        return fixes

    async def async_fetch_range(
        self, entity_id: str, start: datetime | None, end: datetime | None
    ) -> list[Fix]:
        fixes = await self.remote.async_fetch_range(entity_id, start=start, end=end)
        if fixes:
            self.cache.remember(entity_id, fixes)
        return fixes

    async def async_fetch_latest(self, entity_id: str) -> Fix | None:
        return await self.remote.async_fetch_latest(entity_id)

    async def async_available_dates(self, entity_id: str) -> list[DateAvailability]:
        return await self.remote.async_fetch_available_dates(entity_id)

    def local_fixes(self, entity_id: str) -> tuple[Fix, ...]:
        return self.cache.fixes(entity_id)

    async def async_purge(self, entity_id: str) -> None:
        """Remove the whole path of a deregistered entity, remote first."""
        await self.remote.async_purge(entity_id)
        self.cache.purge(entity_id)
