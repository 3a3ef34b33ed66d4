"""
Local cache mirror of the path store, persisted through Home Assistant's Store.

Holds two kinds of fixes per entity:
- synced: fixes known to be in the remote store (a bounded mirror)
- pending: fixes accepted locally whose POST has not succeeded yet; they are
  never trimmed and are pushed again on the next flush
"""
from __future__ import annotations

import logging
from typing import Any, Iterable

from homeassistant.core import HomeAssistant
from homeassistant.helpers.storage import Store

from .classifier import fix_from_record
from .const import DEFAULT_DUPLICATE_EPSILON, LOCAL_CACHE_LIMIT, STORAGE_KEY, STORAGE_SAVE_DELAY, STORAGE_VERSION
from .models import AccuracyPolicy, Fix
from .reconciliation import merge

_LOGGER = logging.getLogger(__name__)


class LocalPathCache:

    def __init__(
        self,
        hass: HomeAssistant,
        policy: AccuracyPolicy,
        *,
        key: str = STORAGE_KEY,
        store: Store | None = None,
        limit: int = LOCAL_CACHE_LIMIT,
        epsilon: float = DEFAULT_DUPLICATE_EPSILON,
    ) -> None:
        self._store = store if store is not None else Store(hass, STORAGE_VERSION, key)
        self._policy = policy
        self._limit = limit
        self._epsilon = epsilon
        self._synced: dict[str, tuple[Fix, ...]] = {}
        self._pending: dict[str, list[Fix]] = {}
        # Pending fixes whose POST has been sent and not answered yet
        self._in_flight: list[Fix] = []
        self._loaded = False

    async def async_load(self) -> None:
        """Load the mirror from disk (no-op after the first call)."""
        if self._loaded:
            return
        raw = await self._store.async_load() or {}
        for entity_id, records in (raw.get("fixes") or {}).items():
            self._synced[entity_id] = merge((), self._parse(entity_id, records), self._epsilon)
        for entity_id, records in (raw.get("pending") or {}).items():
            self._pending[entity_id] = list(self._parse(entity_id, records))
        self._loaded = True
        _LOGGER.debug(
            "Loaded local path cache: %s entities, %s pending fixes",
            len(self.entities()), sum(len(p) for p in self._pending.values()),
        )

    def _parse(self, entity_id: str, records: Any) -> list[Fix]:
        if not isinstance(records, list):
            _LOGGER.warning("Ignoring corrupt cache entry for %s", entity_id)
            return []
        return [
            fix_from_record(record, self._policy, entity_id=entity_id)
            for record in records
            if isinstance(record, dict)
        ]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def entities(self) -> list[str]:
        return sorted(set(self._synced) | {e for e, p in self._pending.items() if p})

    def fixes(self, entity_id: str) -> tuple[Fix, ...]:
        """Every cached fix of entity_id, synced and pending."""
        return (*self._synced.get(entity_id, ()), *self._pending.get(entity_id, ()))

    def pending(self, entity_id: str) -> tuple[Fix, ...]:
        return tuple(self._pending.get(entity_id, ()))

    def pending_entities(self) -> list[str]:
        return [entity_id for entity_id, fixes in self._pending.items() if fixes]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_pending(self, fix: Fix) -> None:
        self._pending.setdefault(fix.entity_id, []).append(fix)
        self._schedule_save()

    def begin_upload(self, fix: Fix) -> bool:
        """Claim fix for one POST. False when another POST of it is still running."""
        if fix in self._in_flight:
            return False
        self._in_flight.append(fix)
        return True

    def end_upload(self, fix: Fix) -> None:
        if fix in self._in_flight:
            self._in_flight.remove(fix)

    def mark_synced(self, fix: Fix) -> None:
        pending = self._pending.get(fix.entity_id, [])
        if fix in pending:
            pending.remove(fix)
        self.remember(fix.entity_id, (fix,))

    def remember(self, entity_id: str, fixes: Iterable[Fix]) -> None:
        """Mirror fixes known to be in the remote store, keeping the newest ``limit``."""
        merged = merge(self._synced.get(entity_id, ()), fixes, self._epsilon)
        self._synced[entity_id] = merged[-self._limit:]
        self._schedule_save()

    def purge(self, entity_id: str) -> None:
        self._synced.pop(entity_id, None)
        self._pending.pop(entity_id, None)
        self._schedule_save()

    def _schedule_save(self) -> None:
        self._store.async_delay_save(self._data_to_save, STORAGE_SAVE_DELAY)

    def _data_to_save(self) -> dict[str, Any]:
        return {
            "fixes": {
                entity_id: [fix.to_record() for fix in fixes]
                for entity_id, fixes in self._synced.items()
            },
            "pending": {
                entity_id: [fix.to_record() for fix in fixes]
                for entity_id, fixes in self._pending.items()
                if fixes
            },
        }

    async def async_flush(self) -> None:
        """Write the mirror immediately (used on shutdown)."""
        await self._store.async_save(self._data_to_save())
