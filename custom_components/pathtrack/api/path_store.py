"""
Client for the remote path store — the canonical, append-only record of fixes.

Responsible for:
- Posting newly accepted fixes
- Fetching fixes of an entity filtered by time range, or since a timestamp
- Fetching the latest fix of an entity
- Reading the per-day availability aggregate without loading whole paths
- Purging an entity's path when it is deregistered

Every failure is raised as SyncFailed so callers have one error to absorb.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime
from typing import Any
from urllib.parse import quote

import aiohttp

from homeassistant.util import dt as dt_util

from ..classifier import fix_from_record
from ..const import (
    DEFAULT_FETCH_LIMIT,
    DEVICE_DATES_PATH,
    DEVICE_HISTORY_PATH,
    DEVICE_LATEST_PATH,
    HEALTH_PATH,
    SAVE_PATH,
)
from ..errors import SyncFailed
from ..models import AccuracyPolicy, DateAvailability, Fix
from ..requests import ApiResponseError, build_headers, check_availability, make_request

_LOGGER = logging.getLogger(__name__)


def _is_success(raw_json: Any) -> bool:
    """Both response dialects of the store: {"success": true} and {"status": "success"}."""
    if not isinstance(raw_json, dict):
        return False
    return raw_json.get("success") is True or raw_json.get("status") == "success"


class RemotePathStore:
    """Thin async client for the remote path store REST API."""

    def __init__(self, base_url: str, token: str | None, policy: AccuracyPolicy) -> None:
        self._base_url = base_url.rstrip("/") + "/"
        self._headers = build_headers(token)
        self._policy = policy

    def _url(self, path: str, entity_id: str | None = None) -> str:
        if entity_id is not None:
            path = path.format(entity_id=quote(entity_id, safe=""))
        return self._base_url + path

    async def _request(self, method: str, url: str, **kwargs) -> dict:
        try:
            raw_json = await make_request(method, url, self._headers, **kwargs)
        except ApiResponseError as e:
            raise SyncFailed(f"Path store rejected {method} {url}: {e}") from e
        except (asyncio.TimeoutError, TimeoutError) as e:
            raise SyncFailed(f"Timeout on {method} {url}") from e
        except (aiohttp.ClientError, ValueError) as e:
            raise SyncFailed(f"Path store request {method} {url} failed: {e}") from e

        if not _is_success(raw_json):
            raise SyncFailed(f"Unsuccessful response from {url}: {raw_json}")
        return raw_json

    def _parse_fixes(self, records: Any, entity_id: str) -> list[Fix]:
        if not isinstance(records, list):
            raise SyncFailed(f"Unexpected fix list format for {entity_id}: {records!r}")
        received_at = dt_util.utcnow()
        fixes = []
        for record in records:
            if not isinstance(record, dict):
                _LOGGER.warning("Skipping malformed record for %s: %r", entity_id, record)
                continue
            fixes.append(
                fix_from_record(record, self._policy, entity_id=entity_id, received_at=received_at)
            )
        return fixes

    async def async_check_health(self) -> bool:
        return await check_availability(self._url(HEALTH_PATH), self._headers)

    async def async_post_fix(self, fix: Fix) -> None:
        """
        POST one fix.

        Corresponding CURL command:
        curl -X 'POST' '<api_url>/api/location-history/save' \
          -d '{"entityId": "T1", "latitude": 17.385, "longitude": 78.486, ...}'
        """
        await self._request("POST", self._url(SAVE_PATH), payload=fix.to_record())

    async def async_fetch_range(
        self,
        entity_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = DEFAULT_FETCH_LIMIT,
    ) -> list[Fix]:
        """
        Fetch fixes of entity_id with start <= capturedAt <= end (either bound optional).

        The store answers at most ``limit`` fixes in ascending order, so a full
        page is followed by another one starting at the last capture time. The
        boundary fix comes back twice and is removed by the merge.
        """
        fixes: list[Fix] = []
        while True:
            params: dict[str, Any] = {"limit": limit}
            if start is not None:
                params["startDate"] = dt_util.as_utc(start).isoformat()
            if end is not None:
                params["endDate"] = dt_util.as_utc(end).isoformat()
            raw_json = await self._request(
                "GET", self._url(DEVICE_HISTORY_PATH, entity_id), params=params
            )
            records = raw_json.get("locationHistory", [])
            page = self._parse_fixes(records, entity_id)
            fixes.extend(page)
            if len(records) < limit or not page:
                return fixes

            times = [fix.captured_at for fix in page if fix.timestamp_reliable]
            last = max(times) if times else None
            if last is None or (start is not None and last <= start):
                # Paging cannot advance past this page
                _LOGGER.warning(
                    "Cannot page past %s fixes of %s from %s, remaining fixes not fetched",
                    limit, entity_id, start.isoformat() if start else "the beginning",
                )
                return fixes
            _LOGGER.debug("Fetched %s fixes of %s, next page from %s", len(fixes), entity_id, last.isoformat())
            start = last

    async def async_fetch_since(self, entity_id: str, since: datetime | None) -> list[Fix]:
        """
        Fetch fixes newer than the last known timestamp.

        The store filters inclusively, so the fix at ``since`` comes back again;
        the reconciliation engine removes it as a duplicate.
        """
        return await self.async_fetch_range(entity_id, start=since)

    async def async_fetch_latest(self, entity_id: str) -> Fix | None:
        raw_json = await self._request("GET", self._url(DEVICE_LATEST_PATH, entity_id))
        records = raw_json.get("locationHistory", [])
        if isinstance(records, dict):
            records = [records]
        fixes = self._parse_fixes(records, entity_id)
        return fixes[-1] if fixes else None

    async def async_fetch_available_dates(self, entity_id: str) -> list[DateAvailability]:
        """Grouped per-day read; the store aggregates, no fixes are transferred."""
        raw_json = await self._request("GET", self._url(DEVICE_DATES_PATH, entity_id))
        entries = []
        for item in raw_json.get("dates", []):
            try:
                day = date.fromisoformat(str(item["date"]))
            except (KeyError, ValueError):
                _LOGGER.warning("Skipping malformed availability entry for %s: %r", entity_id, item)
                continue
            start_time = dt_util.parse_datetime(str(item.get("startTime") or ""))
            end_time = dt_util.parse_datetime(str(item.get("endTime") or ""))
            entries.append(
                DateAvailability(
                    entity_id=entity_id,
                    date=day,
                    fix_count=int(item.get("pointCount", item.get("count", 0)) or 0),
                    start_time=start_time,
                    end_time=end_time,
                    total_distance_m=float(item.get("totalDistance") or 0.0),
                )
            )
        entries.sort(key=lambda e: e.date)
        return entries

    async def async_purge(self, entity_id: str) -> None:
        await self._request("DELETE", self._url(DEVICE_HISTORY_PATH, entity_id))
