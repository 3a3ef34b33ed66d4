"""
Unit tests for the path store layer: api/path_store.py, local_cache.py and path_store.py.

Coverage:
- RemotePathStore: request shapes, success dialects, fix parsing, paging, availability, errors → SyncFailed
- LocalPathCache: load/save round trip through Store, pending vs synced, bounded mirror, purge
- PathStore: remote failure keeps the fix pending, flush retries in order and never
  re-sends a fix whose POST is running
"""

from __future__ import annotations

import asyncio
import unittest
from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

from custom_components.pathtrack.api.path_store import RemotePathStore
from custom_components.pathtrack.errors import SyncFailed
from custom_components.pathtrack.local_cache import LocalPathCache
from custom_components.pathtrack.models import AccuracyPolicy, SourceKind
from custom_components.pathtrack.path_store import PathStore
from custom_components.pathtrack.requests import ApiResponseError

from .test_common import make_fix, make_store, ts

MAKE_REQUEST = "custom_components.pathtrack.api.path_store.make_request"
BASE_URL = "http://pathstore.local:5000/"


def _remote() -> RemotePathStore:
    return RemotePathStore(BASE_URL, "token", AccuracyPolicy())


# ---------------------------------------------------------------------------
# RemotePathStore
# ---------------------------------------------------------------------------

class TestRemotePathStore(unittest.IsolatedAsyncioTestCase):

    async def test_post_fix_sends_record(self):
        fix = make_fix()
        with patch(MAKE_REQUEST, new=AsyncMock(return_value={"success": True})) as request:
            await _remote().async_post_fix(fix)

        method, url, headers = request.call_args.args
        self.assertEqual(method, "POST")
        self.assertEqual(url, BASE_URL + "api/location-history/save")
        self.assertEqual(headers["Authorization"], "Bearer token")
        self.assertEqual(request.call_args.kwargs["payload"], fix.to_record())

    async def test_status_success_dialect_is_accepted(self):
        with patch(MAKE_REQUEST, new=AsyncMock(return_value={"status": "success"})):
            await _remote().async_post_fix(make_fix())

    async def test_unsuccessful_body_raises_sync_failed(self):
        with patch(MAKE_REQUEST, new=AsyncMock(return_value={"success": False, "message": "nope"})):
            with self.assertRaises(SyncFailed):
                await _remote().async_post_fix(make_fix())

    async def test_transport_errors_become_sync_failed(self):
        for error in (asyncio.TimeoutError(), ApiResponseError(500, {"message": "x"}), ValueError("html")):
            with self.subTest(error=type(error).__name__):
                with patch(MAKE_REQUEST, new=AsyncMock(side_effect=error)):
                    with self.assertRaises(SyncFailed):
                        await _remote().async_fetch_since("T1", None)

    async def test_fetch_since_parses_records(self):
        body = {
            "success": True,
            "locationHistory": [
                {"deviceId": "T1", "location": {"latitude": 17.385, "longitude": 78.486, "accuracy": 8},
                 "timestamp": "2024-01-01T10:00:00Z"},
                {"deviceId": "T1", "location": {"latitude": 17.386, "longitude": 78.487, "accuracy": 900},
                 "timestamp": "2024-01-01T10:00:05Z", "source": "gps"},
                "garbage",
            ],
        }
        since = ts("2024-01-01T09:00:00")
        with patch(MAKE_REQUEST, new=AsyncMock(return_value=body)) as request:
            fixes = await _remote().async_fetch_since("T1", since)

        self.assertEqual(len(fixes), 2)
        self.assertEqual(fixes[0].source_kind, SourceKind.SATELLITE)
        self.assertEqual(fixes[1].source_kind, SourceKind.NETWORK)
        self.assertEqual(request.call_args.args[1], BASE_URL + "api/location-history/device/T1")
        self.assertEqual(request.call_args.kwargs["params"]["startDate"], since.isoformat())
        self.assertNotIn("endDate", request.call_args.kwargs["params"])

    async def test_entity_id_is_quoted(self):
        with patch(MAKE_REQUEST, new=AsyncMock(return_value={"success": True, "locationHistory": []})) as request:
            await _remote().async_fetch_range("a/b c")
        self.assertTrue(request.call_args.args[1].endswith("device/a%2Fb%20c"))

    async def test_fetch_latest(self):
        body = {"success": True, "locationHistory": [{"latitude": 1, "longitude": 2, "capturedAt": "2024-01-01T10:00:00Z"}]}
        with patch(MAKE_REQUEST, new=AsyncMock(return_value=body)):
            fix = await _remote().async_fetch_latest("T1")
        self.assertEqual((fix.latitude, fix.longitude), (1.0, 2.0))

    async def test_fetch_latest_empty(self):
        with patch(MAKE_REQUEST, new=AsyncMock(return_value={"success": True, "locationHistory": []})):
            self.assertIsNone(await _remote().async_fetch_latest("T1"))

    async def test_available_dates_sorted_ascending(self):
        body = {
            "success": True,
            "dates": [
                {"date": "2024-01-03", "pointCount": 4, "totalDistance": 10.5,
                 "startTime": "2024-01-03T08:00:00Z", "endTime": "2024-01-03T09:00:00Z"},
                {"date": "2024-01-01", "pointCount": 2},
                {"pointCount": 1},
            ],
        }
        with patch(MAKE_REQUEST, new=AsyncMock(return_value=body)):
            entries = await _remote().async_fetch_available_dates("T1")

        self.assertEqual([e.date for e in entries], [date(2024, 1, 1), date(2024, 1, 3)])
        self.assertEqual(entries[1].fix_count, 4)
        self.assertEqual(entries[1].total_distance_m, 10.5)
        self.assertEqual(entries[1].start_time, ts("2024-01-03T08:00:00"))
        self.assertIsNone(entries[0].start_time)

    async def test_full_page_is_followed_by_next_page(self):
        def _record(i):
            return {"latitude": 17.0 + i * 1e-4, "longitude": 78.0, "accuracy": 8,
                    "capturedAt": f"2024-01-01T10:00:{i:02d}Z"}

        full_page = {"success": True, "locationHistory": [_record(i) for i in range(3)]}
        last_page = {"success": True, "locationHistory": [_record(2), _record(3)]}
        start, end = ts("2024-01-01T00:00:00"), ts("2024-01-07T23:59:59")

        with patch(MAKE_REQUEST, new=AsyncMock(side_effect=[full_page, last_page])) as request:
            fixes = await _remote().async_fetch_range("T1", start, end, limit=3)

        self.assertEqual(request.await_count, 2)
        second_params = request.await_args_list[1].kwargs["params"]
        self.assertEqual(second_params["startDate"], ts("2024-01-01T10:00:02").isoformat())
        self.assertEqual(second_params["endDate"], end.isoformat())
        self.assertEqual(len({fix.captured_at for fix in fixes}), 4)

    async def test_short_page_ends_paging(self):
        body = {"success": True, "locationHistory": [
            {"latitude": 1, "longitude": 2, "capturedAt": "2024-01-01T10:00:00Z"}
        ]}
        with patch(MAKE_REQUEST, new=AsyncMock(return_value=body)) as request:
            await _remote().async_fetch_range("T1", limit=3)
        self.assertEqual(request.await_count, 1)

    async def test_page_that_cannot_advance_stops(self):
        same_time = [
            {"latitude": 1 + i, "longitude": 2, "capturedAt": "2024-01-01T10:00:00Z"} for i in range(2)
        ]
        body = {"success": True, "locationHistory": same_time}
        with patch(MAKE_REQUEST, new=AsyncMock(return_value=body)) as request:
            with self.assertLogs("custom_components.pathtrack.api.path_store", level="WARNING"):
                fixes = await _remote().async_fetch_range("T1", ts("2024-01-01T10:00:00"), limit=2)

        self.assertEqual(request.await_count, 1)
        self.assertEqual(len(fixes), 2)

    async def test_purge_uses_delete(self):
        with patch(MAKE_REQUEST, new=AsyncMock(return_value={"success": True})) as request:
            await _remote().async_purge("T1")
        self.assertEqual(request.call_args.args[0], "DELETE")


# ---------------------------------------------------------------------------
# LocalPathCache
# ---------------------------------------------------------------------------

class TestLocalPathCache(unittest.IsolatedAsyncioTestCase):

    async def test_load_parses_synced_and_pending(self):
        first = make_fix(captured_at="2024-01-01T10:00:00")
        pending = make_fix(lat=17.4, captured_at="2024-01-01T10:05:00")
        store = make_store({"fixes": {"T1": [first.to_record()]}, "pending": {"T1": [pending.to_record()]}})
        cache = LocalPathCache(MagicMock(), AccuracyPolicy(), store=store)

        await cache.async_load()

        self.assertEqual(cache.entities(), ["T1"])
        self.assertEqual(cache.fixes("T1"), (first, pending))
        self.assertEqual(cache.pending("T1"), (pending,))

    async def test_corrupt_entry_is_ignored(self):
        store = make_store({"fixes": {"T1": "not a list"}})
        cache = LocalPathCache(MagicMock(), AccuracyPolicy(), store=store)
        with self.assertLogs("custom_components.pathtrack.local_cache", level="WARNING"):
            await cache.async_load()
        self.assertEqual(cache.fixes("T1"), ())

    async def test_empty_store(self):
        cache = LocalPathCache(MagicMock(), AccuracyPolicy(), store=make_store(None))
        await cache.async_load()
        self.assertEqual(cache.entities(), [])

    def test_pending_then_synced(self):
        store = make_store()
        cache = LocalPathCache(MagicMock(), AccuracyPolicy(), store=store)
        fix = make_fix()

        cache.add_pending(fix)
        self.assertEqual(cache.pending_entities(), ["T1"])
        cache.mark_synced(fix)

        self.assertEqual(cache.pending("T1"), ())
        self.assertEqual(cache.fixes("T1"), (fix,))
        store.async_delay_save.assert_called()

    def test_synced_mirror_is_bounded(self):
        cache = LocalPathCache(MagicMock(), AccuracyPolicy(), store=make_store(), limit=2)
        fixes = [make_fix(captured_at=f"2024-01-01T10:00:0{i}") for i in range(3)]
        cache.remember("T1", fixes)
        self.assertEqual(cache.fixes("T1"), tuple(fixes[1:]))

    def test_configured_epsilon_is_used(self):
        fixes = (
            make_fix(lat=17.3850, captured_at="2024-01-01T10:00:00"),
            make_fix(lat=17.3855, captured_at="2024-01-01T10:00:00"),
        )
        loose = LocalPathCache(MagicMock(), AccuracyPolicy(), store=make_store(), epsilon=1e-3)
        loose.remember("T1", fixes)
        self.assertEqual(len(loose.fixes("T1")), 1)

        strict = LocalPathCache(MagicMock(), AccuracyPolicy(), store=make_store())
        strict.remember("T1", fixes)
        self.assertEqual(len(strict.fixes("T1")), 2)

    def test_purge(self):
        cache = LocalPathCache(MagicMock(), AccuracyPolicy(), store=make_store())
        cache.add_pending(make_fix())
        cache.remember("T1", [make_fix(captured_at="2024-01-01T09:00:00")])
        cache.purge("T1")
        self.assertEqual(cache.fixes("T1"), ())
        self.assertEqual(cache.entities(), [])

    async def test_flush_saves_records(self):
        store = make_store()
        cache = LocalPathCache(MagicMock(), AccuracyPolicy(), store=store)
        fix = make_fix()
        cache.add_pending(fix)

        await cache.async_flush()

        saved = store.async_save.call_args.args[0]
        self.assertEqual(saved["pending"]["T1"], [fix.to_record()])
        self.assertEqual(saved["fixes"], {})


# ---------------------------------------------------------------------------
# PathStore
# ---------------------------------------------------------------------------

def _path_store() -> PathStore:
    remote = MagicMock()
    remote.async_post_fix = AsyncMock()
    remote.async_fetch_since = AsyncMock(return_value=[])
    remote.async_fetch_range = AsyncMock(return_value=[])
    remote.async_purge = AsyncMock()
    cache = LocalPathCache(MagicMock(), AccuracyPolicy(), store=make_store())
    return PathStore(remote, cache)


class TestPathStore(unittest.IsolatedAsyncioTestCase):

    async def test_append_success_marks_synced(self):
        store = _path_store()
        fix = make_fix()
        self.assertTrue(await store.async_append(fix))
        self.assertEqual(store.cache.pending("T1"), ())
        self.assertEqual(store.local_fixes("T1"), (fix,))

    async def test_append_failure_keeps_fix_pending(self):
        store = _path_store()
        store.remote.async_post_fix.side_effect = SyncFailed("offline")
        fix = make_fix()

        with self.assertLogs("custom_components.pathtrack.path_store", level="WARNING"):
            self.assertFalse(await store.async_append(fix))

        self.assertEqual(store.cache.pending("T1"), (fix,))
        self.assertEqual(store.local_fixes("T1"), (fix,))

    async def test_flush_pending_pushes_in_order(self):
        store = _path_store()
        first = make_fix(captured_at="2024-01-01T10:00:00")
        second = make_fix(lat=17.4, captured_at="2024-01-01T10:00:05")
        store.cache.add_pending(first)
        store.cache.add_pending(second)

        self.assertEqual(await store.async_flush_pending(), 2)
        posted = [call.args[0] for call in store.remote.async_post_fix.await_args_list]
        self.assertEqual(posted, [first, second])
        self.assertEqual(store.cache.pending_entities(), [])

    async def test_flush_stops_at_first_failure(self):
        store = _path_store()
        store.cache.add_pending(make_fix(captured_at="2024-01-01T10:00:00"))
        store.cache.add_pending(make_fix(lat=17.4, captured_at="2024-01-01T10:00:05"))
        store.remote.async_post_fix.side_effect = SyncFailed("offline")

        with self.assertLogs("custom_components.pathtrack.path_store", level="WARNING"):
            self.assertEqual(await store.async_flush_pending(), 0)

        self.assertEqual(store.remote.async_post_fix.await_count, 1)
        self.assertEqual(len(store.cache.pending("T1")), 2)

    async def test_fetch_since_mirrors_locally(self):
        store = _path_store()
        fix = make_fix()
        store.remote.async_fetch_since.return_value = [fix]
        self.assertEqual(await store.async_fetch_since("T1", None), [fix])
        self.assertEqual(store.local_fixes("T1"), (fix,))

    async def test_purge_remote_then_local(self):
        store = _path_store()
        store.cache.add_pending(make_fix())
        await store.async_purge("T1")
        store.remote.async_purge.assert_awaited_once_with("T1")
        self.assertEqual(store.local_fixes("T1"), ())

    async def test_purge_failure_keeps_local_copy(self):
        store = _path_store()
        store.cache.add_pending(make_fix())
        store.remote.async_purge.side_effect = SyncFailed("offline")
        with self.assertRaises(SyncFailed):
            await store.async_purge("T1")
        self.assertEqual(len(store.local_fixes("T1")), 1)

    async def test_flush_skips_fix_whose_post_is_running(self):
        store = _path_store()
        release = asyncio.Event()
        posting = asyncio.Event()

        async def slow_post(fix):
            posting.set()
            await release.wait()

        store.remote.async_post_fix.side_effect = slow_post
        fix = make_fix()
        append = asyncio.ensure_future(store.async_append(fix))
        await posting.wait()

        self.assertEqual(await store.async_flush_pending(), 0)
        release.set()
        self.assertTrue(await append)

        self.assertEqual(store.remote.async_post_fix.await_count, 1)
        self.assertEqual(store.cache.pending("T1"), ())

    async def test_flush_skips_fix_synced_during_flush(self):
        store = _path_store()
        first = make_fix(captured_at="2024-01-01T10:00:00")
        second = make_fix(lat=17.4, captured_at="2024-01-01T10:00:05")
        store.cache.add_pending(first)
        store.cache.add_pending(second)

        async def post(fix):
            if fix == first:
                # second gets confirmed by another writer meanwhile
                store.cache.mark_synced(second)

        store.remote.async_post_fix.side_effect = post

        self.assertEqual(await store.async_flush_pending(), 1)
        self.assertEqual([call.args[0] for call in store.remote.async_post_fix.await_args_list], [first])
