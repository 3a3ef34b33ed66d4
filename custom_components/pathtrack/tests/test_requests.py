"""
Unit tests for requests.py.

Coverage:
- make_request returns parsed JSON on 200/201
- JSON error bodies raise ApiResponseError, non-JSON bodies raise ValueError
- timeouts are retried up to max_attempts, then re-raised
- check_availability maps status and connection errors to a bool
"""

from __future__ import annotations

import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp

from custom_components.pathtrack.requests import (
    ApiResponseError,
    build_headers,
    check_availability,
    make_request,
)

SESSION = "custom_components.pathtrack.requests.aiohttp.ClientSession"


def _response(status: int = 200, json_body=None, content_type: str = "application/json", text: str = ""):
    mock_resp = AsyncMock()
    mock_resp.status = status
    mock_resp.headers = {"Content-Type": content_type}
    mock_resp.json = AsyncMock(return_value=json_body)
    mock_resp.text = AsyncMock(return_value=text)
    mock_resp.__aenter__ = AsyncMock(return_value=mock_resp)
    mock_resp.__aexit__ = AsyncMock(return_value=False)
    return mock_resp


def _session(**kwargs) -> MagicMock:
    mock_session = MagicMock()
    mock_session.request = MagicMock(**kwargs)
    mock_session.get = MagicMock(**kwargs)
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=False)
    return mock_session


class TestBuildHeaders(unittest.TestCase):

    def test_token_and_user_agent(self):
        headers = build_headers("abc", "agent/1")
        self.assertEqual(headers["Authorization"], "Bearer abc")
        self.assertEqual(headers["User-Agent"], "agent/1")

    def test_no_token(self):
        self.assertNotIn("Authorization", build_headers(""))


class TestMakeRequest(unittest.IsolatedAsyncioTestCase):

    async def test_returns_json(self):
        session = _session(return_value=_response(json_body={"success": True}))
        with patch(SESSION, return_value=session):
            result = await make_request("get", "http://x/api", {}, params={"limit": 1})

        self.assertEqual(result, {"success": True})
        session.request.assert_called_once_with("GET", "http://x/api", headers={}, json=None, params={"limit": 1})

    async def test_created_status_returns_json(self):
        session = _session(return_value=_response(201, json_body={"success": True}))
        with patch(SESSION, return_value=session):
            result = await make_request("POST", "http://x/api", {}, payload={"a": 1})
        self.assertEqual(result, {"success": True})

    async def test_json_error_raises_api_response_error(self):
        session = _session(return_value=_response(500, json_body={"message": "db down"}))
        with patch(SESSION, return_value=session):
            with self.assertRaises(ApiResponseError) as ctx:
                await make_request("GET", "http://x/api", {})
        self.assertEqual(ctx.exception.status, 500)
        self.assertIn("db down", str(ctx.exception))

    async def test_html_error_raises_value_error(self):
        session = _session(return_value=_response(502, content_type="text/html", text="<html>"))
        with patch(SESSION, return_value=session):
            with self.assertRaises(ValueError):
                await make_request("GET", "http://x/api", {})

    async def test_timeout_is_retried_then_raised(self):
        session = _session(side_effect=asyncio.TimeoutError())
        with patch(SESSION, return_value=session):
            with self.assertRaises(asyncio.TimeoutError):
                await make_request("GET", "http://x/api", {}, max_attempts=3)
        self.assertEqual(session.request.call_count, 3)

    async def test_timeout_then_success(self):
        session = _session(side_effect=[asyncio.TimeoutError(), _response(json_body={"ok": 1})])
        with patch(SESSION, return_value=session):
            result = await make_request("GET", "http://x/api", {}, max_attempts=2)
        self.assertEqual(result, {"ok": 1})

    async def test_unsupported_method(self):
        with self.assertRaises(ValueError):
            await make_request("PATCH", "http://x/api", {})


class TestCheckAvailability(unittest.IsolatedAsyncioTestCase):

    async def test_ok(self):
        with patch(SESSION, return_value=_session(return_value=_response(200))):
            self.assertTrue(await check_availability("http://x/api/gps/health"))

    async def test_bad_status(self):
        with patch(SESSION, return_value=_session(return_value=_response(503))):
            self.assertFalse(await check_availability("http://x/api/gps/health"))

    async def test_connection_error(self):
        with patch(SESSION, return_value=_session(side_effect=aiohttp.ClientConnectionError())):
            self.assertFalse(await check_availability("http://x/api/gps/health"))
