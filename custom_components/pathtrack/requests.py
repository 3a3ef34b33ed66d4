"""
Low-level HTTP request helpers for the remote path store and the geocoder.
Handles retry on timeout and turns unsuccessful responses into exceptions.
"""
import asyncio
import logging

import aiohttp


_LOGGER = logging.getLogger(__name__)

REQUEST_TIMEOUT = 5  # seconds, multiplied by attempt number for each retry
REQUEST_ATTEMPTS = 3  # maximum number of attempts


class ApiResponseError(Exception):
    """Raised when an API answers with an error or an unsuccessful JSON body."""
    def __init__(self, status: int, error_json: dict):
        self.status = status
        self.error_json = error_json
        message = error_json.get("message") or error_json.get("error") or error_json
        super().__init__(f"API error (HTTP {status}): {message}")


def build_headers(token: str | None = None, user_agent: str | None = None) -> dict:
    headers = {"Accept": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    if user_agent:
        headers["User-Agent"] = user_agent
    return headers


async def check_availability(url: str, headers: dict | None = None, timeout: int = 15) -> bool:
    """
    Check that an API is reachable by sending a GET to its health endpoint.

    Returns:
        True if the endpoint answered with HTTP 200, False otherwise
    """
    try:
        timeout_config = aiohttp.ClientTimeout(total=timeout)
        async with aiohttp.ClientSession(timeout=timeout_config) as session:
            async with session.get(url, headers=headers) as response:
                if response.status != 200:
                    _LOGGER.warning("API URL %s is not reachable (status %s)", url, response.status)
                    return False
                return True
    except (asyncio.TimeoutError, TimeoutError):
        _LOGGER.warning("Timeout while checking API URL %s", url)
        return False
    except aiohttp.ClientError as e:
        _LOGGER.error("Error while checking API availability at %s: %s", url, e)
        return False


async def make_request(
    method: str,
    url: str,
    headers: dict,
    payload: dict = None,
    params: dict = None,
    timeout: int = REQUEST_TIMEOUT,
    max_attempts: int = REQUEST_ATTEMPTS,
):
    """
    Make an HTTP request with automatic retry on timeout.

    Args:
        method: HTTP method (GET, POST, DELETE)
        url: Target URL for the request
        headers: HTTP headers dictionary
        payload: JSON payload for POST requests (optional)
        params: URL query parameters (optional)
        timeout: Base timeout in seconds (multiplied by attempt number for each retry)
        max_attempts: Maximum number of attempts

    Returns:
        Parsed JSON response

    Raises:
        asyncio.TimeoutError: If all attempts time out
        ApiResponseError: If the API answers with an error status and a JSON body
        ValueError: If the response has an unexpected content type
        aiohttp.ClientError: For connection level failures
    """
    method = method.upper()
    if method not in ("GET", "POST", "DELETE"):
        raise ValueError(f"Unsupported HTTP method: {method}")

    for attempt in range(max_attempts):
        # Timeout grows with each attempt
        timeout_config = aiohttp.ClientTimeout(total=timeout * (attempt + 1))
        try:
            async with aiohttp.ClientSession(timeout=timeout_config) as session:
                async with session.request(
                    method, url, headers=headers, json=payload, params=params
                ) as response:
                    return await _process_response(response, url)

        except (asyncio.TimeoutError, TimeoutError):
            if attempt < max_attempts - 1:
                _LOGGER.debug("Timeout on %s %s, attempt %s of %s", method, url, attempt + 1, max_attempts)
                continue
            _LOGGER.warning(
                "Timeout on %s request to %s after %s attempts",
                method, url, max_attempts
            )
            raise

    return None


async def _process_response(response, url: str):
    """
    Extract JSON data from a response.

    Raises:
        ApiResponseError: For error statuses with a JSON body
        ValueError: For responses that are not JSON
    """
    content_type = response.headers.get('Content-Type', '')

    if response.status == 200 or response.status == 201:
        if 'application/json' in content_type:
            return await response.json()
        _LOGGER.warning(
            "Unexpected content type in successful response: %s (status %s) from %s",
            content_type, response.status, url
        )
        text = await response.text()
        raise ValueError(f"Expected JSON but got {content_type}: {text[:200]}")

    if 'application/json' in content_type:
        error_json = await response.json()
        if not isinstance(error_json, dict):
            error_json = {"error": error_json}
        raise ApiResponseError(response.status, error_json)

    # Non-JSON error response (e.g. HTML error page or a rate-limit notice)
    text = await response.text()
    _LOGGER.warning(
        "Received non-JSON error response from %s: status %s, content-type: %s, body preview: %s",
        url, response.status, content_type, text[:200]
    )
    raise ValueError(
        f"HTTP {response.status} with {content_type} "
        f"(expected application/json) from {url}"
    )
