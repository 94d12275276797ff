"""
Core Web Service Utilities
Unified module for HTTP calls against the feature-collection services.
Requests run off the event loop and can be aborted through an AbortSignal.
"""
from __future__ import annotations

import asyncio
import io
from typing import Any, Callable, List, Optional

import pandas as pd
import requests
from loguru import logger

from core.config import get_settings
from core.errors import AbortError, ServiceFailure


# =============================================================================
# ABORT SIGNALS
# =============================================================================

class AbortSignal:
    """Read side of an AbortController; passed to every fetch."""

    def __init__(self):
        self.aborted = False
        self._listeners: List[Callable[[], None]] = []

    def add_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _abort(self) -> None:
        if self.aborted:
            return
        self.aborted = True
        for listener in list(self._listeners):
            listener()


class AbortController:
    """Owns an AbortSignal and aborts it on request."""

    def __init__(self):
        self.signal = AbortSignal()

    def abort(self) -> None:
        self.signal._abort()


class AbortHandle:
    """
    Keeps one live AbortController and swaps in a fresh one after each abort,
    so a new request never inherits a cancelled signal.
    """

    def __init__(self):
        self._controller = AbortController()

    def get_signal(self) -> AbortSignal:
        if self._controller.signal.aborted:
            self._controller = AbortController()
        return self._controller.signal

    def abort(self) -> None:
        self._controller.abort()
        self._controller = AbortController()


async def run_abortable(func: Callable[[], Any], signal: Optional[AbortSignal] = None) -> Any:
    """
    Run a blocking call in a worker thread, racing it against an abort signal.

    Raises:
        AbortError: If the signal is (or becomes) aborted before the call returns
    """
    if signal is not None and signal.aborted:
        raise AbortError("The operation was aborted")

    request = asyncio.ensure_future(asyncio.to_thread(func))
    if signal is None:
        return await request

    loop = asyncio.get_running_loop()
    aborted = loop.create_future()

    def _on_abort():
        def _resolve():
            if not aborted.done():
                aborted.set_result(None)
        loop.call_soon_threadsafe(_resolve)

    signal.add_listener(_on_abort)
    try:
        await asyncio.wait({request, aborted}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        signal.remove_listener(_on_abort)
        if not aborted.done():
            aborted.cancel()

    if not signal.aborted:
        return request.result()

    # the worker thread finishes in the background; its result is discarded
    if request.done():
        request.exception()
    else:
        request.cancel()
    raise AbortError("The operation was aborted")


# =============================================================================
# PARSING HELPERS
# =============================================================================

def parse_int(value: Any, default: int = 0) -> int:
    """Parse a count, falling back to default when it isn't an integer."""
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError, OverflowError):
            return default


def parse_float(value: Any) -> Optional[float]:
    """Parse a coordinate or measurement; None when it isn't numeric."""
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if parsed != parsed:  # NaN
        return None
    return parsed


def _check_response(response: requests.Response, url: str, response_type: str = "json") -> Any:
    if response.status_code != 200:
        raise ServiceFailure(
            f"Error {response.status_code}: {response.text[:500]}",
            url=url,
            status_code=response.status_code,
        )
    if response_type == "text":
        return response.text
    try:
        return response.json()
    except ValueError as e:
        raise ServiceFailure(f"Invalid JSON from {url}: {e}", url=url, status_code=200) from e


# =============================================================================
# REQUEST FUNCTIONS
# =============================================================================

async def fetch_check(
    url: str,
    signal: Optional[AbortSignal] = None,
    params: Optional[dict] = None,
    timeout: Optional[float] = None,
    response_type: str = "json",
) -> Any:
    """
    GET a service URL and return its parsed body.

    Args:
        url: Full request URL (query string may already be included)
        signal: Abort signal for cancelling the request
        params: Additional query parameters
        timeout: Request timeout in seconds (defaults to settings.request_timeout)
        response_type: 'json' or 'text'

    Raises:
        AbortError: The request was aborted
        ServiceFailure: Network error or non-200 response
    """
    timeout = timeout if timeout is not None else get_settings().request_timeout

    def _get():
        try:
            response = requests.get(url, params=params, timeout=timeout)
        except requests.exceptions.RequestException as e:
            raise ServiceFailure(f"Network error: {e}", url=url) from e
        return _check_response(response, url, response_type)

    logger.debug(f"GET {url}")
    return await run_abortable(_get, signal)


async def fetch_post(
    url: str,
    data: Any,
    signal: Optional[AbortSignal] = None,
    params: Optional[dict] = None,
    timeout: Optional[float] = None,
    response_type: str = "json",
) -> Any:
    """
    POST a JSON body (e.g. a structured filter too large for a query string).

    Raises:
        AbortError: The request was aborted
        ServiceFailure: Network error or non-200 response
    """
    timeout = timeout if timeout is not None else get_settings().request_timeout
    headers = {"Content-Type": "application/json"}

    def _post():
        try:
            response = requests.post(url, params=params, json=data, headers=headers, timeout=timeout)
        except requests.exceptions.RequestException as e:
            raise ServiceFailure(f"Network error: {e}", url=url) from e
        return _check_response(response, url, response_type)

    logger.debug(f"POST {url}")
    return await run_abortable(_post, signal)


async def fetch_parse_csv(
    url: str,
    data: Any = None,
    signal: Optional[AbortSignal] = None,
    params: Optional[dict] = None,
    timeout: Optional[float] = None,
) -> pd.DataFrame:
    """
    Fetch a CSV body (POST when data is given, GET otherwise) and parse it.

    Returns:
        DataFrame with one row per CSV record (empty when the body is empty)
    """
    if data is None:
        text = await fetch_check(url, signal, params=params, timeout=timeout, response_type="text")
    else:
        text = await fetch_post(url, data, signal, params=params, timeout=timeout, response_type="text")

    if not text or not text.strip():
        return pd.DataFrame()
    try:
        return pd.read_csv(io.StringIO(text))
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise ServiceFailure(f"Could not parse CSV from {url}: {e}", url=url) from e


def cql_in_filter(property_name: str, values: List[str]) -> dict:
    """Build a CQL2-JSON 'in' filter body for POST requests."""
    return {
        "op": "in",
        "args": [
            {"property": property_name},
            list(values),
        ],
    }
