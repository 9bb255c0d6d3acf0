#!/usr/bin/env python3

from __future__ import annotations

"""
Thin HTTP abstraction so rheinpegel can run under:
- Native CPython (requests-based)
- Pyodide in the browser (pyodide.http.open_url / js.fetch)

Public API:
    get_text(url, params=None, timeout=10.0) -> str
    get_text_async(url, params=None, timeout=10.0) -> str
    HTTPStatusError
    TIMEOUT_ERRORS, CONNECTION_ERRORS, STATUS_ERRORS - exception types per runtime
"""

import asyncio
from typing import Any, Dict, Optional
from urllib.parse import urlencode

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (X11; Linux x86_64) rheinpegel",
    "Cache-Control": "no-cache",
    "Accept": "text/xml, application/xml;q=0.9, */*;q=0.1",
}


class HTTPStatusError(RuntimeError):
    """Non-2xx response on the browser path (requests raises HTTPError natively)."""

    def __init__(self, status: int | None, url: str) -> None:
        self.status = status
        self.url = url
        super().__init__(f"HTTP error! status: {status}")


def _build_url(url: str, params: Optional[Dict[str, Any]]) -> str:
    if not params:
        return url
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}{urlencode(params)}"


try:
    # Pyodide / browser branch.
    from pyodide.http import open_url  # type: ignore[import]

    _USE_PYODIDE = True
    TIMEOUT_ERRORS: tuple = (asyncio.TimeoutError, TimeoutError)
    CONNECTION_ERRORS: tuple = (ConnectionError,)
    STATUS_ERRORS: tuple = (HTTPStatusError,)
except ImportError:
    # Native CPython branch.
    _USE_PYODIDE = False
    import requests

    TIMEOUT_ERRORS = (asyncio.TimeoutError, TimeoutError, requests.Timeout)
    CONNECTION_ERRORS = (ConnectionError, requests.ConnectionError)
    STATUS_ERRORS = (HTTPStatusError, requests.HTTPError)


def get_text(
    url: str,
    params: Optional[Dict[str, Any]] = None,
    timeout: float = 10.0,
) -> str:
    """
    Fetch a URL and return its body as text.

    In CPython:
        - Uses requests.get(..., params=params, timeout=timeout)
        - Raises requests.HTTPError on non-2xx status

    In Pyodide:
        - Uses pyodide.http.open_url(full_url)
        - Relies on browser fetch + CORS.
    """
    if not _USE_PYODIDE:
        resp = requests.get(url, params=params, timeout=timeout, headers=DEFAULT_HEADERS)
        resp.raise_for_status()
        # The gauge feed declares its charset in the XML prolog only.
        if resp.encoding is None or resp.encoding.lower() == "iso-8859-1":
            resp.encoding = resp.apparent_encoding or "utf-8"
        return resp.text

    full_url = _build_url(url, params)
    fp = open_url(full_url)  # type: ignore[func-returns-value]
    return fp.read()


async def get_text_async(
    url: str,
    params: Optional[Dict[str, Any]] = None,
    timeout: float = 10.0,
) -> str:
    """
    Async GET returning the body as text.

    In CPython:
        - Runs get_text() in a worker thread so the event loop keeps ticking.

    In Pyodide:
        - Uses browser fetch via js.fetch and an AbortController timeout.
        - Raises HTTPStatusError on non-2xx status, matching
          requests.raise_for_status().
    """
    if not _USE_PYODIDE:
        return await asyncio.to_thread(get_text, url, params, timeout)

    import js  # type: ignore[import]

    full_url = _build_url(url, params)
    controller = js.AbortController.new()
    options = js.Object.new()
    options.method = "GET"
    options.mode = "cors"
    options.cache = "no-cache"
    options.signal = controller.signal

    timeout_ms = int(max(0.0, float(timeout)) * 1000.0)
    timer = js.setTimeout(controller.abort, timeout_ms) if timeout_ms > 0 else None

    try:
        resp = await js.fetch(full_url, options)
        if not bool(getattr(resp, "ok", False)):
            raise HTTPStatusError(getattr(resp, "status", None), full_url)
        return str(await resp.text())
    finally:
        if timer is not None:
            js.clearTimeout(timer)
