"""
Fetch client for the Cologne gauge endpoint.

Each fetch makes up to `max_retries` sequential attempts with a wall-clock
timeout and linear backoff between attempts. A cross-origin/connection
failure on the first attempt latches the client onto the fallback relay for
all later attempts; the latch only reverts through reset_fallback().
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable

from http_client import CONNECTION_ERRORS, STATUS_ERRORS, TIMEOUT_ERRORS, get_text_async

from rheinpegel.constants import (
    DEFAULT_API_URL,
    DEFAULT_FALLBACK_URL,
    FETCH_MAX_RETRIES,
    FETCH_RETRY_DELAY_SEC,
    FETCH_TIMEOUT_SEC,
)
from rheinpegel.parser import ParseError, Reading, parse

logger = logging.getLogger(__name__)

Transport = Callable[..., Awaitable[str]]

# Messages browser fetch() uses for rejections it does not categorize.
_CROSS_ORIGIN_MARKERS = ("CORS", "Network request failed")


class FetchExhaustedError(Exception):
    """Raised when every attempt of a fetch failed."""

    def __init__(self, attempts: int, last_error: BaseException | None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        detail = _error_message(last_error) if last_error is not None else "unknown error"
        super().__init__(f"Failed to fetch data after {attempts} attempts: {detail}")


class FailureKind(Enum):
    """Structured category of a failed attempt."""
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    HTTP_STATUS = "http_status"
    MALFORMED = "malformed"
    OTHER = "other"


def _error_message(exc: BaseException) -> str:
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)) and not str(exc):
        return "request timed out"
    return str(exc) or exc.__class__.__name__


def classify_failure(exc: BaseException) -> FailureKind:
    """Map an attempt's exception onto a FailureKind using its type."""
    if isinstance(exc, TIMEOUT_ERRORS):
        return FailureKind.TIMEOUT
    if isinstance(exc, CONNECTION_ERRORS):
        return FailureKind.CONNECTION
    if isinstance(exc, STATUS_ERRORS):
        return FailureKind.HTTP_STATUS
    if isinstance(exc, ParseError):
        return FailureKind.MALFORMED
    return FailureKind.OTHER


def is_cross_origin_failure(exc: BaseException) -> bool:
    """
    Best-effort guess whether a failure means the direct path is unreachable.

    Connection-establishment failures always count. Errors the network layer
    leaves uncategorized (browser fetch rejections surface as plain JS
    errors) fall back to message matching, which is heuristic only.
    """
    kind = classify_failure(exc)
    if kind is FailureKind.CONNECTION:
        return True
    if kind is not FailureKind.OTHER:
        return False
    message = str(exc)
    if any(marker in message for marker in _CROSS_ORIGIN_MARKERS):
        return True
    if "Failed to fetch" not in message:
        return False
    # Pyodide wraps JS errors in JsException and keeps the JS name on `.name`.
    return isinstance(exc, TypeError) or getattr(exc, "name", None) == "TypeError"


class GaugeClient:
    """Retrieves and parses the current gauge reading."""

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        fallback_url: str = DEFAULT_FALLBACK_URL,
        timeout_sec: float = FETCH_TIMEOUT_SEC,
        max_retries: int = FETCH_MAX_RETRIES,
        retry_delay_sec: float = FETCH_RETRY_DELAY_SEC,
        transport: Transport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.api_url = api_url
        self.fallback_url = fallback_url
        self.timeout_sec = float(timeout_sec)
        self.max_retries = max(1, int(max_retries))
        self.retry_delay_sec = max(0.0, float(retry_delay_sec))
        self.use_fallback = False
        self._transport: Transport = transport or get_text_async
        self._sleep = sleep

    @property
    def request_url(self) -> str:
        """URL the next attempt will hit."""
        if not self.use_fallback:
            return self.api_url
        # A trailing slash marks a prefix-style relay (cors-anywhere).
        if self.fallback_url.endswith("/"):
            return self.fallback_url + self.api_url
        return self.fallback_url

    def enable_fallback(self, url: str | None = None) -> None:
        self.use_fallback = True
        if url:
            self.fallback_url = url
        logger.info("Fallback transport enabled", extra={"url": self.fallback_url})

    def reset_fallback(self) -> None:
        self.use_fallback = False
        logger.info("Fallback transport disabled")

    async def _attempt(self) -> Reading:
        url = self.request_url
        body = await asyncio.wait_for(
            self._transport(url, timeout=self.timeout_sec),
            timeout=self.timeout_sec,
        )
        return parse(body)

    async def fetch_current_level(self) -> Reading:
        """
        Fetch the current reading, retrying with linear backoff.

        Raises FetchExhaustedError carrying the last attempt's error when
        every attempt fails.
        """
        last_error: BaseException | None = None

        for attempt in range(1, self.max_retries + 1):
            logger.debug(
                "Fetching water level data (attempt %d/%d)",
                attempt,
                self.max_retries,
                extra={"attempt": attempt, "url": self.request_url},
            )
            try:
                reading = await self._attempt()
            except Exception as exc:  # transport errors differ between requests and js.fetch
                last_error = exc
                kind = classify_failure(exc)
                logger.warning(
                    "Attempt %d failed: %s",
                    attempt,
                    _error_message(exc),
                    extra={"attempt": attempt, "kind": kind.value},
                )

                if attempt == 1 and not self.use_fallback and is_cross_origin_failure(exc):
                    logger.warning("Direct request unreachable; switching to fallback transport")
                    self.use_fallback = True

                if attempt < self.max_retries:
                    await self._sleep(self.retry_delay_sec * attempt)
                continue

            logger.info(
                "Water level data fetched: %d cm",
                reading.water_level_cm,
                extra={"attempt": attempt, "level_cm": reading.water_level_cm},
            )
            return reading

        raise FetchExhaustedError(self.max_retries, last_error)

    async def test_connection(self) -> bool:
        """Return True when a full fetch succeeds."""
        try:
            await self.fetch_current_level()
        except FetchExhaustedError as exc:
            logger.error("API connection test failed: %s", exc)
            return False
        return True
