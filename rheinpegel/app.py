"""
Application coordinator for rheinpegel.

MonitorApp owns the refresh cycle:

    IDLE -> LOADING -> DISPLAYED      fetch succeeded, reading stored + shown
                    -> ERROR          fetch failed; latest cached reading
                                      shown if the store has one

Cycles never overlap: fetch_and_update() is guarded by the loading flag,
and the auto-refresh timer sleeps a full interval after each cycle finishes
instead of firing on a fixed period.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List

from rheinpegel.alerts import AlertTier, classify
from rheinpegel.chart import GaugeChart
from rheinpegel.client import GaugeClient
from rheinpegel.constants import (
    ERROR_NOTICE_SEC,
    HISTORY_MAX_AGE_HOURS,
    REFRESH_INTERVAL_SEC,
    SUCCESS_NOTICE_SEC,
)
from rheinpegel.history import HistoryStore
from rheinpegel.parser import Reading

logger = logging.getLogger(__name__)


class Phase(Enum):
    IDLE = "idle"
    LOADING = "loading"
    DISPLAYED = "displayed"
    ERROR = "error"


@dataclass
class Notice:
    """Transient user-facing message, dismissed once `expires_at` passes."""
    message: str
    level: str  # "error" | "success"
    expires_at: float


@dataclass
class AppState:
    phase: Phase = Phase.IDLE
    current_level: int | None = None
    current_tier: AlertTier | None = None
    displayed: Reading | None = None
    showing_cached: bool = False
    last_update_ms: int | None = None
    is_loading: bool = False
    has_error: bool = False
    error_message: str | None = None
    auto_refresh_enabled: bool = True
    refresh_interval_sec: float = REFRESH_INTERVAL_SEC
    refresh_task: asyncio.Task | None = None
    cycles: int = 0  # completed refresh cycles, success or failure
    notices: List[Notice] = field(default_factory=list)


Listener = Callable[["MonitorApp"], None]


class MonitorApp:
    """Coordinates fetch -> store -> classify -> display for one gauge."""

    def __init__(
        self,
        client: GaugeClient,
        store: HistoryStore,
        chart: GaugeChart | None = None,
        refresh_interval_sec: float = REFRESH_INTERVAL_SEC,
        auto_refresh: bool = True,
        history_hours: float = HISTORY_MAX_AGE_HOURS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.store = store
        self.chart = chart if chart is not None else GaugeChart()
        self.history_hours = history_hours
        self.state = AppState(
            auto_refresh_enabled=auto_refresh,
            refresh_interval_sec=float(refresh_interval_sec),
        )
        self._clock = clock
        self._listeners: list[Listener] = []

    # --- observers ---

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _emit(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def notify(self, message: str, level: str = "success", ttl_sec: float | None = None) -> Notice:
        if ttl_sec is None:
            ttl_sec = ERROR_NOTICE_SEC if level == "error" else SUCCESS_NOTICE_SEC
        notice = Notice(message=message, level=level, expires_at=self._clock() + ttl_sec)
        self.state.notices.append(notice)
        self._emit()
        return notice

    def active_notices(self, now: float | None = None) -> list[Notice]:
        if now is None:
            now = self._clock()
        self.state.notices = [n for n in self.state.notices if n.expires_at > now]
        return list(self.state.notices)

    # --- lifecycle ---

    async def initialize(self) -> None:
        """Load stored history into the chart, fetch once, start the timer."""
        logger.info("Initializing Rhine water level monitor")
        history = self.store.get_historical_data(self.history_hours)
        logger.info("Loaded %d historical readings from storage", len(history), extra={"entries": len(history)})
        self.chart.initialize(history)

        await self.fetch_and_update()
        if self.state.auto_refresh_enabled:
            self.start_auto_refresh()

    async def shutdown(self) -> None:
        task = self.state.refresh_task
        self.stop_auto_refresh()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.chart.destroy()
        logger.info("Application stopped")

    # --- refresh cycle ---

    def _set_loading(self, loading: bool) -> None:
        self.state.is_loading = loading
        if loading:
            self.state.phase = Phase.LOADING
        self._emit()

    async def fetch_and_update(self) -> bool:
        """
        Run one refresh cycle. Returns True when a fresh reading was shown;
        False when the fetch failed or another cycle was already in flight.
        """
        if self.state.is_loading:
            logger.debug("Refresh skipped; a cycle is already in flight")
            return False

        error: Exception | None = None
        reading: Reading | None = None
        try:
            # A raising listener must not leave is_loading set.
            self._set_loading(True)
            reading = await self.client.fetch_current_level()
        except Exception as exc:  # sole recovery point for refresh failures
            error = exc
        finally:
            self.state.is_loading = False
            if self.state.phase is Phase.LOADING:
                self.state.phase = Phase.IDLE

        if error is not None or reading is None:
            self._handle_error(error or RuntimeError("no reading returned"))
            self.state.cycles += 1
            self._emit()
            return False

        self.store.save_reading(reading)
        self.chart.update(reading)
        self.update_display(reading)
        self.state.has_error = False
        self.state.error_message = None
        self.state.phase = Phase.DISPLAYED
        self.state.cycles += 1
        self._emit()
        return True

    def update_display(self, reading: Reading, cached: bool = False) -> AlertTier:
        tier = classify(reading.water_level_cm)
        self.state.current_level = reading.water_level_cm
        self.state.current_tier = tier
        self.state.displayed = reading
        self.state.showing_cached = cached
        self.state.last_update_ms = reading.timestamp_ms
        self.chart.highlight(reading.water_level_cm)
        if reading.approximate_timestamp:
            logger.warning("Displayed reading has an approximate timestamp", extra={"reason": "approximate_timestamp"})
        logger.info(
            "Display updated: %d cm - %s%s",
            reading.water_level_cm,
            tier.label_de,
            " (cached)" if cached else "",
            extra={"level_cm": reading.water_level_cm, "tier": tier.key},
        )
        return tier

    def _handle_error(self, exc: BaseException) -> None:
        message = str(exc) or exc.__class__.__name__
        self.state.has_error = True
        self.state.error_message = message
        self.state.phase = Phase.ERROR
        logger.error("Failed to fetch and update: %s", message)
        self.notify(message, level="error")

        latest = self.store.get_latest_reading()
        if latest is None:
            return
        logger.info("Showing cached data", extra={"level_cm": latest.water_level_cm})
        self.update_display(latest, cached=True)
        self.notify("Zeige zwischengespeicherte Daten", level="success")

    # --- controls ---

    async def handle_manual_refresh(self) -> bool:
        """Refresh on demand; ignored while a cycle is running."""
        if self.state.is_loading:
            logger.debug("Manual refresh ignored while loading")
            return False
        logger.info("Manual refresh triggered")
        return await self.fetch_and_update()

    def set_auto_refresh(self, enabled: bool) -> None:
        self.state.auto_refresh_enabled = enabled
        if enabled:
            self.start_auto_refresh()
            self.notify("Auto-Aktualisierung aktiviert")
        else:
            self.stop_auto_refresh()
            self.notify("Auto-Aktualisierung deaktiviert")

    def toggle_auto_refresh(self) -> bool:
        self.set_auto_refresh(not self.state.auto_refresh_enabled)
        return self.state.auto_refresh_enabled

    def start_auto_refresh(self) -> None:
        """(Re)start the timer. Must be called with a running event loop."""
        self.stop_auto_refresh()
        self.state.refresh_task = asyncio.get_running_loop().create_task(self._refresh_loop())
        logger.info("Auto-refresh started (interval: %ss)", self.state.refresh_interval_sec)

    def stop_auto_refresh(self) -> None:
        task = self.state.refresh_task
        if task is None:
            return
        task.cancel()
        self.state.refresh_task = None
        logger.info("Auto-refresh stopped")

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.state.refresh_interval_sec)
            if not self.state.auto_refresh_enabled:
                continue
            if self.state.is_loading:
                logger.debug("Timer tick skipped; refresh already in flight")
                continue
            logger.debug("Auto-refresh triggered")
            try:
                # Shielded so stopping the timer does not abort a running cycle.
                await asyncio.shield(self.fetch_and_update())
            except Exception:
                logger.exception("Auto-refresh cycle failed; timer keeps running")
