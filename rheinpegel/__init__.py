"""
Rheinpegel: Rhine river water level monitor for the Cologne gauge.

This package polls the city of Cologne's gauge XML feed and provides:
- Retrying fetch client with a fallback relay
- German-locale parsing into integer centimetres
- A bounded 24 h history persisted to a file or browser localStorage
- NORMAL / WARNING / DANGER classification
- Text chart, console modes and a curses TUI

Public API:
    main(argv=None) - CLI entrypoint
    main_async(argv=None) - Async entrypoint (Pyodide/browser)
    MonitorApp - Refresh coordinator
    GaugeClient.fetch_current_level() - Fetch one reading
    HistoryStore - Rolling reading history
    classify(level_cm) - Alert tier for a level
"""

from __future__ import annotations

__version__ = "1.0.0"

from rheinpegel.alerts import ALERT_TIERS, DANGER, NORMAL, WARNING, AlertTier, classify
from rheinpegel.app import MonitorApp, Phase
from rheinpegel.chart import GaugeChart
from rheinpegel.client import FetchExhaustedError, GaugeClient
from rheinpegel.history import HistoryStatistics, HistoryStore
from rheinpegel.kvstore import StateLockError, StorageError
from rheinpegel.parser import ParseError, Reading, parse
from rheinpegel.tui import main, main_async

__all__ = [
    "__version__",
    # Entry points
    "main",
    "main_async",
    # Coordinator
    "MonitorApp",
    "Phase",
    # Fetch + parse
    "GaugeClient",
    "FetchExhaustedError",
    "Reading",
    "ParseError",
    "parse",
    # History
    "HistoryStore",
    "HistoryStatistics",
    "StorageError",
    "StateLockError",
    # Alerts + chart
    "AlertTier",
    "ALERT_TIERS",
    "NORMAL",
    "WARNING",
    "DANGER",
    "classify",
    "GaugeChart",
]
