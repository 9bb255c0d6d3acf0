"""
Rheinpegel configuration constants.

Built-in defaults for the fetch client, the history store, the refresh timer
and the terminal chart. config.toml and CLI flags override most of these.
"""

from __future__ import annotations

from pathlib import Path

# --- Upstream API ---
DEFAULT_API_URL = "https://www.stadt-koeln.de/interne-dienste/hochwasser/pegel_ws.php"
DEFAULT_FALLBACK_URL = "https://cors-anywhere.herokuapp.com/"
FETCH_TIMEOUT_SEC = 10.0             # Wall-clock limit per attempt
FETCH_MAX_RETRIES = 3                # Sequential attempts per fetch
FETCH_RETRY_DELAY_SEC = 1.0          # Linear backoff unit (1s, 2s, ...)

# --- Level sanity range (cm) ---
LEVEL_MIN_CM = 0
LEVEL_MAX_CM = 2000

# --- History persistence ---
STORAGE_KEY_DEFAULT = "rhein-pegel-history"
STATE_FILE_DEFAULT = Path.home() / ".rheinpegel_history.json"
STORE_SCHEMA_VERSION = "1.0.0"       # Mismatch discards the stored blob
HISTORY_MAX_ENTRIES = 1440           # One entry per minute for 24 hours
HISTORY_MAX_AGE_HOURS = 24
HISTORY_MAX_AGE_MS = HISTORY_MAX_AGE_HOURS * 60 * 60 * 1000
STORAGE_QUOTA_BYTES = 5 * 1024 * 1024  # Same order as browser localStorage

# --- Refresh timer ---
REFRESH_INTERVAL_SEC = 60.0
AUTO_REFRESH_DEFAULT = True

# --- Notifications ---
ERROR_NOTICE_SEC = 5.0
SUCCESS_NOTICE_SEC = 3.0

# --- Alert thresholds (cm) ---
WARNING_THRESHOLD_CM = 400
DANGER_THRESHOLD_CM = 800

# --- Chart ---
CHART_MAX_POINTS = 144               # 24 hours at 10-minute spacing
CHART_WIDTH = 60
CHART_HEIGHT = 10

# --- UI ---
UI_TICK_SEC = 0.15                   # TUI redraw/input interval
TUI_LOG_FILE_DEFAULT = Path.home() / ".rheinpegel.log"
