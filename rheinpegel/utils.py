"""
Rheinpegel utility functions.

Pure helpers for epoch-millisecond conversion and clock formatting.
No side effects, no state access.
"""

from __future__ import annotations

import time
from datetime import datetime


def now_ms(clock=time.time) -> int:
    """Current time from `clock` (epoch seconds) as integer milliseconds."""
    return int(clock() * 1000)


def ms_to_datetime(ms: int | float | None) -> datetime | None:
    """Convert epoch milliseconds to a local-time aware datetime."""
    if ms is None:
        return None
    try:
        return datetime.fromtimestamp(float(ms) / 1000.0).astimezone()
    except (OverflowError, OSError, ValueError):
        return None


def fmt_clock(dt: datetime | None, with_date: bool = False) -> str:
    """Format a datetime as local clock time (HH:MM:SS or full with date)."""
    if dt is None:
        return "-"
    local_dt = dt.astimezone()
    if with_date:
        return local_dt.strftime("%d.%m.%Y %H:%M:%S")
    return local_dt.strftime("%H:%M:%S")


def fmt_rel(now: datetime, target: datetime | None) -> str:
    """Relative age of `target`: "3m ago", "in 40s", "now"."""
    if target is None:
        return "unknown"
    delta = (target - now).total_seconds()
    if abs(delta) < 1:
        return "now"
    seconds = int(abs(delta))
    for unit, size in (("h", 3600), ("m", 60)):
        if seconds >= size:
            amount = f"{seconds // size}{unit}"
            break
    else:
        amount = f"{seconds}s"
    return f"{amount} ago" if delta < 0 else f"in {amount}"


def coerce_int(val, default: int) -> int:
    """Coerce a config value to a positive int, returning `default` on failure."""
    if isinstance(val, bool):
        return default
    try:
        parsed = int(val)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def coerce_float(val, default: float) -> float:
    """Coerce a config value to a non-negative float, returning `default` on failure."""
    if isinstance(val, bool) or val is None:
        return default
    try:
        parsed = float(val)
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= 0 else default
