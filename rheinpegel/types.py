"""
Rheinpegel type definitions for persisted data.

These TypedDicts document the JSON shape kept in the key-value slot so the
history store and its tests agree on field names.
"""

from __future__ import annotations

from typing import TypedDict


class StoredReading(TypedDict, total=False):
    """A single reading as serialized into the history blob."""
    water_level_cm: int
    date: str        # Datum text, e.g. "27. Oktober 2025"
    time: str        # Uhrzeit text, e.g. "15:25"
    timestamp_ms: int  # Local-time epoch milliseconds
    graphic: str | None
    approximate_timestamp: bool


class HistoryBlob(TypedDict):
    """
    Root structure persisted under the history storage key.

    `readings` is kept newest first; `version` must equal
    STORE_SCHEMA_VERSION or the whole blob is discarded.
    """
    version: str
    readings: list[StoredReading]
    last_updated_ms: int | None
