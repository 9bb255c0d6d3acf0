"""
Bounded, time-windowed history of gauge readings.

Handles:
- Loading/saving the history blob through a KeyValueStore slot
- Newest-first ordering capped at max_entries
- Age-based eviction (max_age_ms, 24 h by default)
- Schema-version check: a mismatched blob is discarded (no migration path)
- Quota recovery: keep the newest half and retry the write once

Persistence is best-effort: no storage exception escapes the public methods.
"""

from __future__ import annotations

import json
import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from rheinpegel.constants import (
    HISTORY_MAX_AGE_MS,
    HISTORY_MAX_ENTRIES,
    STORAGE_KEY_DEFAULT,
    STORE_SCHEMA_VERSION,
)
from rheinpegel.kvstore import KeyValueStore, StorageError, StorageQuotaError
from rheinpegel.parser import Reading
from rheinpegel.types import HistoryBlob
from rheinpegel.utils import ms_to_datetime, now_ms

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000


def _stored_ms(value: Any) -> int | None:
    """Epoch ms from the blob, or None for anything that is not a finite number."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        return int(value) if math.isfinite(value) else None
    except OverflowError:
        return None


@dataclass(frozen=True)
class HistoryStatistics:
    total_readings: int
    oldest_reading: datetime | None
    newest_reading: datetime | None
    last_updated: datetime | None
    storage_size: int

    @property
    def storage_size_kb(self) -> str:
        return f"{self.storage_size / 1024:.2f}"


class HistoryStore:
    """Rolling window of readings persisted under a single storage key."""

    def __init__(
        self,
        backend: KeyValueStore,
        storage_key: str = STORAGE_KEY_DEFAULT,
        max_entries: int = HISTORY_MAX_ENTRIES,
        max_age_ms: int = HISTORY_MAX_AGE_MS,
        version: str = STORE_SCHEMA_VERSION,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.backend = backend
        self.storage_key = storage_key
        self.max_entries = max(1, int(max_entries))
        self.max_age_ms = int(max_age_ms)
        self.version = version
        self._clock = clock

    def _now_ms(self) -> int:
        return now_ms(self._clock)

    # --- blob handling ---

    def _empty_blob(self) -> HistoryBlob:
        return HistoryBlob(version=self.version, readings=[], last_updated_ms=None)

    def _load(self) -> tuple[list[Reading], int | None]:
        """
        Read the slot. Missing, corrupt and version-mismatched blobs all come
        back empty; only backend failures raise (StorageError).
        """
        raw = self.backend.get_item(self.storage_key)
        if not raw:
            return [], None
        try:
            parsed: Any = json.loads(raw)
        except json.JSONDecodeError:
            logger.error("Failed to parse stored history; resetting", extra={"reason": "corrupt"})
            return [], None
        if not isinstance(parsed, dict):
            logger.error("Stored history has unexpected shape; resetting", extra={"reason": "corrupt"})
            return [], None
        if parsed.get("version") != self.version:
            logger.warning(
                "Storage version mismatch (%r != %r), resetting",
                parsed.get("version"),
                self.version,
                extra={"reason": "version_mismatch"},
            )
            return [], None

        readings: list[Reading] = []
        entries = parsed.get("readings")
        for entry in entries if isinstance(entries, list) else []:
            if not isinstance(entry, dict):
                continue
            try:
                readings.append(Reading.from_dict(entry))
            except (KeyError, TypeError, ValueError, OverflowError):
                logger.debug("Skipping malformed history entry: %r", entry)

        return readings, _stored_ms(parsed.get("last_updated_ms"))

    def _serialize(self, readings: list[Reading], last_updated_ms: int | None, indent: int | None = None) -> str:
        blob = self._empty_blob()
        blob["readings"] = [r.to_dict() for r in readings]
        blob["last_updated_ms"] = last_updated_ms
        if indent is None:
            return json.dumps(blob, separators=(",", ":"))
        return json.dumps(blob, indent=indent)

    def _persist(self, readings: list[Reading], last_updated_ms: int | None) -> list[Reading]:
        """
        Write the blob. On a quota failure drop the older half (readings are
        newest first) and retry once. Returns the readings actually written.
        """
        try:
            self.backend.set_item(self.storage_key, self._serialize(readings, last_updated_ms))
            return readings
        except StorageQuotaError:
            kept = readings[: len(readings) // 2]
            logger.error(
                "Storage quota exceeded, keeping newest %d of %d readings",
                len(kept),
                len(readings),
                extra={"entries": len(kept), "reason": "quota"},
            )
            self.backend.set_item(self.storage_key, self._serialize(kept, last_updated_ms))
            return kept

    # --- public API ---

    def save_reading(self, reading: Reading) -> bool:
        """
        Insert a reading, re-sort newest first, cap at max_entries and persist.
        Runs clean_old_data() after a successful write. Returns False when the
        write failed.
        """
        try:
            readings, _ = self._load()
            readings.append(reading)
            readings.sort(key=lambda r: r.timestamp_ms, reverse=True)
            del readings[self.max_entries:]
            written = self._persist(readings, self._now_ms())
        except StorageError as exc:
            logger.error("Failed to save reading: %s", exc, extra={"reason": "storage"})
            return False

        logger.debug("Reading saved", extra={"entries": len(written), "level_cm": reading.water_level_cm})
        self.clean_old_data()
        return True

    def get_historical_data(self, hours: float = 24) -> list[Reading]:
        """Readings from the last `hours`, oldest first (chart order)."""
        try:
            readings, _ = self._load()
        except StorageError as exc:
            logger.error("Failed to get historical data: %s", exc, extra={"reason": "storage"})
            return []
        cutoff = self._now_ms() - int(hours * HOUR_MS)
        window = [r for r in readings if r.timestamp_ms >= cutoff]
        window.sort(key=lambda r: r.timestamp_ms)
        return window

    def get_latest_reading(self) -> Reading | None:
        try:
            readings, _ = self._load()
        except StorageError as exc:
            logger.error("Failed to get latest reading: %s", exc, extra={"reason": "storage"})
            return None
        if not readings:
            return None
        return max(readings, key=lambda r: r.timestamp_ms)

    def clean_old_data(self) -> None:
        """Drop readings older than max_age_ms and persist the remainder."""
        try:
            readings, last_updated = self._load()
            cutoff = self._now_ms() - self.max_age_ms
            kept = [r for r in readings if r.timestamp_ms >= cutoff]
            if len(kept) != len(readings):
                logger.info(
                    "Evicted %d readings older than %d h",
                    len(readings) - len(kept),
                    self.max_age_ms // HOUR_MS,
                    extra={"entries": len(kept)},
                )
            self._persist(kept, last_updated)
        except StorageError as exc:
            logger.error("Failed to clean old data: %s", exc, extra={"reason": "storage"})

    def clear_all(self) -> bool:
        try:
            self.backend.remove_item(self.storage_key)
        except StorageError as exc:
            logger.error("Failed to clear storage: %s", exc, extra={"reason": "storage"})
            return False
        return True

    def export_data(self) -> str | None:
        """The full blob as pretty-printed JSON."""
        try:
            readings, last_updated = self._load()
        except StorageError as exc:
            logger.error("Failed to export data: %s", exc, extra={"reason": "storage"})
            return None
        return self._serialize(readings, last_updated, indent=2)

    def get_statistics(self) -> HistoryStatistics | None:
        try:
            readings, last_updated = self._load()
        except StorageError as exc:
            logger.error("Failed to get statistics: %s", exc, extra={"reason": "storage"})
            return None
        timestamps = [r.timestamp_ms for r in readings]
        size = len(self._serialize(readings, last_updated).encode("utf-8"))
        return HistoryStatistics(
            total_readings=len(readings),
            oldest_reading=ms_to_datetime(min(timestamps)) if timestamps else None,
            newest_reading=ms_to_datetime(max(timestamps)) if timestamps else None,
            last_updated=ms_to_datetime(last_updated),
            storage_size=size,
        )
