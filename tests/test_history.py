from __future__ import annotations

import json
import unittest

from rheinpegel.constants import HISTORY_MAX_ENTRIES
from rheinpegel.history import HistoryStore
from rheinpegel.kvstore import (
    MemoryKeyValueStore,
    StorageQuotaError,
    StorageUnavailableError,
)
from rheinpegel.parser import Reading

NOW_S = 1_760_000_000.0
NOW_MS = int(NOW_S * 1000)
MINUTE_MS = 60 * 1000
KEY = "rhein-pegel-history"


def make_reading(minutes_ago: float, level: int = 300) -> Reading:
    return Reading(
        water_level_cm=level,
        date="9. Oktober 2025",
        time="10:00",
        timestamp_ms=int(NOW_MS - minutes_ago * MINUTE_MS),
    )


class QuotaOnceStore(MemoryKeyValueStore):
    """Raises a quota error on the next `failures` writes."""

    def __init__(self) -> None:
        super().__init__()
        self.failures = 0
        self.writes: list[str] = []

    def set_item(self, key: str, value: str) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise StorageQuotaError("quota exceeded")
        self.writes.append(value)
        super().set_item(key, value)


class BrokenStore:
    def get_item(self, key: str) -> str | None:
        raise StorageUnavailableError("storage disabled")

    def set_item(self, key: str, value: str) -> None:
        raise StorageUnavailableError("storage disabled")

    def remove_item(self, key: str) -> None:
        raise StorageUnavailableError("storage disabled")


class HistoryStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.backend = MemoryKeyValueStore()
        self.store = HistoryStore(self.backend, storage_key=KEY, clock=lambda: NOW_S)

    def test_save_and_latest(self) -> None:
        self.assertIsNone(self.store.get_latest_reading())
        self.assertTrue(self.store.save_reading(make_reading(10, 310)))
        self.assertTrue(self.store.save_reading(make_reading(1, 320)))
        self.assertTrue(self.store.save_reading(make_reading(5, 315)))
        latest = self.store.get_latest_reading()
        self.assertIsNotNone(latest)
        self.assertEqual(latest.water_level_cm, 320)

    def test_blob_is_newest_first_and_history_is_oldest_first(self) -> None:
        for minutes in (30, 10, 20):
            self.store.save_reading(make_reading(minutes))
        blob = json.loads(self.backend.get_item(KEY))
        stored = [r["timestamp_ms"] for r in blob["readings"]]
        self.assertEqual(stored, sorted(stored, reverse=True))
        self.assertEqual(blob["version"], "1.0.0")
        self.assertEqual(blob["last_updated_ms"], NOW_MS)

        history = [r.timestamp_ms for r in self.store.get_historical_data(24)]
        self.assertEqual(history, sorted(history))
        self.assertEqual(len(history), 3)

    def test_hours_window(self) -> None:
        self.store.save_reading(make_reading(30))
        self.store.save_reading(make_reading(5 * 60))
        self.assertEqual(len(self.store.get_historical_data(1)), 1)
        self.assertEqual(len(self.store.get_historical_data(6)), 2)

    def test_old_readings_are_evicted_on_save(self) -> None:
        stale = make_reading(25 * 60)
        self.backend.set_item(
            KEY,
            json.dumps({"version": "1.0.0", "readings": [stale.to_dict()], "last_updated_ms": None}),
        )
        self.store.save_reading(make_reading(1))
        blob = json.loads(self.backend.get_item(KEY))
        self.assertEqual(len(blob["readings"]), 1)
        self.assertEqual(blob["readings"][0]["timestamp_ms"], NOW_MS - MINUTE_MS)

    def test_max_entries_cap_keeps_newest(self) -> None:
        store = HistoryStore(self.backend, storage_key=KEY, max_entries=3, clock=lambda: NOW_S)
        for minutes in (50, 40, 30, 20, 10):
            store.save_reading(make_reading(minutes))
        kept = [r.timestamp_ms for r in store.get_historical_data(24)]
        self.assertEqual(kept, [NOW_MS - m * MINUTE_MS for m in (30, 20, 10)])

    def test_default_cap_drops_oldest_of_1441(self) -> None:
        seeded = [make_reading(i * 0.5).to_dict() for i in range(1, HISTORY_MAX_ENTRIES + 1)]
        self.backend.set_item(
            KEY,
            json.dumps({"version": "1.0.0", "readings": seeded, "last_updated_ms": NOW_MS}),
        )
        oldest = NOW_MS - int(HISTORY_MAX_ENTRIES * 0.5 * MINUTE_MS)

        self.assertTrue(self.store.save_reading(make_reading(0)))

        stored = json.loads(self.backend.get_item(KEY))["readings"]
        self.assertEqual(len(stored), HISTORY_MAX_ENTRIES)
        timestamps = {r["timestamp_ms"] for r in stored}
        self.assertNotIn(oldest, timestamps)
        self.assertIn(NOW_MS, timestamps)

    def test_version_mismatch_discards_blob(self) -> None:
        self.backend.set_item(
            KEY,
            json.dumps({"version": "0.9.0", "readings": [make_reading(1).to_dict()], "last_updated_ms": 1}),
        )
        with self.assertLogs("rheinpegel.history", level="WARNING"):
            self.assertEqual(self.store.get_historical_data(24), [])
        self.store.save_reading(make_reading(2))
        blob = json.loads(self.backend.get_item(KEY))
        self.assertEqual(blob["version"], "1.0.0")
        self.assertEqual(len(blob["readings"]), 1)

    def test_corrupt_blob_reads_as_empty(self) -> None:
        self.backend.set_item(KEY, "{not json")
        with self.assertLogs("rheinpegel.history", level="ERROR"):
            self.assertIsNone(self.store.get_latest_reading())

    def test_malformed_entries_are_skipped(self) -> None:
        good = make_reading(3).to_dict()
        self.backend.set_item(
            KEY,
            json.dumps({"version": "1.0.0", "readings": [good, {"date": "x"}, "junk"], "last_updated_ms": None}),
        )
        self.assertEqual(len(self.store.get_historical_data(24)), 1)

    def test_non_finite_numbers_are_skipped(self) -> None:
        good = json.dumps(make_reading(3).to_dict())
        raw = (
            '{"version":"1.0.0","last_updated_ms":Infinity,"readings":['
            + good
            + ',{"water_level_cm":300,"timestamp_ms":Infinity,"date":"","time":""}'
            + ',{"water_level_cm":NaN,"timestamp_ms":1760000000000,"date":"","time":""}'
            + ',{"water_level_cm":300,"timestamp_ms":1e400,"date":"","time":""}'
            + ',{"water_level_cm":300,"timestamp_ms":' + "9" * 400 + ',"date":"","time":""}]}'
        )
        self.backend.set_item(KEY, raw)

        latest = self.store.get_latest_reading()
        self.assertIsNotNone(latest)
        self.assertEqual(latest.timestamp_ms, NOW_MS - 3 * MINUTE_MS)
        self.assertEqual(len(self.store.get_historical_data(24)), 1)
        stats = self.store.get_statistics()
        self.assertEqual(stats.total_readings, 1)
        self.assertIsNone(stats.last_updated)

    def test_quota_error_keeps_newest_half(self) -> None:
        backend = QuotaOnceStore()
        store = HistoryStore(backend, storage_key=KEY, clock=lambda: NOW_S)
        for minutes in (40, 30, 20, 10):
            store.save_reading(make_reading(minutes))

        backend.failures = 1
        with self.assertLogs("rheinpegel.history", level="ERROR"):
            self.assertTrue(store.save_reading(make_reading(1, 999)))

        kept = store.get_historical_data(24)
        self.assertEqual([r.timestamp_ms for r in kept], [NOW_MS - 10 * MINUTE_MS, NOW_MS - MINUTE_MS])
        self.assertEqual(store.get_latest_reading().water_level_cm, 999)

    def test_second_quota_failure_reports_false(self) -> None:
        backend = QuotaOnceStore()
        store = HistoryStore(backend, storage_key=KEY, clock=lambda: NOW_S)
        backend.failures = 2
        with self.assertLogs("rheinpegel.history", level="ERROR"):
            self.assertFalse(store.save_reading(make_reading(1)))
        self.assertIsNone(store.get_latest_reading())

    def test_unavailable_backend_never_raises(self) -> None:
        store = HistoryStore(BrokenStore(), storage_key=KEY, clock=lambda: NOW_S)
        with self.assertLogs("rheinpegel.history", level="ERROR"):
            self.assertFalse(store.save_reading(make_reading(1)))
            self.assertEqual(store.get_historical_data(24), [])
            self.assertIsNone(store.get_latest_reading())
            self.assertIsNone(store.export_data())
            self.assertIsNone(store.get_statistics())
            self.assertFalse(store.clear_all())
            store.clean_old_data()

    def test_export_statistics_and_clear(self) -> None:
        self.store.save_reading(make_reading(60, 280))
        self.store.save_reading(make_reading(1, 290))

        exported = json.loads(self.store.export_data())
        self.assertEqual(exported["version"], "1.0.0")
        self.assertEqual(len(exported["readings"]), 2)

        stats = self.store.get_statistics()
        self.assertEqual(stats.total_readings, 2)
        self.assertEqual(int(stats.newest_reading.timestamp() * 1000), NOW_MS - MINUTE_MS)
        self.assertEqual(int(stats.oldest_reading.timestamp() * 1000), NOW_MS - 60 * MINUTE_MS)
        self.assertGreater(stats.storage_size, 0)
        self.assertRegex(stats.storage_size_kb, r"^\d+\.\d{2}$")

        self.assertTrue(self.store.clear_all())
        self.assertIsNone(self.store.get_latest_reading())
        self.assertEqual(self.store.get_statistics().total_readings, 0)


if __name__ == "__main__":
    unittest.main()
