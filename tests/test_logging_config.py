from __future__ import annotations

import logging
import unittest

from rheinpegel.logging_config import ContextualFormatter


class ContextualFormatterTests(unittest.TestCase):
    def make_record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord("rheinpegel.client", logging.INFO, __file__, 1, "fetched", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_appends_known_extra_keys(self) -> None:
        formatter = ContextualFormatter(fmt="%(levelname)s %(message)s")
        line = formatter.format(self.make_record(attempt=2, level_cm=400, ignored="x", url=None))
        self.assertEqual(line, "INFO fetched | attempt=2 level_cm=400")

    def test_plain_message_without_context(self) -> None:
        formatter = ContextualFormatter(fmt="%(message)s", extra_keys=["tier"])
        self.assertEqual(formatter.format(self.make_record(level_cm=1)), "fetched")
        self.assertEqual(formatter.format(self.make_record(tier="WARNING")), "fetched | tier=WARNING")


if __name__ == "__main__":
    unittest.main()
