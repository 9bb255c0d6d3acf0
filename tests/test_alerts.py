from __future__ import annotations

import math
import unittest

from rheinpegel.alerts import ALERT_TIERS, DANGER, NORMAL, WARNING, classify


class ClassifyTests(unittest.TestCase):
    def test_tier_boundaries(self) -> None:
        cases = [
            (0, NORMAL),
            (399, NORMAL),
            (399.9, NORMAL),
            (400, WARNING),
            (799, WARNING),
            (800, DANGER),
            (2500, DANGER),
        ]
        for level, tier in cases:
            with self.subTest(level=level):
                self.assertIs(classify(level), tier)

    def test_classify_is_total(self) -> None:
        self.assertIs(classify(-50), NORMAL)
        self.assertIs(classify(math.inf), DANGER)
        self.assertIs(classify(math.nan), DANGER)

    def test_tier_table(self) -> None:
        self.assertEqual(set(ALERT_TIERS), {"NORMAL", "WARNING", "DANGER"})
        self.assertEqual(WARNING.label_de, "Warnung")
        self.assertTrue(DANGER.contains(10_000))
        self.assertFalse(NORMAL.contains(400))


if __name__ == "__main__":
    unittest.main()
