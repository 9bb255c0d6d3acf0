from __future__ import annotations

import unittest

from rheinpegel.alerts import DANGER, NORMAL, WARNING
from rheinpegel.chart import GaugeChart, render_sparkline
from rheinpegel.parser import Reading

BASE_MS = 1_760_000_000_000


def reading(i: int, level: int) -> Reading:
    return Reading(level, "", "", BASE_MS + i * 60_000)


class GaugeChartTests(unittest.TestCase):
    def test_update_is_bounded_by_max_points(self) -> None:
        chart = GaugeChart(max_points=5)
        for i in range(8):
            chart.update(reading(i, 300 + i))
        self.assertEqual(len(chart.labels), 5)
        self.assertEqual(chart.values, [303, 304, 305, 306, 307])
        self.assertEqual(chart.labels[-1], BASE_MS + 7 * 60_000)

    def test_threshold_lines_track_series_length(self) -> None:
        chart = GaugeChart(max_points=10)
        self.assertEqual(chart.warning_line, [])
        for i in range(4):
            chart.update(reading(i, 350))
        self.assertEqual(chart.warning_line, [400] * 4)
        self.assertEqual(chart.danger_line, [800] * 4)

    def test_initialize_sorts_and_trims_history(self) -> None:
        chart = GaugeChart(max_points=3)
        history = [reading(i, 100 + i) for i in (4, 0, 3, 1, 2)]
        chart.initialize(history)
        self.assertTrue(chart.initialized)
        self.assertEqual(chart.values, [102, 103, 104])

    def test_highlight_follows_tier(self) -> None:
        chart = GaugeChart()
        self.assertIs(chart.tier, NORMAL)
        self.assertIs(chart.highlight(450), WARNING)
        self.assertIs(chart.tier, WARNING)
        self.assertIs(chart.highlight(900), DANGER)

    def test_destroy_resets(self) -> None:
        chart = GaugeChart()
        chart.initialize([reading(0, 500)])
        chart.highlight(500)
        chart.destroy()
        self.assertEqual(chart.values, [])
        self.assertFalse(chart.initialized)
        self.assertIs(chart.tier, NORMAL)

    def test_render(self) -> None:
        chart = GaugeChart()
        self.assertEqual(chart.render(), ["(no data)"])
        for i in range(120):
            chart.update(reading(i, 300 + (i % 7) * 20))
        lines = chart.render(width=60, height=10)
        self.assertEqual(len(lines), 11)
        self.assertTrue(all(len(line) <= 60 for line in lines))
        self.assertTrue(any("*" in line for line in lines[:-1]))
        self.assertTrue(any("=" in line for line in lines[:-1]))


class SparklineTests(unittest.TestCase):
    def test_edge_cases(self) -> None:
        self.assertEqual(render_sparkline([]), "(no data)")
        self.assertEqual(render_sparkline([412.0]), "412")
        self.assertEqual(render_sparkline([5.0, 5.0, 5.0]), "===")

    def test_width_limit_keeps_newest(self) -> None:
        values = [float(v) for v in range(200)]
        line = render_sparkline(values, width=48)
        self.assertLessEqual(len(line), 48)
        self.assertEqual(line[-1], "@")


if __name__ == "__main__":
    unittest.main()
