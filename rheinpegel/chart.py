"""
Water level chart model and text rendering.

GaugeChart keeps the plotted series (time labels + levels) bounded at
`max_points`, the two threshold lines matching the series length, and the
tier used to color the line. render() draws it as plain text rows for the
TUI and the console modes.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Iterable, List

from rheinpegel.alerts import NORMAL, AlertTier, classify
from rheinpegel.constants import (
    CHART_HEIGHT,
    CHART_MAX_POINTS,
    CHART_WIDTH,
    DANGER_THRESHOLD_CM,
    WARNING_THRESHOLD_CM,
)
from rheinpegel.parser import Reading
from rheinpegel.utils import ms_to_datetime

logger = logging.getLogger(__name__)

_SPARK_CHARS = " .:-=+*#%@"


def render_sparkline(values: List[float], width: int = 48) -> str:
    if not values:
        return "(no data)"
    if len(values) == 1:
        return f"{values[0]:.0f}"

    vmin = min(values)
    vmax = max(values)
    span = vmax - vmin
    if span <= 0:
        return ("=" * min(len(values), width))[:width]

    line = []
    for v in _downsample(values, width):
        level = int((v - vmin) / span * (len(_SPARK_CHARS) - 1))
        line.append(_SPARK_CHARS[level])
    return "".join(line)


def _downsample(values: List[float], width: int) -> List[float]:
    """Keep at most `width` points, always including the newest one."""
    if len(values) <= width:
        return list(values)
    step = max(1, math.ceil(len(values) / width))
    sampled = values[::-1][::step][::-1]
    return sampled[-width:]


class GaugeChart:
    """Plot state for the 24 h level series plus warning/danger lines."""

    def __init__(
        self,
        max_points: int = CHART_MAX_POINTS,
        warning_cm: int = WARNING_THRESHOLD_CM,
        danger_cm: int = DANGER_THRESHOLD_CM,
    ) -> None:
        self.max_points = max(1, int(max_points))
        self.warning_cm = warning_cm
        self.danger_cm = danger_cm
        self.labels: list[int] = []   # timestamp_ms, oldest first
        self.values: list[int] = []   # water_level_cm
        self.tier: AlertTier = NORMAL
        self.initialized = False

    @property
    def warning_line(self) -> list[int]:
        return [self.warning_cm] * len(self.labels)

    @property
    def danger_line(self) -> list[int]:
        return [self.danger_cm] * len(self.labels)

    def _trim(self) -> None:
        excess = len(self.labels) - self.max_points
        if excess > 0:
            del self.labels[:excess]
            del self.values[:excess]

    def initialize(self, history: Iterable[Reading] = ()) -> None:
        self.refresh(history)
        self.initialized = True
        logger.debug("Chart initialized", extra={"entries": len(self.labels)})

    def refresh(self, history: Iterable[Reading]) -> None:
        """Replace the whole series with `history` (any order)."""
        ordered = sorted(history, key=lambda r: r.timestamp_ms)
        self.labels = [r.timestamp_ms for r in ordered]
        self.values = [r.water_level_cm for r in ordered]
        self._trim()

    def update(self, reading: Reading) -> None:
        """Append one point and drop the oldest beyond max_points."""
        self.labels.append(reading.timestamp_ms)
        self.values.append(reading.water_level_cm)
        self._trim()

    def highlight(self, level_cm: float) -> AlertTier:
        """Recolor the series for the tier of the current level."""
        self.tier = classify(level_cm)
        return self.tier

    def destroy(self) -> None:
        self.labels = []
        self.values = []
        self.tier = NORMAL
        self.initialized = False

    def sparkline(self, width: int = 48) -> str:
        return render_sparkline([float(v) for v in self.values], width)

    def render(self, width: int = CHART_WIDTH, height: int = CHART_HEIGHT) -> list[str]:
        """
        Draw the series as text rows, top row first.

        The y axis starts at zero and always reaches the danger line. '*' marks
        the level, '-' the warning line and '=' the danger line.
        """
        axis_w = 8
        plot_w = max(4, width - axis_w)
        height = max(3, height)
        if not self.values:
            return ["(no data)"]

        points = _downsample([float(v) for v in self.values], plot_w)
        y_max = max(max(points), float(self.danger_cm)) * 1.05
        row_span = y_max / height

        def row_of(value: float) -> int:
            return min(height - 1, max(0, int(value / row_span)))

        warn_row = row_of(self.warning_cm)
        danger_row = row_of(self.danger_cm)
        grid = [[" "] * len(points) for _ in range(height)]
        for row in range(height):
            fill = "=" if row == danger_row else "-" if row == warn_row else None
            if fill:
                grid[row] = [fill] * len(points)
        for col, value in enumerate(points):
            grid[row_of(value)][col] = "*"

        lines: list[str] = []
        for row in range(height - 1, -1, -1):
            label = f"{row * row_span:5.0f} |" if row in (height - 1, danger_row, warn_row, 0) else "      |"
            lines.append(f"{label:<{axis_w}}"[:axis_w] + "".join(grid[row]))

        first = ms_to_datetime(self.labels[0])
        last = ms_to_datetime(self.labels[-1])
        lines.append(" " * axis_w + _time_axis(first, last, len(points)))
        return lines


def _time_axis(first: datetime | None, last: datetime | None, width: int) -> str:
    left = first.strftime("%H:%M") if first else ""
    right = last.strftime("%H:%M") if last else ""
    if width < len(left) + len(right) + 1:
        return right
    return left + " " * (width - len(left) - len(right)) + right
