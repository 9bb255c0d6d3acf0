"""
Alert tiers for the Rhine gauge at Cologne.

Each tier covers a half-open band [min_cm, max_cm) of water level; DANGER
is unbounded above. classify() is total: every level maps to one tier.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from rheinpegel.constants import DANGER_THRESHOLD_CM, WARNING_THRESHOLD_CM


@dataclass(frozen=True)
class AlertTier:
    key: str
    min_cm: float
    max_cm: float
    color: str
    bg_color: str
    label: str
    label_de: str
    icon: str
    description: str
    palette_key: str  # curses color slot used by the TUI

    def contains(self, level_cm: float) -> bool:
        return self.min_cm <= level_cm < self.max_cm


NORMAL = AlertTier(
    key="NORMAL",
    min_cm=0,
    max_cm=WARNING_THRESHOLD_CM,
    color="#4CAF50",
    bg_color="rgba(76, 175, 80, 0.1)",
    label="Normal",
    label_de="Normal",
    icon="✓",
    description="Der Wasserstand liegt im normalen Bereich.",
    palette_key="normal",
)

WARNING = AlertTier(
    key="WARNING",
    min_cm=WARNING_THRESHOLD_CM,
    max_cm=DANGER_THRESHOLD_CM,
    color="#FF9800",
    bg_color="rgba(255, 152, 0, 0.1)",
    label="Warning",
    label_de="Warnung",
    icon="⚠",
    description="Erhöhter Wasserstand - Vorsicht geboten.",
    palette_key="warning",
)

DANGER = AlertTier(
    key="DANGER",
    min_cm=DANGER_THRESHOLD_CM,
    max_cm=math.inf,
    color="#F44336",
    bg_color="rgba(244, 67, 54, 0.1)",
    label="Danger",
    label_de="Gefahr",
    icon="⚡",
    description="Hochwassergefahr - Extreme Vorsicht!",
    palette_key="danger",
)

ALERT_TIERS: dict[str, AlertTier] = {t.key: t for t in (NORMAL, WARNING, DANGER)}


def classify(level_cm: float) -> AlertTier:
    """Return NORMAL below 400 cm, WARNING below 800 cm, DANGER otherwise."""
    if level_cm < NORMAL.max_cm:
        return NORMAL
    if level_cm < WARNING.max_cm:
        return WARNING
    return DANGER
