"""
Parser for the Cologne gauge XML payload.

The upstream document looks like::

    <Root>
      <Datum>27. Oktober 2025</Datum>
      <Uhrzeit>15:25</Uhrzeit>
      <Pegel>3,68</Pegel>
      <Grafik>https://...</Grafik>
    </Root>

Datum, Uhrzeit and Pegel are required; Grafik is optional. Pegel is metres
with a German decimal comma and is normalized to integer centimetres.
"""

from __future__ import annotations

import logging
import math
import re
import time
import xml.etree.ElementTree as ET
from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Mapping

from rheinpegel.constants import LEVEL_MAX_CM, LEVEL_MIN_CM
from rheinpegel.types import StoredReading

logger = logging.getLogger(__name__)

GERMAN_MONTHS: dict[str, int] = {
    "Januar": 1,
    "Februar": 2,
    "März": 3,
    "Maerz": 3,
    "April": 4,
    "Mai": 5,
    "Juni": 6,
    "Juli": 7,
    "August": 8,
    "September": 9,
    "Oktober": 10,
    "November": 11,
    "Dezember": 12,
}

_LEVEL_RE = re.compile(r"^[+-]?\d+,\d{2}$")
_DATE_RE = re.compile(r"(\d{1,2})\.\s+(\w+)\s+(\d{4})")
_TIME_RE = re.compile(r"(\d{1,2}):(\d{2})")

REQUIRED_FIELDS = ("Datum", "Uhrzeit", "Pegel")


class ParseError(Exception):
    """Raised when a gauge payload cannot be turned into a Reading."""


class MissingFieldError(ParseError):
    """Raised when a required XML field is absent or blank."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = list(missing)
        super().__init__(f"Missing required fields in XML response: {', '.join(self.missing)}")


class NumberFormatError(ParseError):
    """Raised when Pegel is not a German decimal like '3,68'."""


class DateFormatError(ParseError):
    """Raised when Datum is not '<day>. <Monat> <year>'."""


class TimeFormatError(ParseError):
    """Raised when Uhrzeit is not 'H:MM' / 'HH:MM'."""


@dataclass(frozen=True)
class Reading:
    """One normalized gauge measurement."""
    water_level_cm: int
    date: str
    time: str
    timestamp_ms: int
    graphic: str | None = None
    # True when the timestamp is wall-clock time because Datum/Uhrzeit
    # could not be turned into a real calendar moment.
    approximate_timestamp: bool = False

    @property
    def out_of_range(self) -> bool:
        return not (LEVEL_MIN_CM <= self.water_level_cm <= LEVEL_MAX_CM)

    def to_dict(self) -> StoredReading:
        return StoredReading(**asdict(self))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Reading":
        """
        Rebuild a Reading from its stored form.

        Raises ValueError/TypeError/KeyError on malformed entries (including
        NaN or infinite numbers, which json.loads accepts); the
        history store skips those.
        """
        level = data["water_level_cm"]
        ts = data["timestamp_ms"]
        if isinstance(level, bool) or not isinstance(level, (int, float)):
            raise TypeError(f"bad water_level_cm: {level!r}")
        if isinstance(ts, bool) or not isinstance(ts, (int, float)):
            raise TypeError(f"bad timestamp_ms: {ts!r}")
        try:
            finite = math.isfinite(level) and math.isfinite(ts)
        except OverflowError as exc:
            raise ValueError(f"number out of range in stored reading: {level!r}, {ts!r}") from exc
        if not finite:
            raise ValueError(f"non-finite number in stored reading: {level!r}, {ts!r}")
        graphic = data.get("graphic")
        return cls(
            water_level_cm=int(level),
            date=str(data.get("date", "")),
            time=str(data.get("time", "")),
            timestamp_ms=int(ts),
            graphic=graphic if isinstance(graphic, str) and graphic else None,
            approximate_timestamp=bool(data.get("approximate_timestamp", False)),
        )


def convert_german_decimal(text: str) -> int:
    """
    Convert a German decimal metre value to centimetres.

    "3,68" -> 368. Rounds half-up. Values outside [0, 2000] cm are returned
    unchanged but logged, since flood readings can exceed nominal bounds.
    """
    raw = (text or "").strip()
    if not _LEVEL_RE.match(raw):
        raise NumberFormatError(f"Invalid number format: {text!r}")
    try:
        metres = Decimal(raw.replace(",", "."))
    except InvalidOperation as exc:
        raise NumberFormatError(f"Invalid number format: {text!r}") from exc

    centimetres = int((metres * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if centimetres < LEVEL_MIN_CM or centimetres > LEVEL_MAX_CM:
        logger.warning(
            "Water level %s cm seems out of normal range",
            centimetres,
            extra={"level_cm": centimetres},
        )
    return centimetres


def parse_german_datetime(
    date_str: str,
    time_str: str,
    clock: Callable[[], float] = time.time,
) -> tuple[int, bool]:
    """
    Turn "27. Oktober 2025" / "15:25" into local-time epoch milliseconds.

    Returns (timestamp_ms, approximate). Malformed text raises
    DateFormatError/TimeFormatError; well-formed text naming an impossible
    moment (31. Februar, 25:00) yields (now, True).
    """
    date_match = _DATE_RE.search(date_str or "")
    if not date_match:
        raise DateFormatError(f"Invalid date format: {date_str!r}")
    month_name = date_match.group(2)
    month = GERMAN_MONTHS.get(month_name)
    if month is None:
        raise DateFormatError(f"Unknown month: {month_name}")

    time_match = _TIME_RE.search(time_str or "")
    if not time_match:
        raise TimeFormatError(f"Invalid time format: {time_str!r}")

    day = int(date_match.group(1))
    year = int(date_match.group(3))
    hour = int(time_match.group(1))
    minute = int(time_match.group(2))

    try:
        local = datetime(year, month, day, hour, minute)
        return int(local.timestamp() * 1000), False
    except (ValueError, OverflowError, OSError) as exc:
        logger.warning(
            "Could not build timestamp from %r %r (%s); using current time",
            date_str,
            time_str,
            exc,
            extra={"reason": "approximate_timestamp"},
        )
        return int(clock() * 1000), True


def _find_text(root: ET.Element, tag: str) -> str | None:
    for elem in root.iter(tag):
        return (elem.text or "").strip()
    return None


def parse(raw_xml: str | bytes, clock: Callable[[], float] = time.time) -> Reading:
    """Parse an upstream XML payload into a validated Reading."""
    try:
        root = ET.fromstring(raw_xml)
    except (ET.ParseError, ValueError) as exc:
        raise ParseError(f"XML parsing error: {exc}") from exc

    values = {tag: _find_text(root, tag) for tag in REQUIRED_FIELDS}
    missing = [tag for tag, val in values.items() if not val]
    if missing:
        raise MissingFieldError(missing)

    datum = values["Datum"] or ""
    uhrzeit = values["Uhrzeit"] or ""
    level_cm = convert_german_decimal(values["Pegel"] or "")
    timestamp_ms, approximate = parse_german_datetime(datum, uhrzeit, clock=clock)

    return Reading(
        water_level_cm=level_cm,
        date=datum,
        time=uhrzeit,
        timestamp_ms=timestamp_ms,
        graphic=_find_text(root, "Grafik") or None,
        approximate_timestamp=approximate,
    )
