"""
Query step calculation.

Steps are derived from the time range and the number of points the caller
wants, rounded to a human friendly ladder, and never finer than the
configured minimum interval or the safe resolution limit.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from .models import TimeRange

DEFAULT_RESOLUTION = 1500
SAFE_RESOLUTION = 11000
MIN_SAFE_INTERVAL = timedelta(milliseconds=1)

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h|d|w|y)")
_BARE_NUMBER = re.compile(r"\d+(?:\.\d+)?")
_UNITS = {
    "y": timedelta(days=365),
    "w": timedelta(weeks=1),
    "d": timedelta(days=1),
    "h": timedelta(hours=1),
    "m": timedelta(minutes=1),
    "s": timedelta(seconds=1),
    "ms": timedelta(milliseconds=1),
}

# (upper bound in ms, rounded interval)
_ROUNDING_LADDER = (
    (10, timedelta(milliseconds=1)),
    (15, timedelta(milliseconds=10)),
    (35, timedelta(milliseconds=20)),
    (75, timedelta(milliseconds=50)),
    (150, timedelta(milliseconds=100)),
    (350, timedelta(milliseconds=200)),
    (750, timedelta(milliseconds=500)),
    (1_500, timedelta(seconds=1)),
    (3_500, timedelta(seconds=2)),
    (7_500, timedelta(seconds=5)),
    (12_500, timedelta(seconds=10)),
    (17_500, timedelta(seconds=15)),
    (25_000, timedelta(seconds=20)),
    (45_000, timedelta(seconds=30)),
    (90_000, timedelta(minutes=1)),
    (210_000, timedelta(minutes=2)),
    (450_000, timedelta(minutes=5)),
    (750_000, timedelta(minutes=10)),
    (1_050_000, timedelta(minutes=15)),
    (1_500_000, timedelta(minutes=20)),
    (2_700_000, timedelta(minutes=30)),
    (5_400_000, timedelta(hours=1)),
    (9_000_000, timedelta(hours=2)),
    (16_200_000, timedelta(hours=3)),
    (32_400_000, timedelta(hours=6)),
    (86_400_000, timedelta(hours=12)),
    (604_800_000, timedelta(days=1)),
    (1_814_400_000, timedelta(weeks=1)),
    (3_628_800_000, timedelta(days=30)),
)


def parse_duration(text: str) -> timedelta:
    """
    Parse ``15s``, ``1h30m``, ``500ms`` or a bare number of seconds.

    A leading ``>`` (Grafana's "at least" marker) is ignored.
    """

    cleaned = text.strip().lstrip(">").strip()
    if not cleaned:
        raise ValueError("empty duration")
    if _BARE_NUMBER.fullmatch(cleaned):
        return timedelta(seconds=float(cleaned))

    total = timedelta()
    position = 0
    for match in _DURATION_PART.finditer(cleaned):
        if match.start() != position:
            break
        total += float(match.group(1)) * _UNITS[match.group(2)]
        position = match.end()
    if position != len(cleaned):
        raise ValueError(f"invalid duration {text!r}")
    return total


def format_duration(value: timedelta) -> str:
    """Render ``value`` using the largest unit that fits, e.g. ``2m`` or ``500ms``."""

    for suffix, unit in _UNITS.items():
        if value >= unit:
            return f"{int(value / unit)}{suffix}"
    return "1ms"


def round_interval(value: timedelta) -> timedelta:
    millis = value / timedelta(milliseconds=1)
    for bound, rounded in _ROUNDING_LADDER:
        if millis < bound:
            return rounded
    return timedelta(days=365)


@dataclass(frozen=True, slots=True)
class Interval:
    text: str
    value: timedelta


class IntervalCalculator:
    """Pick query resolution for a time range."""

    def __init__(self, *, min_interval: timedelta = timedelta(milliseconds=1)) -> None:
        self.min_interval = min_interval

    def calculate(
        self,
        time_range: TimeRange,
        min_interval: Optional[timedelta] = None,
        max_data_points: int = DEFAULT_RESOLUTION,
    ) -> Interval:
        floor = min_interval or self.min_interval
        resolution = max_data_points if max_data_points > 0 else DEFAULT_RESOLUTION
        calculated = time_range.duration / resolution
        if calculated < floor:
            return Interval(text=format_duration(floor), value=floor)
        rounded = round_interval(calculated)
        return Interval(text=format_duration(rounded), value=rounded)

    def calculate_safe_interval(self, time_range: TimeRange, resolution: int = SAFE_RESOLUTION) -> Interval:
        safe = time_range.duration / resolution
        if safe > MIN_SAFE_INTERVAL:
            rounded = round_interval(safe)
            return Interval(text=format_duration(rounded), value=rounded)
        return Interval(text=format_duration(MIN_SAFE_INTERVAL), value=MIN_SAFE_INTERVAL)
