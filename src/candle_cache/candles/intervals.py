"""Interval and bucket utilities."""

from __future__ import annotations

import re
from typing import NamedTuple

_UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
    "w": 604800,
}

_SHORTHAND = re.compile(r"^\s*(\d+)\s*([smhdw])\s*$")


class Bucket(NamedTuple):
    start: int
    end: int


def parse_interval(value: int | str) -> int:
    """Return an interval in seconds from ``300``, ``"300"`` or ``"5m"``."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid candle interval: {value!r}")
    if isinstance(value, int):
        seconds = value
    else:
        text = str(value).strip()
        if text.isdigit():
            seconds = int(text)
        else:
            match = _SHORTHAND.match(text.lower())
            if match is None:
                raise ValueError(f"Invalid candle interval: {value!r}")
            seconds = int(match.group(1)) * _UNIT_SECONDS[match.group(2)]
    if seconds <= 0:
        raise ValueError(f"Candle interval must be positive, got {value!r}")
    return seconds


def start_of_interval(timestamp: int, interval: int) -> int:
    """Floor *timestamp* to the start of its *interval* bucket."""
    return (timestamp // interval) * interval


def candle_interval(timestamp: int, interval: int) -> Bucket:
    """Bucket containing *timestamp*: ``start <= timestamp < end``."""
    start = start_of_interval(timestamp, interval)
    return Bucket(start=start, end=start + interval)
