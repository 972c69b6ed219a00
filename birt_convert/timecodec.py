"""
timecodec.py — decimal hours <-> clock strings

    decimal_to_time(7.5)                    -> "07:30"
    decimal_to_time(-7.5)                   -> "-07:30"
    decimal_to_time(7.5083, with_seconds=True) -> "07:30:30"
    time_to_decimal("07:30")                -> 7.5
"""

from __future__ import annotations

import math
import re
from numbers import Real
from typing import Any

from birt_convert.errors import InvalidInput

CLOCK_RE = re.compile(r"^\s*(-)?(\d+):([0-5]\d)(?::([0-5]\d))?\s*$")


def is_numeric(value: Any) -> bool:
    """True for finite int/float cell values. Booleans are not durations."""
    if isinstance(value, bool) or not isinstance(value, Real):
        return False
    return math.isfinite(value)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def decimal_to_time(value: Any, *, with_seconds: bool = False, carry: bool = True) -> str:
    """
    Render decimal hours as ``hh:mm`` (or ``hh:mm:ss``).

    Minutes are rounded half-up. When rounding lands on 60 minutes the hour
    is incremented; ``carry=False`` keeps the legacy output instead
    (7.999 -> "07:60"). Seconds output always carries.
    """
    if not is_numeric(value):
        raise InvalidInput(f"Expected a finite number of hours, got {value!r}")

    magnitude = abs(value)
    if with_seconds:
        total_seconds = _round_half_up(magnitude * 3600)
        hours, remainder = divmod(total_seconds, 3600)
        minutes, seconds = divmod(remainder, 60)
        sign = "-" if value < 0 else ""
        return f"{sign}{hours:02d}:{minutes:02d}:{seconds:02d}"

    hours = int(math.floor(magnitude))
    minutes = _round_half_up((magnitude - hours) * 60)
    if carry and minutes == 60:
        hours += 1
        minutes = 0
    sign = "-" if value < 0 else ""
    return f"{sign}{hours:02d}:{minutes:02d}"


def time_to_decimal(text: Any) -> float:
    """Parse ``[-]h:mm`` or ``[-]h:mm:ss`` back into decimal hours."""
    if not isinstance(text, str):
        raise InvalidInput(f"Expected a clock string, got {text!r}")
    match = CLOCK_RE.match(text)
    if not match:
        raise InvalidInput(f"Not a clock value: {text!r}")
    negative, hours, minutes, seconds = match.groups()
    total = int(hours) + int(minutes) / 60 + int(seconds or 0) / 3600
    return -total if negative else total
