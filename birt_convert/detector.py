"""
detector.py — decimal-hour column suggestions

Flags columns that probably hold decimal hours so the operator starts from a
sensible selection. The result is advisory: false positives (ID columns made
of small integers) and false negatives (sparse columns) are expected.

Public API:
    detect_decimal_hour_columns(headers, rows) -> list[str]
    analyse_columns(headers, rows)             -> dict[str, ColumnProfile]
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Optional

from birt_convert.timecodec import is_numeric

TIME_KEYWORDS = (
    "hour",
    "hrs",
    "time",
    "duration",
    "worked",
    "logged",
    "actual",
    "planned",
    "scheduled",
    "billable",
    "non-billable",
    "productive",
    "non-productive",
    "hours",
)

MIN_NUMERIC_RATIO = 0.8
MIN_HOURS = -1000
MAX_HOURS = 1000


@dataclass
class ColumnProfile:
    name: str
    has_keyword: bool
    non_null: int
    numeric_count: int
    numeric_ratio: float
    min_value: Optional[float]
    max_value: Optional[float]
    suggested: bool
    reason: str

    def to_dict(self) -> dict:
        return asdict(self)


def has_time_keyword(header: str) -> bool:
    lowered = header.lower()
    return any(keyword in lowered for keyword in TIME_KEYWORDS)


def profile_column(header: str, values: list[Any]) -> ColumnProfile:
    has_keyword = has_time_keyword(header)
    present = [value for value in values if value is not None]
    numeric = [value for value in present if is_numeric(value)]

    def build(suggested: bool, reason: str, ratio: float = 0.0) -> ColumnProfile:
        return ColumnProfile(
            name=header,
            has_keyword=has_keyword,
            non_null=len(present),
            numeric_count=len(numeric),
            numeric_ratio=ratio,
            min_value=min(numeric) if numeric else None,
            max_value=max(numeric) if numeric else None,
            suggested=suggested,
            reason=reason,
        )

    if not present:
        return build(False, "no values")

    ratio = len(numeric) / len(present)
    if ratio < MIN_NUMERIC_RATIO:
        return build(False, f"only {ratio:.0%} numeric", ratio)

    if min(numeric) < MIN_HOURS or max(numeric) > MAX_HOURS:
        return build(False, f"values outside {MIN_HOURS}..{MAX_HOURS}", ratio)

    if has_keyword:
        return build(True, "time keyword in header", ratio)
    if ratio == 1.0:
        return build(True, "all values numeric and in range", ratio)
    return build(False, "no time keyword and not fully numeric", ratio)


def analyse_columns(headers: list[str], rows: list[dict[str, Any]]) -> dict[str, ColumnProfile]:
    return {
        header: profile_column(header, [row.get(header) for row in rows])
        for header in headers
    }


def detect_decimal_hour_columns(headers: list[str], rows: list[dict[str, Any]]) -> list[str]:
    """Return the headers that look like decimal-hour columns, in header order."""
    profiles = analyse_columns(headers, rows)
    return [header for header in headers if profiles[header].suggested]
