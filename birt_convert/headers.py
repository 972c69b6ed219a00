from __future__ import annotations

from collections import Counter
from typing import Iterable


def ensure_unique_headers(headers: Iterable[str]) -> list[str]:
    """
    Make header names unique by suffixing repeats with their occurrence count.

        ["Hours", "Hours", "Name"] -> ["Hours", "Hours (2)", "Name"]

    A literal input name that happens to look like a generated one
    (e.g. "Hours (2)") is left alone and may still collide.
    """
    seen: Counter = Counter()
    unique: list[str] = []
    for header in headers:
        seen[header] += 1
        count = seen[header]
        unique.append(header if count == 1 else f"{header} ({count})")
    return unique


def placeholder_header(index: int) -> str:
    """Name used for a blank header cell at 0-based column ``index``."""
    return f"Column{index + 1}"
