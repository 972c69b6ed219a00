from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from birt_convert.timecodec import decimal_to_time, is_numeric

DERIVED_SUFFIX = "_hhmm"


@dataclass
class ConversionResult:
    rows: list[dict[str, Any]]
    added_headers: list[str] = field(default_factory=list)
    converted_cells: int = 0


def derived_header(column: str) -> str:
    return f"{column}{DERIVED_SUFFIX}"


def convert_columns(
    rows: list[dict[str, Any]],
    columns: list[str],
    keep_original: bool = False,
    *,
    with_seconds: bool = False,
    carry: bool = True,
) -> ConversionResult:
    """
    Convert numeric cells of the selected columns to clock strings.

    With ``keep_original`` the clock value goes to ``<column>_hhmm`` and the
    decimal value stays; otherwise the cell is replaced. Cells that are not
    numeric (text, None, already converted values) are left as they are.
    Input rows are not modified.
    """
    added: list[str] = []
    converted_cells = 0
    converted_rows: list[dict[str, Any]] = []

    for row in rows:
        new_row = dict(row)
        for column in columns:
            value = new_row.get(column)
            if not is_numeric(value):
                continue
            clock = decimal_to_time(value, with_seconds=with_seconds, carry=carry)
            converted_cells += 1
            if keep_original:
                target = derived_header(column)
                new_row[target] = clock
                if target not in added:
                    added.append(target)
            else:
                new_row[column] = clock
        converted_rows.append(new_row)

    return ConversionResult(rows=converted_rows, added_headers=added, converted_cells=converted_cells)


def output_headers(headers: list[str], added_headers: list[str]) -> list[str]:
    """Column order for serialization: source headers, then derived ones."""
    return list(headers) + [name for name in added_headers if name not in headers]
