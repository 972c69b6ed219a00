from __future__ import annotations

import io
from typing import Any, Union

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

SHEET_TITLE = "Converted Data"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _matrix(rows: list[dict[str, Any]], headers: list[str]) -> list[list[Any]]:
    return [[row.get(header) for header in headers] for row in rows]


def to_csv_text(rows: list[dict[str, Any]], headers: list[str]) -> str:
    # object dtype keeps ints as ints next to missing cells
    frame = pd.DataFrame(_matrix(rows, headers), columns=headers, dtype=object)
    return frame.to_csv(index=False, lineterminator="\n")


def _infer_col_widths(matrix: list[list[Any]], headers: list[str], min_width: int = 10, max_width: int = 60, sample: int = 300) -> list[int]:
    widths = [max(min_width, min(max_width, len(header) + 2)) for header in headers]
    for row in matrix[:sample]:
        for i, value in enumerate(row):
            if value is not None:
                widths[i] = max(widths[i], min(max_width, len(str(value)) + 2))
    return widths


def to_xlsx_bytes(rows: list[dict[str, Any]], headers: list[str], sheet_title: str = SHEET_TITLE) -> bytes:
    """Write one sheet: bold frozen header row, then the rows in header order."""
    matrix = _matrix(rows, headers)
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = sheet_title
    sheet.append(headers)
    for row in matrix:
        sheet.append(row)

    # text such as "=B2-7.5" is data, not a formula
    for cells in sheet.iter_rows():
        for cell in cells:
            if cell.data_type == "f":
                cell.data_type = "s"

    bold = Font(bold=True)
    for cell in sheet[1]:
        cell.font = bold
    sheet.freeze_panes = "A2"
    for i, width in enumerate(_infer_col_widths(matrix, headers), start=1):
        sheet.column_dimensions[get_column_letter(i)].width = width

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def serialize(file_format: str, rows: list[dict[str, Any]], headers: list[str]) -> Union[str, bytes]:
    if file_format == "csv":
        return to_csv_text(rows, headers)
    if file_format == "xlsx":
        return to_xlsx_bytes(rows, headers)
    raise ValueError(f"Unknown output format: {file_format}")
