"""
loader.py — CSV / XLSX ingestion for birt-convert

Turns raw upload bytes into a normalized table: unique headers, rows keyed
by header, numeric strings coerced to numbers, and suggested decimal-hour
columns.

Public API:
    result = load_bytes("report.xlsx", data)
    result.headers, result.rows, result.suggested_columns

Workbooks exported by reporting tools often carry a preamble (title, "Time
Period", "Executed on", "Query" rows) above the real table, and merged
header cells. Header-row discovery is delegated to a strategy:

    ReportHeaderStrategy:     marker-driven, merge aware, skips blank
                              header cells (default, "report")
    StructuralHeaderStrategy: row-shape driven, names blank header cells
                              Column<N> (alternative, "structural")
"""

from __future__ import annotations

import io
import re
import zipfile
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Any, Optional, Union

import pandas as pd

from birt_convert.detector import detect_decimal_hour_columns
from birt_convert.errors import (
    EmptyWorkbookError,
    ParseError,
    StructuralIngestError,
    UnsupportedFileType,
)
from birt_convert.headers import ensure_unique_headers, placeholder_header

CSV_FORMATS = {".csv"}
EXCEL_FORMATS = {".xlsx"}
ALL_FORMATS = CSV_FORMATS | EXCEL_FORMATS

NUMERIC_STRING_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")
INTEGER_STRING_RE = re.compile(r"^[+-]?\d+$")

Row = dict[str, Any]
MergeRegion = tuple[int, int, int, int]  # min_row, min_col, max_row, max_col (0-based, inclusive)


@dataclass
class IngestResult:
    file_name: str
    file_format: str
    headers: list[str]
    rows: list[Row]
    suggested_columns: list[str] = field(default_factory=list)
    header_row_index: int = 0
    sheet_name: Optional[str] = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class HeaderPlan:
    header_row_index: int
    column_headers: dict[int, str]  # original column index -> final header name

    @property
    def headers(self) -> list[str]:
        return [self.column_headers[idx] for idx in sorted(self.column_headers)]


# ══════════════════════════════════════════════════════════════════════════════
# CELL HELPERS
# ══════════════════════════════════════════════════════════════════════════════

def is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def coerce_numeric(value: Any) -> Any:
    """Turn strict numeric strings ("7.5", "-2", "1e3") into numbers; leave everything else."""
    if not isinstance(value, str):
        return value
    stripped = value.strip()
    if not NUMERIC_STRING_RE.match(stripped):
        return value
    if INTEGER_STRING_RE.match(stripped):
        return int(stripped)
    return float(stripped)


def non_empty_cells(row: list[Any]) -> list[Any]:
    return [cell for cell in row if not is_blank(cell)]


def string_ratio(row: list[Any]) -> float:
    filled = non_empty_cells(row)
    if not filled:
        return 0.0
    return sum(1 for cell in filled if isinstance(cell, str)) / len(filled)


def cell_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


# ══════════════════════════════════════════════════════════════════════════════
# HEADER STRATEGIES
# ══════════════════════════════════════════════════════════════════════════════

class ReportHeaderStrategy:
    """Find the header row below a report preamble and drop merged/blank header cells."""

    name = "report"

    MARKERS = ("Time Period", "Executed on", "Query")
    MIN_MARKERS = 2
    MARKER_SCAN_ROWS = 6
    SEARCH_START = 3
    SEARCH_END = 14
    DEFAULT_HEADER_ROW = 6
    MIN_HEADER_CELLS = 5
    MIN_STRING_RATIO = 0.6

    def has_report_preamble(self, grid: list[list[Any]]) -> bool:
        found = set()
        for row in grid[: self.MARKER_SCAN_ROWS]:
            for cell in row:
                text = cell_text(cell)
                found.update(marker for marker in self.MARKERS if marker in text)
        return len(found) >= self.MIN_MARKERS

    def find_header_row(self, grid: list[list[Any]]) -> int:
        if not self.has_report_preamble(grid):
            return 0
        last = min(self.SEARCH_END, len(grid) - 1)
        for idx in range(self.SEARCH_START, last + 1):
            row = grid[idx]
            if len(non_empty_cells(row)) < self.MIN_HEADER_CELLS:
                continue
            if string_ratio(row) >= self.MIN_STRING_RATIO:
                return idx
        return self.DEFAULT_HEADER_ROW

    @staticmethod
    def merged_followers(header_idx: int, merges: list[MergeRegion]) -> set[int]:
        excluded: set[int] = set()
        for min_row, min_col, max_row, max_col in merges:
            if min_row <= header_idx <= max_row:
                excluded.update(range(min_col + 1, max_col + 1))
        return excluded

    def plan(self, grid: list[list[Any]], merges: list[MergeRegion]) -> HeaderPlan:
        header_idx = self.find_header_row(grid)
        header_row = grid[header_idx] if header_idx < len(grid) else []
        excluded = self.merged_followers(header_idx, merges)

        kept_columns: list[int] = []
        raw_names: list[str] = []
        for col_idx, cell in enumerate(header_row):
            if col_idx in excluded or is_blank(cell):
                continue
            kept_columns.append(col_idx)
            raw_names.append(cell_text(cell))

        names = ensure_unique_headers(raw_names)
        return HeaderPlan(header_idx, dict(zip(kept_columns, names)))


class StructuralHeaderStrategy:
    """
    Pick the first row that looks like a header followed by data rows.

    Blank header cells get Column<N> placeholders and merges are ignored.
    """

    name = "structural"

    SCAN_ROWS = 20
    FALLBACK_SCAN_ROWS = 10
    MIN_HEADER_CELLS = 3
    MIN_STRING_RATIO = 0.6
    MAX_WIDTH_DRIFT = 2

    def find_header_row(self, grid: list[list[Any]]) -> int:
        for idx in range(min(len(grid) - 2, self.SCAN_ROWS)):
            filled = len(non_empty_cells(grid[idx]))
            if filled < self.MIN_HEADER_CELLS:
                continue
            if string_ratio(grid[idx]) < self.MIN_STRING_RATIO:
                continue
            following = (len(non_empty_cells(grid[idx + 1])) + len(non_empty_cells(grid[idx + 2]))) / 2
            if abs(following - filled) <= self.MAX_WIDTH_DRIFT:
                return idx

        best_idx, best_count = 0, 0
        for idx, row in enumerate(grid[: self.FALLBACK_SCAN_ROWS]):
            filled = len(non_empty_cells(row))
            if filled > best_count:
                best_idx, best_count = idx, filled
        return best_idx

    def plan(self, grid: list[list[Any]], merges: list[MergeRegion]) -> HeaderPlan:
        header_idx = self.find_header_row(grid)
        header_row = grid[header_idx] if header_idx < len(grid) else []
        raw_names = [
            cell_text(cell) if not is_blank(cell) else placeholder_header(col_idx)
            for col_idx, cell in enumerate(header_row)
        ]
        names = ensure_unique_headers(raw_names)
        return HeaderPlan(header_idx, dict(enumerate(names)))


HEADER_STRATEGIES = {
    ReportHeaderStrategy.name: ReportHeaderStrategy,
    StructuralHeaderStrategy.name: StructuralHeaderStrategy,
}

HeaderStrategy = Union[ReportHeaderStrategy, StructuralHeaderStrategy]


def resolve_strategy(strategy: Union[str, HeaderStrategy, None]) -> HeaderStrategy:
    if strategy is None:
        return ReportHeaderStrategy()
    if isinstance(strategy, str):
        try:
            return HEADER_STRATEGIES[strategy]()
        except KeyError:
            raise ValueError(
                f"Unknown header strategy '{strategy}'. Available: {', '.join(sorted(HEADER_STRATEGIES))}"
            ) from None
    return strategy


# ══════════════════════════════════════════════════════════════════════════════
# SPREADSHEET PROTOCOL
# ══════════════════════════════════════════════════════════════════════════════

def is_encrypted_ooxml(data: bytes) -> bool:
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            names = set(archive.namelist())
    except zipfile.BadZipFile:
        return False
    return {"EncryptedPackage", "EncryptionInfo"}.issubset(names)


def read_first_sheet(file_name: str, data: bytes) -> tuple[str, list[list[Any]], list[MergeRegion], list[str]]:
    """
    Materialize the first worksheet as a cell grid plus its merge regions.

    Cached formula results are read (data_only) so numbers stay numbers.
    Returns (sheet_name, grid, merges, warnings).
    """
    from openpyxl import load_workbook

    if is_encrypted_ooxml(data):
        raise ParseError(file_name, "Password-protected / encrypted OOXML workbooks are not supported")
    try:
        workbook = load_workbook(io.BytesIO(data), data_only=True)
    except Exception as exc:
        raise ParseError(file_name, f"Could not read workbook: {exc}") from exc

    warnings: list[str] = []
    try:
        sheets = workbook.worksheets
        if not sheets:
            raise EmptyWorkbookError(file_name)
        sheet = sheets[0]
        if len(sheets) > 1:
            others = [ws.title for ws in sheets[1:]]
            warnings.append(
                f"Multiple sheets found ({len(sheets)} total); used '{sheet.title}'. Ignored: {others}"
            )

        grid = [list(row) for row in sheet.iter_rows(values_only=True)]
        merges = []
        for merged in sheet.merged_cells.ranges:
            min_col, min_row, max_col, max_row = merged.bounds
            merges.append((min_row - 1, min_col - 1, max_row - 1, max_col - 1))
        return sheet.title, grid, merges, warnings
    finally:
        workbook.close()


def find_missing_data_columns(grid: list[list[Any]], plan: HeaderPlan) -> list[str]:
    """
    Headers whose column holds nothing below the header cell while other
    columns do. Formulas saved without cached values read back as empty.
    """
    counts = {col_idx: 0 for col_idx in plan.column_headers}
    for row in grid[plan.header_row_index:]:
        for col_idx in counts:
            if col_idx < len(row) and not is_blank(row[col_idx]):
                counts[col_idx] += 1

    if not counts or max(counts.values()) <= 1:
        return []
    return [plan.column_headers[col_idx] for col_idx in sorted(counts) if counts[col_idx] == 1]


def extract_rows(grid: list[list[Any]], plan: HeaderPlan) -> list[Row]:
    rows: list[Row] = []
    for raw in grid[plan.header_row_index + 1:]:
        if not non_empty_cells(raw):
            continue
        row: Row = {}
        for col_idx, header in plan.column_headers.items():
            if col_idx < len(raw):
                row[header] = coerce_numeric(raw[col_idx])
        rows.append(row)
    return rows


def parse_grid(
    file_name: str,
    grid: list[list[Any]],
    merges: Optional[list[MergeRegion]] = None,
    strategy: Union[str, HeaderStrategy, None] = None,
) -> tuple[HeaderPlan, list[Row]]:
    plan = resolve_strategy(strategy).plan(grid, merges or [])
    missing = find_missing_data_columns(grid, plan)
    if missing:
        raise StructuralIngestError(file_name, missing)
    return plan, extract_rows(grid, plan)


def parse_workbook_bytes(
    file_name: str,
    data: bytes,
    strategy: Union[str, HeaderStrategy, None] = None,
) -> IngestResult:
    sheet_name, grid, merges, warnings = read_first_sheet(file_name, data)
    resolved = resolve_strategy(strategy)
    plan, rows = parse_grid(file_name, grid, merges, resolved)
    headers = plan.headers
    if plan.header_row_index > 0:
        warnings.append(
            f"Header row detected at row {plan.header_row_index + 1} "
            f"({resolved.name} strategy); {plan.header_row_index} row(s) above it were skipped"
        )
    return IngestResult(
        file_name=file_name,
        file_format="xlsx",
        headers=headers,
        rows=rows,
        suggested_columns=detect_decimal_hour_columns(headers, rows),
        header_row_index=plan.header_row_index,
        sheet_name=sheet_name,
        warnings=warnings,
    )


# ══════════════════════════════════════════════════════════════════════════════
# DELIMITED TEXT PROTOCOL
# ══════════════════════════════════════════════════════════════════════════════

def detect_encoding(raw: bytes) -> str:
    import chardet

    detected = chardet.detect(raw).get("encoding")
    return detected or "utf-8"


def decode_text(raw: bytes) -> str:
    """
    Decode line by line: UTF-8, then the chardet guess, then latin-1,
    finally cp1252 with replacement. Null bytes and a leading BOM are dropped.
    """
    preferred = detect_encoding(raw)
    decoded_lines: list[str] = []
    for raw_line in raw.split(b"\n"):
        decoded: str | None = None
        for enc in ("utf-8", preferred, "latin-1"):
            try:
                decoded = raw_line.decode(enc)
                break
            except (LookupError, UnicodeDecodeError):
                continue
        if decoded is None:
            decoded = raw_line.decode("cp1252", errors="replace")
        decoded_lines.append(decoded.replace("\x00", ""))
    return "\n".join(decoded_lines).lstrip("\ufeff")


def _read_csv_records(text: str, **kwargs) -> pd.DataFrame:
    return pd.read_csv(
        io.StringIO(text),
        header=None,
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        engine="python",
        **kwargs,
    )


def parse_csv_text(file_name: str, text: str) -> IngestResult:
    """
    Parse delimited text with the first record as header.

    Records longer than the header (trailing commas, stray delimiters) keep
    their first header-width fields; the rest are dropped with a warning.
    Shorter records are padded with empty cells.
    """
    overlong: list[int] = []

    def truncate(fields: list[str]) -> list[str]:
        overlong.append(len(fields))
        return fields[:width]

    try:
        width = _read_csv_records(text, nrows=1).shape[1]
        df = _read_csv_records(text, on_bad_lines=truncate)
    except pd.errors.EmptyDataError:
        return IngestResult(file_name=file_name, file_format="csv", headers=[], rows=[])
    except (pd.errors.ParserError, ValueError) as exc:
        raise ParseError(file_name, str(exc).strip()) from exc

    warnings: list[str] = []
    if overlong:
        warnings.append(
            f"{len(overlong)} row(s) had more fields than the {width}-column header; extra fields were ignored"
        )

    records = [[None if pd.isna(cell) else cell for cell in record] for record in df.itertuples(index=False, name=None)]
    if not records:
        return IngestResult(file_name=file_name, file_format="csv", headers=[], rows=[])

    raw_header, body = records[0], records[1:]
    headers = ensure_unique_headers(
        [cell_text(cell) if not is_blank(cell) else placeholder_header(idx) for idx, cell in enumerate(raw_header)]
    )

    rows: list[Row] = []
    for record in body:
        if not non_empty_cells(record):
            continue
        rows.append(
            {header: (None if is_blank(value) else coerce_numeric(value)) for header, value in zip(headers, record)}
        )

    return IngestResult(
        file_name=file_name,
        file_format="csv",
        headers=headers,
        rows=rows,
        suggested_columns=detect_decimal_hour_columns(headers, rows),
        warnings=warnings,
    )


def parse_csv_bytes(file_name: str, data: bytes) -> IngestResult:
    return parse_csv_text(file_name, decode_text(data))


# ══════════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ══════════════════════════════════════════════════════════════════════════════

def file_format_for(file_name: str) -> str:
    suffix = PurePath(file_name).suffix.lower()
    if suffix in CSV_FORMATS:
        return "csv"
    if suffix in EXCEL_FORMATS:
        return "xlsx"
    raise UnsupportedFileType(file_name, suffix, sorted(ALL_FORMATS))


def load_bytes(
    file_name: str,
    data: bytes,
    strategy: Union[str, HeaderStrategy, None] = None,
) -> IngestResult:
    """
    Ingest one uploaded file.

    Raises:
        UnsupportedFileType  for anything other than .csv / .xlsx
        ParseError           when the bytes cannot be parsed
        EmptyWorkbookError   when a workbook has no worksheet
        StructuralIngestError when header-only columns are found
    """
    file_format = file_format_for(file_name)
    if file_format == "csv":
        return parse_csv_bytes(file_name, data)
    return parse_workbook_bytes(file_name, data, strategy)
