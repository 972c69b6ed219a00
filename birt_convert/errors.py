"""Error types raised while ingesting and converting time-tracking exports."""

from __future__ import annotations


class ConversionError(ValueError):
    """Base class for every failure raised by birt_convert."""


class UnsupportedFileType(ConversionError):
    def __init__(self, file_name: str, suffix: str, supported: list[str]) -> None:
        self.file_name = file_name
        self.suffix = suffix
        super().__init__(
            f"Unsupported file type '{suffix or '[missing extension]'}' for {file_name}. "
            f"Supported: {', '.join(supported)}"
        )


class ParseError(ConversionError):
    """Raw CSV text or workbook bytes could not be read."""

    def __init__(self, file_name: str, complaint: str) -> None:
        self.file_name = file_name
        self.complaint = complaint
        super().__init__(f"Could not parse {file_name}: {complaint}")


class EmptyWorkbookError(ConversionError):
    def __init__(self, file_name: str, detail: str = "No sheets found in workbook") -> None:
        self.file_name = file_name
        super().__init__(f"{detail}: {file_name}")


class StructuralIngestError(ConversionError):
    """Columns carry a header but no data, usually formulas saved without cached results."""

    def __init__(self, file_name: str, columns: list[str]) -> None:
        self.file_name = file_name
        self.columns = list(columns)
        listed = ", ".join(f'"{name}"' for name in self.columns)
        super().__init__(
            f"{file_name}: the following columns have a header but no data: {listed}. "
            "These columns are most likely calculated by formulas whose results were never "
            "saved in the workbook, so they cannot be read without Excel. "
            "Open the file in Excel, let it recalculate, save it, and upload it again."
        )


class InvalidInput(ConversionError):
    """A value handed to the time codec is not a finite number or a clock string."""
