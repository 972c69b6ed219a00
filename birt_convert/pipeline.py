"""
pipeline.py — batch ingestion and conversion

    ingested  = ingest_batch([("week1.csv", data1), ("week2.xlsx", data2)])
    selection = {name: ConversionSelection(result.suggested_columns) for ...}
    outputs   = convert_batch(ingested, selection, observer=print_stage)

Files are handled one at a time, in the order given. Both stages are
all-or-nothing: the first failure propagates and nothing is returned for the
rest of the batch, including files that already finished.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePath
from typing import Callable, Iterable, Mapping, Optional, Union

from birt_convert.converter import convert_columns, output_headers
from birt_convert.loader import HeaderStrategy, IngestResult, load_bytes
from birt_convert.writer import serialize

CONVERTED_SUFFIX = "_converted"


class FileStage(Enum):
    QUEUED = "queued"
    CONVERTING = "converting"
    DONE = "done"
    FAILED = "failed"


StageObserver = Callable[[str, FileStage], None]


@dataclass
class ConversionSelection:
    columns: list[str]
    keep_original: bool = False


@dataclass
class ConvertedFile:
    source_name: str
    output_name: str
    file_format: str
    headers: list[str]
    payload: Union[str, bytes]
    converted_cells: int = 0
    added_headers: list[str] = field(default_factory=list)


def converted_file_name(file_name: str) -> str:
    """report.xlsx -> report_converted.xlsx"""
    path = PurePath(file_name)
    return str(path.with_name(f"{path.stem}{CONVERTED_SUFFIX}{path.suffix}"))


def ingest_batch(
    files: Iterable[tuple[str, bytes]],
    strategy: Union[str, HeaderStrategy, None] = None,
) -> list[IngestResult]:
    return [load_bytes(file_name, data, strategy) for file_name, data in files]


def schema_ordered(headers: list[str], columns: Iterable[str]) -> list[str]:
    wanted = set(columns)
    return [header for header in headers if header in wanted]


def convert_file(
    ingested: IngestResult,
    selection: ConversionSelection,
    *,
    with_seconds: bool = False,
    carry: bool = True,
    output_format: Optional[str] = None,
) -> ConvertedFile:
    columns = schema_ordered(ingested.headers, selection.columns)
    result = convert_columns(
        ingested.rows,
        columns,
        selection.keep_original,
        with_seconds=with_seconds,
        carry=carry,
    )
    headers = output_headers(ingested.headers, result.added_headers) if selection.keep_original else list(ingested.headers)
    file_format = output_format or ingested.file_format

    output_name = converted_file_name(ingested.file_name)
    if file_format != ingested.file_format:
        output_name = str(PurePath(output_name).with_suffix(f".{file_format}"))

    return ConvertedFile(
        source_name=ingested.file_name,
        output_name=output_name,
        file_format=file_format,
        headers=headers,
        payload=serialize(file_format, result.rows, headers),
        converted_cells=result.converted_cells,
        added_headers=result.added_headers,
    )


def convert_batch(
    ingested: list[IngestResult],
    selections: Mapping[str, ConversionSelection],
    *,
    observer: Optional[StageObserver] = None,
    with_seconds: bool = False,
    carry: bool = True,
    output_format: Optional[str] = None,
) -> list[ConvertedFile]:
    """
    Convert every ingested file with its selection, strictly in order.

    ``observer(file_name, stage)`` is called with QUEUED for every file up
    front, then CONVERTING and DONE (or FAILED) as each file is processed.
    A file without a selection is converted with no columns.
    """
    notify = observer or (lambda _name, _stage: None)
    for item in ingested:
        notify(item.file_name, FileStage.QUEUED)

    outputs: list[ConvertedFile] = []
    for item in ingested:
        notify(item.file_name, FileStage.CONVERTING)
        selection = selections.get(item.file_name, ConversionSelection(columns=[]))
        try:
            converted = convert_file(
                item,
                selection,
                with_seconds=with_seconds,
                carry=carry,
                output_format=output_format,
            )
        except Exception:
            notify(item.file_name, FileStage.FAILED)
            raise
        outputs.append(converted)
        notify(item.file_name, FileStage.DONE)
    return outputs
