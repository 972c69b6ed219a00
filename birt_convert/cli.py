from __future__ import annotations

import argparse
import json
import os
import sys
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from birt_convert import __version__ as TOOL_VERSION
from birt_convert.config import OUTPUT_FORMATS, STARTER_CONFIG, ConverterConfig, load_config
from birt_convert.contracts import build_contract, build_run_summary
from birt_convert.detector import analyse_columns
from birt_convert.errors import StructuralIngestError, UnsupportedFileType
from birt_convert.loader import HEADER_STRATEGIES, IngestResult
from birt_convert.pipeline import ConversionSelection, ConvertedFile, FileStage, convert_batch, ingest_batch

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_PARSE_FAILED = 2
EXIT_STRUCTURAL = 3

SUMMARY_FILE_NAME = "convert-summary.json"


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class BirtConvertArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True, default=str)


def timestamp_token() -> str:
    override = os.environ.get("BIRT_CONVERT_OUTPUT_STAMP")
    if override:
        return override
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def default_output_dir() -> Path:
    return Path.cwd() / "birt-convert-output" / timestamp_token()


def write_atomic(path: Path, payload: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}.", suffix=path.suffix, dir=str(path.parent))
    os.close(fd)
    temp_path = Path(tmp_name)
    try:
        temp_path.write_bytes(payload)
        os.replace(temp_path, path)
    finally:
        if temp_path.exists():
            temp_path.unlink()


def classify_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, (UnsupportedFileType, FileNotFoundError)):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, StructuralIngestError):
        return EXIT_STRUCTURAL
    if isinstance(exc, (ValueError, ImportError, UnicodeDecodeError)):
        return EXIT_PARSE_FAILED
    return EXIT_COMMAND_ERROR


def read_inputs(paths: list[str]) -> list[tuple[str, bytes]]:
    files = []
    seen: set[str] = set()
    for raw in paths:
        path = Path(raw)
        if not path.exists():
            raise CliError(f"File not found: {path}", EXIT_COMMAND_ERROR)
        # outputs and selections are keyed by file name
        if path.name in seen:
            raise CliError(f"Duplicate input file name: {path.name}", EXIT_COMMAND_ERROR)
        seen.add(path.name)
        files.append((path.name, path.read_bytes()))
    return files


def resolve_config(args: argparse.Namespace) -> ConverterConfig:
    try:
        config = load_config(args.config) if getattr(args, "config", None) else ConverterConfig()
    except (FileNotFoundError, ValueError) as exc:
        raise CliError(str(exc), EXIT_COMMAND_ERROR) from exc
    return config.with_overrides(
        header_strategy=getattr(args, "strategy", None),
        keep_original=True if getattr(args, "keep_original", False) else None,
        with_seconds=True if getattr(args, "seconds", False) else None,
        carry_minutes=False if getattr(args, "legacy_rounding", False) else None,
        output_format=getattr(args, "output_format", None),
    )


def inspect_payload(result: IngestResult) -> dict[str, Any]:
    profiles = analyse_columns(result.headers, result.rows)
    return {
        "file": result.file_name,
        "format": result.file_format,
        "sheet_name": result.sheet_name,
        "header_row": result.header_row_index + 1,
        "headers": result.headers,
        "row_count": len(result.rows),
        "suggested_columns": result.suggested_columns,
        "columns": {name: profile.to_dict() for name, profile in profiles.items()},
        "warnings": result.warnings,
    }


def render_inspect_text(payload: dict[str, Any], *, verbose: bool = False) -> str:
    lines = [
        f"File: {payload['file']}",
        f"Format: {payload['format']}",
        f"Header row: {payload['header_row']}",
        f"Rows: {payload['row_count']}",
        f"Columns: {', '.join(payload['headers']) or '[none]'}",
        f"Suggested: {', '.join(payload['suggested_columns']) or '[none]'}",
    ]
    if payload.get("sheet_name"):
        lines.insert(2, f"Sheet: {payload['sheet_name']}")
    if verbose:
        lines.append("Column checks:")
        for name, profile in payload["columns"].items():
            mark = "+" if profile["suggested"] else "-"
            lines.append(f"  {mark} {name}: {profile['reason']}")
    if payload["warnings"]:
        lines.append("Warnings:")
        lines.extend(f"- {warning}" for warning in payload["warnings"])
    return "\n".join(lines) + "\n"


def build_selections(
    ingested: list[IngestResult],
    columns: Optional[list[str]],
    keep_original: bool,
) -> tuple[dict[str, ConversionSelection], list[str]]:
    """Explicit --columns apply to every file that has them; otherwise use the suggestions."""
    warnings: list[str] = []
    if columns:
        known = {header for item in ingested for header in item.headers}
        unknown = [name for name in columns if name not in known]
        if unknown:
            raise CliError(f"Unknown column(s): {', '.join(unknown)}", EXIT_COMMAND_ERROR)

    selections: dict[str, ConversionSelection] = {}
    for item in ingested:
        if columns:
            chosen = [name for name in columns if name in item.headers]
            skipped = [name for name in columns if name not in item.headers]
            if skipped:
                warnings.append(f"{item.file_name}: no column named {', '.join(skipped)}")
        else:
            chosen = list(item.suggested_columns)
            if not chosen:
                warnings.append(f"{item.file_name}: no decimal-hour columns suggested; file copied unchanged")
        selections[item.file_name] = ConversionSelection(columns=chosen, keep_original=keep_original)
    return selections, warnings


def build_parser() -> argparse.ArgumentParser:
    parser = BirtConvertArgumentParser(
        prog="birt-convert",
        description="Convert decimal-hour columns in CSV/XLSX time reports to hh:mm.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    inspect = subparsers.add_parser("inspect", help="Show detected headers and suggested columns.")
    inspect.add_argument("inputs", nargs="+", help="Input .csv/.xlsx files")
    inspect.add_argument("--strategy", choices=sorted(HEADER_STRATEGIES), help="Workbook header detection strategy")
    inspect.add_argument("--config", help="Settings file (.json/.yml/.yaml)")
    inspect.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    inspect.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    inspect.add_argument("-v", "--verbose", action="store_true", help="Explain every column decision")

    convert = subparsers.add_parser("convert", help="Convert decimal-hour columns and write *_converted files.")
    convert.add_argument("inputs", nargs="+", help="Input .csv/.xlsx files")
    convert.add_argument("-c", "--columns", nargs="+", help="Columns to convert (default: suggested columns)")
    convert.add_argument("-k", "--keep-original", action="store_true", help="Add <column>_hhmm instead of replacing")
    convert.add_argument("--seconds", action="store_true", help="Write hh:mm:ss")
    convert.add_argument("--legacy-rounding", action="store_true", help="Do not carry 60 minutes into the hour")
    convert.add_argument("--strategy", choices=sorted(HEADER_STRATEGIES), help="Workbook header detection strategy")
    convert.add_argument("--format", dest="output_format", choices=OUTPUT_FORMATS, help="Output format")
    convert.add_argument("--config", help="Settings file (.json/.yml/.yaml)")
    convert.add_argument("-o", "--out", dest="out_dir", help="Output directory")
    convert.add_argument("--dry-run", action="store_true", help="Convert without writing files")
    convert.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    convert.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    convert.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    config = subparsers.add_parser("config", help="Generate configuration.")
    config_subparsers = config.add_subparsers(dest="config_command", required=True)
    config_init = config_subparsers.add_parser("init", help="Write a starter config file.")
    config_init.add_argument("--path", default="birt-convert.yml", help="Config output path")

    subparsers.add_parser("version", help="Print version")
    return parser


def run_inspect(args: argparse.Namespace) -> int:
    try:
        config = resolve_config(args)
        ingested = ingest_batch(read_inputs(args.inputs), config.header_strategy)
        files = [inspect_payload(item) for item in ingested]
        if args.json:
            payload = {
                "contract": build_contract("birt_convert.inspect"),
                "header_strategy": config.header_strategy,
                "files": files,
                "run_summary": build_run_summary(
                    command="inspect",
                    inputs=[item.file_name for item in ingested],
                    warnings=[warning for item in ingested for warning in item.warnings],
                    metrics={"files": len(ingested), "rows": sum(len(item.rows) for item in ingested)},
                ),
            }
            print(json_dumps(payload))
        else:
            for entry in files:
                emit_human(render_inspect_text(entry, verbose=args.verbose).rstrip(), quiet=args.quiet)
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_convert(args: argparse.Namespace) -> int:
    quiet = args.quiet or args.json
    try:
        config = resolve_config(args)
        ingested = ingest_batch(read_inputs(args.inputs), config.header_strategy)
        warnings = [warning for item in ingested for warning in item.warnings]
        selections, selection_warnings = build_selections(ingested, args.columns, config.keep_original)
        warnings.extend(selection_warnings)

        out_dir = Path(args.out_dir) if args.out_dir else default_output_dir()
        total = len(ingested)
        positions = {item.file_name: index for index, item in enumerate(ingested, start=1)}

        def report_stage(file_name: str, stage: FileStage) -> None:
            if stage is FileStage.QUEUED and not args.verbose:
                return
            emit_human(f"[{positions[file_name]}/{total}] {file_name}: {stage.value}", quiet=quiet)

        outputs = convert_batch(
            ingested,
            selections,
            observer=report_stage,
            with_seconds=config.with_seconds,
            carry=config.carry_minutes,
            output_format=config.resolved_output_format,
        )

        targets = [out_dir / converted.output_name for converted in outputs]
        summary_path = out_dir / SUMMARY_FILE_NAME
        clashes = sorted({str(path) for path in targets if targets.count(path) > 1})
        if clashes:
            raise CliError(
                f"Several inputs would write the same output: {', '.join(clashes)}. "
                "Rename the inputs or convert them separately.",
                EXIT_COMMAND_ERROR,
            )
        if not args.dry_run:
            existing = [str(path) for path in [*targets, summary_path] if path.exists()]
            if existing:
                raise CliError(f"Refusing to overwrite existing output: {', '.join(existing)}", EXIT_COMMAND_ERROR)
            for converted, path in zip(outputs, targets):
                write_atomic(path, payload_bytes(converted))

        summary = {
            "contract": build_contract("birt_convert.convert_summary"),
            "dry_run": args.dry_run,
            "settings": {
                "header_strategy": config.header_strategy,
                "keep_original": config.keep_original,
                "with_seconds": config.with_seconds,
                "carry_minutes": config.carry_minutes,
                "output_format": config.output_format,
            },
            "files": [
                {
                    "input": converted.source_name,
                    "output": str(path),
                    "columns": selections[converted.source_name].columns,
                    "added_headers": converted.added_headers,
                    "converted_cells": converted.converted_cells,
                }
                for converted, path in zip(outputs, targets)
            ],
            "run_summary": build_run_summary(
                command="convert",
                inputs=[item.file_name for item in ingested],
                outputs=[] if args.dry_run else [str(path) for path in targets],
                warnings=warnings,
                metrics={
                    "files": len(outputs),
                    "converted_cells": sum(converted.converted_cells for converted in outputs),
                },
            ),
        }
        if not args.dry_run:
            write_atomic(summary_path, json_dumps(summary).encode("utf-8"))

        if args.json:
            print(json_dumps(summary))
        else:
            for warning in warnings:
                emit_human(f"Warning: {warning}", quiet=quiet)
            for converted, path in zip(outputs, targets):
                columns = ", ".join(selections[converted.source_name].columns) or "[none]"
                emit_human(
                    f"{converted.source_name} -> {path} ({converted.converted_cells} cells; columns: {columns})",
                    quiet=quiet,
                )
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def payload_bytes(converted: ConvertedFile) -> bytes:
    if isinstance(converted.payload, bytes):
        return converted.payload
    return converted.payload.encode("utf-8")


def run_config_init(args: argparse.Namespace) -> int:
    config_path = Path(args.path)
    if config_path.exists():
        eprint(f"Refusing to overwrite existing config: {config_path}")
        return EXIT_COMMAND_ERROR
    write_atomic(config_path, STARTER_CONFIG.encode("utf-8"))
    emit_human(f"Config written: {config_path}")
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        if args.command == "inspect":
            return run_inspect(args)
        if args.command == "convert":
            return run_convert(args)
        if args.command == "config":
            if args.config_command == "init":
                return run_config_init(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except CliError as exc:
        eprint(str(exc))
        return exc.code


if __name__ == "__main__":
    raise SystemExit(main())
