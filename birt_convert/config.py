"""Converter settings loaded from JSON or YAML files."""

from __future__ import annotations

import json
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Optional

import yaml

from birt_convert.loader import HEADER_STRATEGIES

OUTPUT_FORMATS = ("same", "csv", "xlsx")

STARTER_CONFIG = """# birt-convert settings
# header_strategy: report (preamble markers + merged headers) or structural
header_strategy: report

# keep the decimal columns and add <column>_hhmm next to them
keep_original: false

# hh:mm:ss instead of hh:mm
with_seconds: false

# roll 59.5+ minutes into the next hour; false reproduces legacy "07:60" output
carry_minutes: true

# same, csv or xlsx
output_format: same
"""


@dataclass(frozen=True)
class ConverterConfig:
    header_strategy: str = "report"
    keep_original: bool = False
    with_seconds: bool = False
    carry_minutes: bool = True
    output_format: str = "same"

    def __post_init__(self) -> None:
        if self.header_strategy not in HEADER_STRATEGIES:
            raise ValueError(
                f"Unknown header_strategy '{self.header_strategy}'. "
                f"Available: {', '.join(sorted(HEADER_STRATEGIES))}"
            )
        if self.output_format not in OUTPUT_FORMATS:
            raise ValueError(
                f"Unknown output_format '{self.output_format}'. Available: {', '.join(OUTPUT_FORMATS)}"
            )
        for name in ("keep_original", "with_seconds", "carry_minutes"):
            if not isinstance(getattr(self, name), bool):
                raise ValueError(f"Config value '{name}' must be true or false")

    @property
    def resolved_output_format(self) -> Optional[str]:
        return None if self.output_format == "same" else self.output_format

    def with_overrides(self, **overrides: Any) -> "ConverterConfig":
        return replace(self, **{key: value for key, value in overrides.items() if value is not None})


def config_from_mapping(data: dict[str, Any]) -> ConverterConfig:
    known = {item.name for item in fields(ConverterConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown config keys: {', '.join(unknown)}")
    return ConverterConfig(**data)


def load_config(path: "str | Path") -> ConverterConfig:
    """
    Load settings from a .json, .yml or .yaml file.

    Missing keys keep their defaults; unknown keys are rejected.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    suffix = path.suffix.lower()
    text = path.read_text(encoding="utf-8")
    try:
        if suffix in {".yml", ".yaml"}:
            data = yaml.safe_load(text)
        elif suffix == ".json":
            data = json.loads(text)
        else:
            raise ValueError(f"Unsupported config file extension '{suffix}'. Use .yaml, .yml, or .json.")
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ValueError(f"Could not read config {path}: {exc}") from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"Config root must be a mapping: {path}")
    return config_from_mapping(data)
