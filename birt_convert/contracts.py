"""Versioned contracts for birt-convert JSON outputs."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from birt_convert import __version__ as TOOL_VERSION

CONTRACT_VERSIONS = {
    "birt_convert.inspect": "1.0.0",
    "birt_convert.convert_summary": "1.0.0",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_contract(name: str) -> dict[str, str]:
    version = CONTRACT_VERSIONS[name]
    return {"name": name, "version": version}


def build_run_summary(
    *,
    command: str,
    inputs: list[str],
    status: str = "ok",
    outputs: list[str] | None = None,
    metrics: dict[str, Any] | None = None,
    warnings: list[str] | None = None,
) -> dict[str, Any]:
    return {
        "tool": "birt-convert",
        "version": TOOL_VERSION,
        "command": command,
        "status": status,
        "generated_at": utc_now_iso(),
        "input_files": list(inputs),
        "output_files": list(outputs or []),
        "warnings_count": len(warnings or []),
        "warnings": list(warnings or []),
        "metrics": metrics or {},
    }
