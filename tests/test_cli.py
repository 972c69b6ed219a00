from __future__ import annotations

import contextlib
import io
import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path

from openpyxl import Workbook, load_workbook

from birt_convert import __version__
from birt_convert.cli import main


ROOT = Path(__file__).resolve().parents[1]
CLI = [sys.executable, "-m", "birt_convert.cli"]
FIXED_STAMP = "20260301T010203Z"
SAMPLE_CSV = ROOT / "sample-data" / "weekly_hours.csv"


def run_cli(*args: str, cwd: Path | None = None) -> subprocess.CompletedProcess[str]:
    env = dict(os.environ)
    env["BIRT_CONVERT_OUTPUT_STAMP"] = FIXED_STAMP
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(ROOT), env.get("PYTHONPATH")]))
    return subprocess.run(
        [*CLI, *args],
        cwd=cwd or ROOT,
        capture_output=True,
        text=True,
        env=env,
    )


def call_main(*args: str) -> tuple[int, str, str]:
    stdout, stderr = io.StringIO(), io.StringIO()
    with contextlib.redirect_stdout(stdout), contextlib.redirect_stderr(stderr):
        code = main(list(args))
    return code, stdout.getvalue(), stderr.getvalue()


def write_workbook(path: Path, rows) -> Path:
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    wb.save(path)
    return path


class BirtConvertCliTests(unittest.TestCase):
    def test_version(self):
        proc = run_cli("version")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertEqual(proc.stdout.strip(), __version__)

    def test_missing_command_is_a_usage_error(self):
        proc = run_cli()
        self.assertEqual(proc.returncode, 1)
        self.assertIn("required", proc.stderr)

    def test_convert_sample_csv_writes_output_and_summary(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            proc = run_cli("convert", str(SAMPLE_CSV), "--out", tmpdir)
            self.assertEqual(proc.returncode, 0, proc.stderr)
            self.assertIn("[1/1] weekly_hours.csv: converting", proc.stderr)
            self.assertIn("[1/1] weekly_hours.csv: done", proc.stderr)

            output = Path(tmpdir) / "weekly_hours_converted.csv"
            lines = output.read_text(encoding="utf-8").splitlines()
            self.assertEqual(lines[0], "Employee,Project,Task,Date,Hours,Billable Hours,Notes")
            self.assertEqual(lines[1], "Ada Lovelace,Apollo,Design review,2024-01-02,07:30,06:00,")
            self.assertEqual(lines[3], "Linus Pauling,Gemini,Planning,2024-01-03,00:45,N/A,")
            self.assertEqual(lines[4], "Ada Lovelace,Gemini,Support,2024-01-03,08:00,00:00,Rounds up to a full hour")

            summary = json.loads((Path(tmpdir) / "convert-summary.json").read_text(encoding="utf-8"))
            self.assertEqual(summary["contract"]["name"], "birt_convert.convert_summary")
            self.assertEqual(summary["files"][0]["columns"], ["Hours", "Billable Hours"])
            self.assertEqual(summary["run_summary"]["output_files"], [str(output)])

    def test_default_output_directory_uses_stamp(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            proc = run_cli("convert", str(SAMPLE_CSV), "-q", cwd=Path(tmpdir))
            self.assertEqual(proc.returncode, 0, proc.stderr)
            self.assertEqual(proc.stderr.strip(), "")
            output_dir = Path(tmpdir) / "birt-convert-output" / FIXED_STAMP
            self.assertTrue((output_dir / "weekly_hours_converted.csv").exists())
            self.assertTrue((output_dir / "convert-summary.json").exists())

    def test_unreadable_workbook_returns_exit_2(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            broken = Path(tmpdir) / "broken.xlsx"
            broken.write_bytes(b"not a workbook")
            proc = run_cli("convert", str(broken), "--out", tmpdir)
            self.assertEqual(proc.returncode, 2)
            self.assertIn("Could not read workbook", proc.stderr)


class BirtConvertMainTests(unittest.TestCase):
    def test_inspect_json_reports_suggestions(self):
        code, stdout, _stderr = call_main("inspect", str(SAMPLE_CSV), "--json")
        self.assertEqual(code, 0)
        payload = json.loads(stdout)
        self.assertEqual(payload["contract"]["name"], "birt_convert.inspect")
        entry = payload["files"][0]
        self.assertEqual(entry["header_row"], 1)
        self.assertEqual(entry["row_count"], 5)
        self.assertEqual(entry["suggested_columns"], ["Hours", "Billable Hours"])
        self.assertFalse(entry["columns"]["Notes"]["suggested"])

    def test_inspect_text_on_report_workbook(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_workbook(
                Path(tmpdir) / "report.xlsx",
                [
                    ["Time Period: January"],
                    ["Executed on: 2024-02-01"],
                    [None],
                    [None],
                    [None],
                    [None],
                    ["Employee", "Project", "Task", "Date", "Hours"],
                    ["Ada", "Apollo", "Design", "2024-01-02", 7.5],
                ],
            )
            code, stdout, stderr = call_main("inspect", str(path), "-v")
        self.assertEqual(code, 0)
        self.assertEqual(stdout, "")
        self.assertIn("Header row: 7", stderr)
        self.assertIn("Suggested: Hours", stderr)
        self.assertIn("+ Hours: time keyword in header", stderr)

    def test_explicit_columns_and_keep_original(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            code, stdout, _stderr = call_main(
                "convert", str(SAMPLE_CSV), "-c", "Hours", "-k", "--seconds", "--out", tmpdir, "--json"
            )
            self.assertEqual(code, 0)
            summary = json.loads(stdout)
            self.assertEqual(summary["files"][0]["added_headers"], ["Hours_hhmm"])
            self.assertTrue(summary["settings"]["with_seconds"])

            lines = (Path(tmpdir) / "weekly_hours_converted.csv").read_text(encoding="utf-8").splitlines()
            self.assertTrue(lines[0].endswith(",Notes,Hours_hhmm"))
            self.assertTrue(lines[1].endswith(",7.5,6,,07:30:00"))

    def test_legacy_rounding_flag(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            code, _stdout, stderr = call_main("convert", str(SAMPLE_CSV), "-c", "Hours", "--legacy-rounding", "--out", tmpdir)
            self.assertEqual(code, 0, stderr)
            text = (Path(tmpdir) / "weekly_hours_converted.csv").read_text(encoding="utf-8")
            self.assertIn(",07:60,", text)

    def test_unknown_column_is_rejected(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            code, _stdout, stderr = call_main("convert", str(SAMPLE_CSV), "-c", "Overtime", "--out", tmpdir)
            self.assertEqual(code, 1)
            self.assertIn("Unknown column(s): Overtime", stderr)
            self.assertEqual(list(Path(tmpdir).iterdir()), [])

    def test_unsupported_and_missing_inputs_return_exit_1(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            notes = Path(tmpdir) / "notes.txt"
            notes.write_text("Hours\n1\n", encoding="utf-8")
            code, _stdout, stderr = call_main("convert", str(notes), "--out", tmpdir)
            self.assertEqual(code, 1)
            self.assertIn("Unsupported file type", stderr)

            code, _stdout, stderr = call_main("inspect", str(Path(tmpdir) / "missing.csv"))
            self.assertEqual(code, 1)
            self.assertIn("File not found", stderr)

    def test_duplicate_input_names_are_rejected(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            other = Path(tmpdir) / "copy"
            other.mkdir()
            (other / "weekly_hours.csv").write_bytes(SAMPLE_CSV.read_bytes())
            code, _stdout, stderr = call_main(
                "convert", str(SAMPLE_CSV), str(other / "weekly_hours.csv"), "--out", str(Path(tmpdir) / "out")
            )
            self.assertEqual(code, 1)
            self.assertIn("Duplicate input file name: weekly_hours.csv", stderr)

    def test_formula_columns_return_exit_3_and_write_nothing(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            good = Path(tmpdir) / "good.csv"
            good.write_text("Name,Hours\nAda,1.5\n", encoding="utf-8")
            bad = write_workbook(
                Path(tmpdir) / "formulas.xlsx",
                [["Name", "Hours", "Overtime"], ["Ada", 8, "=B2-7.5"], ["Bob", 9, "=B3-7.5"]],
            )
            out_dir = Path(tmpdir) / "out"
            code, _stdout, stderr = call_main("convert", str(good), str(bad), "--out", str(out_dir))
            self.assertEqual(code, 3)
            self.assertIn('"Overtime"', stderr)
            self.assertFalse(out_dir.exists())

    def test_refuses_to_overwrite_existing_outputs(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            first, _stdout, _stderr = call_main("convert", str(SAMPLE_CSV), "--out", tmpdir, "-q")
            second, _stdout, stderr = call_main("convert", str(SAMPLE_CSV), "--out", tmpdir, "-q")
            self.assertEqual(first, 0)
            self.assertEqual(second, 1)
            self.assertIn("Refusing to overwrite", stderr)

    def test_existing_summary_is_not_overwritten(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            first, _stdout, _stderr = call_main("convert", str(SAMPLE_CSV), "--out", tmpdir, "-q")
            self.assertEqual(first, 0)
            summary_path = Path(tmpdir) / "convert-summary.json"
            before = summary_path.read_text(encoding="utf-8")
            (Path(tmpdir) / "weekly_hours_converted.csv").unlink()

            second, _stdout, stderr = call_main("convert", str(SAMPLE_CSV), "--out", tmpdir, "-q")
            self.assertEqual(second, 1)
            self.assertIn("Refusing to overwrite", stderr)
            self.assertIn("convert-summary.json", stderr)
            self.assertEqual(summary_path.read_text(encoding="utf-8"), before)
            self.assertFalse((Path(tmpdir) / "weekly_hours_converted.csv").exists())

    def test_inputs_sharing_an_output_name_are_rejected(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            csv_path = Path(tmpdir) / "week.csv"
            csv_path.write_text("Name,Hours\nAda,7.5\n", encoding="utf-8")
            xlsx_path = write_workbook(Path(tmpdir) / "week.xlsx", [["Name", "Hours"], ["Grace", 3.25]])
            out_dir = Path(tmpdir) / "out"

            code, _stdout, stderr = call_main(
                "convert", str(csv_path), str(xlsx_path), "--format", "csv", "--out", str(out_dir), "-q"
            )
            self.assertEqual(code, 1)
            self.assertIn("Several inputs would write the same output", stderr)
            self.assertIn("week_converted.csv", stderr)
            self.assertFalse(out_dir.exists())

    def test_dry_run_writes_nothing(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            code, stdout, _stderr = call_main("convert", str(SAMPLE_CSV), "--out", tmpdir, "--dry-run", "--json")
            self.assertEqual(code, 0)
            self.assertTrue(json.loads(stdout)["dry_run"])
            self.assertEqual(list(Path(tmpdir).iterdir()), [])

    def test_format_override_writes_xlsx(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            code, _stdout, stderr = call_main("convert", str(SAMPLE_CSV), "--format", "xlsx", "--out", tmpdir)
            self.assertEqual(code, 0, stderr)
            ws = load_workbook(Path(tmpdir) / "weekly_hours_converted.xlsx").active
            self.assertEqual(ws["E2"].value, "07:30")

    def test_config_file_drives_settings(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "birt-convert.yml"
            code, _stdout, stderr = call_main("config", "init", "--path", str(config_path))
            self.assertEqual(code, 0, stderr)
            self.assertIn("Config written", stderr)

            code, _stdout, stderr = call_main("config", "init", "--path", str(config_path))
            self.assertEqual(code, 1)
            self.assertIn("Refusing to overwrite", stderr)

            config_path.write_text("keep_original: true\n", encoding="utf-8")
            code, stdout, _stderr = call_main(
                "convert", str(SAMPLE_CSV), "--config", str(config_path), "--dry-run", "--json"
            )
            self.assertEqual(code, 0)
            self.assertTrue(json.loads(stdout)["settings"]["keep_original"])

            config_path.write_text("keep_orignal: true\n", encoding="utf-8")
            code, _stdout, stderr = call_main("inspect", str(SAMPLE_CSV), "--config", str(config_path))
            self.assertEqual(code, 1)
            self.assertIn("Unknown config keys", stderr)


if __name__ == "__main__":
    unittest.main()
