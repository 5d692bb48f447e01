"""
Result sinks: CSV files for people, a JSON snapshot for tooling.

CSV fields are quoted (with embedded quotes doubled) only when they contain a
comma, a quote, or a newline.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Protocol

import orjson

from fleetcheck.engine import CheckResult
from fleetcheck.engine.fleet import FleetOutcome, GroupedCheckOutcome

RESULT_HEADER = (
    "Target",
    "CheckId",
    "CheckName",
    "Category",
    "Severity",
    "Passed",
    "ActualValue",
    "Message",
    "ExecutedAt",
)
GROUPED_HEADER = (
    "CheckId",
    "CheckName",
    "Category",
    "Severity",
    "Target",
    "Passed",
    "ActualValue",
    "Message",
    "PassedCount",
    "FailedCount",
)
FILE_TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
ROW_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class ResultSink(Protocol):
    def write(self, outcome: FleetOutcome, label: str) -> list[Path]: ...


def escape_csv(value: object) -> str:
    if value is None:
        return ""
    text = str(value)
    if "," in text or '"' in text or "\n" in text:
        return '"' + text.replace('"', '""') + '"'
    return text


def _csv_line(fields: Iterable[object]) -> str:
    return ",".join(escape_csv(f) for f in fields)


def result_rows(results: Iterable[CheckResult]) -> list[str]:
    lines = [_csv_line(RESULT_HEADER)]
    for r in results:
        lines.append(
            _csv_line(
                (
                    r.target,
                    r.check_id,
                    r.check_name,
                    r.category,
                    r.severity,
                    "True" if r.passed else "False",
                    r.actual_value,
                    r.message,
                    r.executed_at.strftime(ROW_TIMESTAMP_FORMAT),
                )
            )
        )
    return lines


def grouped_rows(groups: Iterable[GroupedCheckOutcome]) -> list[str]:
    lines = [_csv_line(GROUPED_HEADER)]
    for g in groups:
        for s in g.summaries:
            lines.append(
                _csv_line(
                    (
                        g.check_id,
                        g.check_name,
                        g.category,
                        g.severity,
                        s.target,
                        "True" if s.passed else "False",
                        s.actual_value,
                        s.message,
                        g.passed_count,
                        g.failed_count,
                    )
                )
            )
    return lines


def _safe_label(label: str) -> str:
    return "".join(ch if ch.isalnum() or ch in "-_." else "_" for ch in label) or "fleet"


class CsvResultSink:
    """Writes <label>_HealthCheck_<ts>.csv and <label>_GroupedByCheck_<ts>.csv."""

    def __init__(self, output_dir: str | Path, now: datetime | None = None):
        self.output_dir = Path(output_dir)
        self._now = now

    def _timestamp(self) -> str:
        return (self._now or datetime.now()).strftime(FILE_TIMESTAMP_FORMAT)

    def write_results(self, results: Iterable[CheckResult], label: str) -> Path:
        path = self.output_dir / f"{_safe_label(label)}_HealthCheck_{self._timestamp()}.csv"
        self._write(path, result_rows(results))
        return path

    def write_grouped(self, groups: Iterable[GroupedCheckOutcome], label: str) -> Path:
        path = self.output_dir / f"{_safe_label(label)}_GroupedByCheck_{self._timestamp()}.csv"
        self._write(path, grouped_rows(groups))
        return path

    def write(self, outcome: FleetOutcome, label: str) -> list[Path]:
        return [
            self.write_results(outcome.results, label),
            self.write_grouped(outcome.grouped, label),
        ]

    def _write(self, path: Path, lines: list[str]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def snapshot_payload(outcome: FleetOutcome) -> dict:
    return {
        "all_passed": outcome.all_passed,
        "targets": [
            {
                "name": run.name,
                "reported_name": run.reported_name,
                "connection_successful": run.connection_successful,
                "error_message": run.error_message,
                "total_checks": run.total_checks,
                "passed_checks": run.passed_checks,
                "failed_checks": run.failed_checks,
            }
            for run in outcome.target_runs
        ],
        "results": list(outcome.results),
        "grouped": [
            {
                "check_id": g.check_id,
                "check_name": g.check_name,
                "category": g.category,
                "severity": g.severity,
                "passed_count": g.passed_count,
                "failed_count": g.failed_count,
                "targets": list(g.summaries),
            }
            for g in outcome.grouped
        ],
    }


def write_json_snapshot(outcome: FleetOutcome, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(orjson.dumps(snapshot_payload(outcome), option=orjson.OPT_INDENT_2))
    return path
