#!/usr/bin/env python3
"""
fleetcheck/run_checks.py — Run the enabled check catalog across one or more targets.

Targets are DuckDB database files. Results are printed per target, written
as CSV (flat + grouped by check) and optionally as a JSON snapshot.

Usage:
    python -m fleetcheck.run_checks --target prod=/data/prod.duckdb --target qa=/data/qa.duckdb
    python -m fleetcheck.run_checks --targets-file targets.yml --sequential --json build/snapshot.json

Importable (used by integration tests):
    from fleetcheck.run_checks import run_fleet
    outcome = asyncio.run(run_fleet(cfg, targets, checks))

Exit code: 0 when every result passed, 1 otherwise (or on bad input).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections import Counter
from logging.handlers import RotatingFileHandler
from pathlib import Path

from config.settings import Settings, load_settings
from fleetcheck.catalog import CheckDefinition, FileCatalog
from fleetcheck.engine import CancellationToken, FleetProgressSink
from fleetcheck.engine.connector import DuckDBConnector
from fleetcheck.engine.fleet import FleetOrchestrator, FleetOutcome
from fleetcheck.engine.formatter import build_detailed_message
from fleetcheck.engine.pressure import GcPressureHint
from fleetcheck.export import CsvResultSink, write_json_snapshot
from fleetcheck.targets import TargetDescriptor, load_targets, parse_target_arg

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
SEVERITIES = ("Critical", "Warning", "Info")

log = logging.getLogger("fleetcheck")


def setup_logging(level: str = "INFO", log_dir: str | None = None) -> logging.Logger:
    log.setLevel(level)

    # Avoid duplicate handlers when main() runs more than once in a process
    if log.handlers:
        return log

    fmt = logging.Formatter(LOG_FORMAT)
    sh = logging.StreamHandler(sys.stderr)
    sh.setFormatter(fmt)
    log.addHandler(sh)

    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(
            Path(log_dir) / "fleetcheck.log",
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=5,
            encoding="utf-8",
        )
        fh.setFormatter(fmt)
        log.addHandler(fh)

    return log


async def run_fleet(
    cfg: Settings,
    targets: list[TargetDescriptor],
    checks: list[CheckDefinition],
    progress: FleetProgressSink | None = None,
    cancel: CancellationToken | None = None,
) -> FleetOutcome:
    orchestrator = FleetOrchestrator.from_settings(
        cfg,
        DuckDBConnector(read_only=cfg.DUCKDB_READ_ONLY),
        pressure=GcPressureHint() if cfg.cleanup_enabled else None,
    )
    return await orchestrator.run_across_targets(targets, checks, progress, cancel)


async def _run_until_interrupted(
    cfg: Settings, targets: list[TargetDescriptor], checks: list[CheckDefinition]
) -> FleetOutcome:
    """Ctrl-C stops at the next batch boundary; in-flight queries finish."""
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.set)
    except (NotImplementedError, RuntimeError):
        pass  # Windows event loops have no signal handlers

    def _progress(target: str, completed: int, total: int, label: str) -> None:
        log.debug("PROGRESS | target=%s %d/%d %s", target, completed, total, label)

    return await run_fleet(cfg, targets, checks, _progress, cancel)


def resolve_targets(cfg: Settings, target_args: list[str], targets_file: str | None) -> list[TargetDescriptor]:
    targets = [parse_target_arg(raw) for raw in target_args]
    path = targets_file or cfg.TARGETS_PATH
    if path:
        targets.extend(load_targets(path))
    return targets


def _print_results(outcome: FleetOutcome, checks: list[CheckDefinition], verbose: bool = False) -> bool:
    """Print formatted results. Returns True if all passed."""
    by_id = {c.id: c for c in checks}

    print()
    print("╔══════════════════════════════════════════════════════════╗")
    print("  fleetcheck: SQL Check Run")
    print(f"  TARGETS={outcome.total_targets}  CHECKS={len(checks)}")
    print("╚══════════════════════════════════════════════════════════╝")

    current_target = None
    for r in outcome.results:
        if r.target != current_target:
            current_target = r.target
            print(f"\n━━━ Target: {current_target} ━━━")
        print(r)
        check = by_id.get(r.check_id)
        if verbose and not r.passed and check is not None:
            detail = build_detailed_message(check, r.passed, r.actual_value)
            for line in detail.splitlines()[1:]:
                print(f"         {line}")

    passed = sum(1 for r in outcome.results if r.passed)
    total = len(outcome.results)
    failed_by_severity = Counter(r.severity for r in outcome.results if not r.passed)
    all_passed = passed == total

    print()
    print("╔══════════════════════════════════════════════════════════╗")
    print(f"  Check Run Complete: {passed}/{total} passed")
    print(
        f"  Targets reachable: {outcome.successful_targets}/{outcome.total_targets}"
    )
    if all_passed:
        print("  All checks passed ✓")
    else:
        split = "  ".join(f"{s}={failed_by_severity.get(s, 0)}" for s in SEVERITIES)
        print(f"  FAILED: {total - passed} check(s) — {split}")
    print("╚══════════════════════════════════════════════════════════╝")

    return all_passed


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Run the enabled SQL check catalog against one or more DuckDB targets."
    )
    parser.add_argument(
        "--target",
        action="append",
        default=[],
        metavar="NAME=DSN",
        help="Target database (repeatable). A bare path is named after its file stem.",
    )
    parser.add_argument("--targets-file", help="YAML/JSON list of {name, dsn} targets.")
    parser.add_argument("--catalog", help="Check catalog file (overrides CATALOG_PATH).")
    parser.add_argument("--env-file", default=".env", help="Env file read by load_settings().")
    parser.add_argument(
        "--sequential", action="store_true", help="Run targets one at a time (RUN_MODE=sequential)."
    )
    parser.add_argument("--output-dir", help="CSV destination (overrides OUTPUT_DIR).")
    parser.add_argument("--no-csv", action="store_true", help="Skip CSV export.")
    parser.add_argument("--json", dest="json_path", help="Also write a JSON snapshot to this path.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show remediation for failures.")
    args = parser.parse_args(argv)

    cfg = load_settings(args.env_file)
    overrides: dict[str, object] = {}
    if args.catalog:
        overrides["CATALOG_PATH"] = args.catalog
    if args.sequential:
        overrides["RUN_MODE"] = "sequential"
    if args.output_dir:
        overrides["OUTPUT_DIR"] = args.output_dir
    if overrides:
        cfg = Settings(**{**cfg.model_dump(), **overrides})

    setup_logging(cfg.LOG_LEVEL, cfg.LOG_DIR)

    try:
        checks = FileCatalog(cfg.CATALOG_PATH).get_enabled_checks()
        targets = resolve_targets(cfg, args.target, args.targets_file)
    except FileNotFoundError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    if not targets:
        print("ERROR: no targets given (use --target, --targets-file or TARGETS_PATH)", file=sys.stderr)
        return 1

    outcome = asyncio.run(_run_until_interrupted(cfg, targets, checks))
    all_passed = _print_results(outcome, checks, verbose=args.verbose)

    if not args.no_csv:
        label = targets[0].name if len(targets) == 1 else "fleet"
        for path in CsvResultSink(cfg.OUTPUT_DIR).write(outcome, label):
            print(f"[+] CSV written: {path}")
    if args.json_path:
        print(f"[+] Snapshot written: {write_json_snapshot(outcome, args.json_path)}")

    return 0 if all_passed else 1


if __name__ == "__main__":
    sys.exit(main())
