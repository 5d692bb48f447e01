"""
fleetcheck/engine/fleet.py — Run one catalog across many targets.

Every target gets its own SingleTargetExecutor; all of them share one
ConnectionThrottle, which is what actually bounds open sessions. A target
that fails its connectivity test contributes one synthetic CONNECTION row,
a target whose run raises contributes one synthetic ERROR row, and neither
affects sibling targets.

After all targets finish, results are sorted (target, category, check name,
check id) and grouped per catalog check across the targets that ran.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Literal

from fleetcheck.catalog import CheckDefinition
from fleetcheck.engine import (
    CONNECTION_CHECK_ID,
    ERROR_CHECK_ID,
    SYSTEM_SOURCE,
    CancellationToken,
    CheckResult,
    FleetProgressSink,
)
from fleetcheck.engine.connector import Connector
from fleetcheck.engine.executor import (
    BATCH_SIZE,
    CLEANUP_INTERVAL,
    STATEMENT_TIMEOUT_SECONDS,
    SingleTargetExecutor,
    normalize_error,
)
from fleetcheck.engine.pressure import PressureHint
from fleetcheck.engine.throttle import ConnectionThrottle
from fleetcheck.targets import TargetDescriptor

if TYPE_CHECKING:
    from config.settings import Settings

logger = logging.getLogger(__name__)

RunMode = Literal["parallel", "sequential"]


@dataclass(frozen=True)
class TargetCheckSummary:
    target: str
    passed: bool
    message: str
    actual_value: int


@dataclass(frozen=True)
class GroupedCheckOutcome:
    check_id: str
    check_name: str
    category: str
    severity: str
    summaries: tuple[TargetCheckSummary, ...] = ()

    @property
    def passed_count(self) -> int:
        return sum(1 for s in self.summaries if s.passed)

    @property
    def failed_count(self) -> int:
        return sum(1 for s in self.summaries if not s.passed)

    @property
    def all_passed(self) -> bool:
        return self.failed_count == 0


@dataclass(frozen=True)
class TargetRun:
    name: str
    connection_successful: bool
    results: tuple[CheckResult, ...] = ()
    error_message: str | None = None
    # Name the server reported for itself during the connectivity test
    reported_name: str | None = None

    @property
    def display_name(self) -> str:
        return self.reported_name or self.name

    @property
    def total_checks(self) -> int:
        return len(self.results)

    @property
    def passed_checks(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def failed_checks(self) -> int:
        return sum(1 for r in self.results if not r.passed)


@dataclass(frozen=True)
class FleetOutcome:
    results: tuple[CheckResult, ...]
    grouped: tuple[GroupedCheckOutcome, ...]
    target_runs: tuple[TargetRun, ...] = field(default=())

    @property
    def total_targets(self) -> int:
        return len(self.target_runs)

    @property
    def successful_targets(self) -> int:
        return sum(1 for t in self.target_runs if t.connection_successful)

    @property
    def failed_targets(self) -> int:
        return self.total_targets - self.successful_targets

    @property
    def executed_groups(self) -> tuple[GroupedCheckOutcome, ...]:
        return tuple(g for g in self.grouped if g.summaries)

    @property
    def all_passed(self) -> bool:
        return all(r.passed for r in self.results)


def sort_results(results: list[CheckResult]) -> list[CheckResult]:
    return sorted(results, key=lambda r: (r.target, r.category, r.check_name, r.check_id))


def group_results_by_check(
    target_runs: list[TargetRun], checks: list[CheckDefinition]
) -> list[GroupedCheckOutcome]:
    """One group per catalog check, summarizing targets that actually ran it.

    Summaries are labelled with the name each server reported for itself,
    falling back to the configured target name.
    """
    reachable = [run for run in target_runs if run.connection_successful]
    by_target = [
        (run.display_name, {r.check_id: r for r in reversed(run.results)}) for run in reachable
    ]

    grouped: list[GroupedCheckOutcome] = []
    for check in checks:
        summaries = []
        for target_name, results_by_id in by_target:
            result = results_by_id.get(check.id)
            if result is None:
                continue
            summaries.append(
                TargetCheckSummary(
                    target=target_name,
                    passed=result.passed,
                    message=result.message,
                    actual_value=result.actual_value,
                )
            )
        grouped.append(
            GroupedCheckOutcome(
                check_id=check.id,
                check_name=check.display_name,
                category=check.category,
                severity=check.severity,
                summaries=tuple(summaries),
            )
        )
    return grouped


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class FleetOrchestrator:
    def __init__(
        self,
        connector: Connector,
        throttle: ConnectionThrottle | None = None,
        *,
        mode: RunMode = "parallel",
        statement_timeout: int = STATEMENT_TIMEOUT_SECONDS,
        batch_size: int = BATCH_SIZE,
        cleanup_interval: int = CLEANUP_INTERVAL,
        pressure: PressureHint | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.connector = connector
        self.throttle = throttle or ConnectionThrottle()
        self.mode = mode
        self.statement_timeout = statement_timeout
        self.batch_size = batch_size
        self.cleanup_interval = cleanup_interval
        self._pressure = pressure
        self._clock = clock

    @classmethod
    def from_settings(cls, cfg: Settings, connector: Connector, **kwargs) -> FleetOrchestrator:
        return cls(
            connector,
            ConnectionThrottle(cfg.THROTTLE_CAPACITY),
            mode=cfg.RUN_MODE,
            statement_timeout=cfg.STATEMENT_TIMEOUT_SECONDS,
            batch_size=cfg.BATCH_SIZE,
            cleanup_interval=cfg.CLEANUP_INTERVAL,
            **kwargs,
        )

    def executor_for(self, target: TargetDescriptor) -> SingleTargetExecutor:
        return SingleTargetExecutor(
            target,
            self.connector,
            self.throttle,
            statement_timeout=self.statement_timeout,
            batch_size=self.batch_size,
            cleanup_interval=self.cleanup_interval,
            pressure=self._pressure,
            clock=self._clock,
        )

    def _synthetic(
        self, target: TargetDescriptor, check_id: str, name: str, category: str, message: str
    ) -> CheckResult:
        return CheckResult(
            check_id=check_id,
            check_name=name,
            category=category,
            severity="Critical",
            passed=False,
            actual_value=0,
            message=message,
            executed_at=self._clock(),
            target=target.name,
            source=SYSTEM_SOURCE,
        )

    async def run_target(
        self,
        target: TargetDescriptor,
        checks: list[CheckDefinition],
        progress: FleetProgressSink | None = None,
        cancel: CancellationToken | None = None,
    ) -> TargetRun:
        """Run the catalog on one target; never raises for target-level failures."""
        try:
            async with self.executor_for(target) as executor:
                if not await executor.test_connection():
                    logger.warning("TARGET_UNREACHABLE | target=%s", target.name)
                    connection_row = self._synthetic(
                        target,
                        CONNECTION_CHECK_ID,
                        "Connection Test",
                        "Connection",
                        "Could not connect to server",
                    )
                    return TargetRun(
                        name=target.name,
                        connection_successful=False,
                        results=(connection_row,),
                        error_message="Connection failed",
                    )

                def _target_progress(completed: int, total: int, label: str) -> None:
                    if progress is not None:
                        progress(target.name, completed, total, label)

                results = await executor.run_batch(checks, _target_progress, cancel)
        except Exception as exc:  # noqa: BLE001
            message = normalize_error(exc)
            logger.warning("TARGET_EXC | target=%s err=%s", target.name, message)
            error_row = self._synthetic(
                target, ERROR_CHECK_ID, "Execution Error", "Error", message
            )
            return TargetRun(
                name=target.name,
                connection_successful=False,
                results=(error_row,),
                error_message=message,
            )

        return TargetRun(
            name=target.name,
            connection_successful=True,
            results=tuple(results),
            reported_name=executor.reported_name,
        )

    async def run_across_targets(
        self,
        targets: list[TargetDescriptor],
        checks: list[CheckDefinition],
        progress: FleetProgressSink | None = None,
        cancel: CancellationToken | None = None,
    ) -> FleetOutcome:
        targets = list(targets)
        checks = list(checks)
        parallel = self.mode == "parallel" and len(targets) > 1
        logger.info(
            "RUN_START | targets=%d checks=%d mode=%s throttle=%d",
            len(targets),
            len(checks),
            "parallel" if parallel else "sequential",
            self.throttle.capacity,
        )

        if parallel:
            target_runs = list(
                await asyncio.gather(
                    *(self.run_target(t, checks, progress, cancel) for t in targets)
                )
            )
        else:
            target_runs = []
            for target in targets:
                target_runs.append(await self.run_target(target, checks, progress, cancel))

        flat = [r for run in target_runs for r in run.results]
        outcome = FleetOutcome(
            results=tuple(sort_results(flat)),
            grouped=tuple(group_results_by_check(target_runs, checks)),
            target_runs=tuple(target_runs),
        )
        logger.info(
            "RUN_END | results=%d reachable=%d/%d peak_sessions=%d",
            len(outcome.results),
            outcome.successful_targets,
            outcome.total_targets,
            self.throttle.peak,
        )
        return outcome
