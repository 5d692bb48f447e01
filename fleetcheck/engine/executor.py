"""
fleetcheck/engine/executor.py — Run a check catalog against one target.

Each check takes one throttle permit for its whole session (open, execute,
close) and is interpreted by execution type:

  Binary    scalar parsed as int; passes when it equals expected_value
  RowCount  rows drained and counted; pass depends on row_count_condition
  InfoOnly  scalar recorded when numeric; always passes

Any failure inside a check becomes a failed CheckResult. Checks run in
fixed-size concurrent batches; cancellation is only observed between batches.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from fleetcheck.catalog import CheckDefinition, ExecutionType, RowCountCondition
from fleetcheck.engine import (
    CancellationToken,
    CheckResult,
    CheckRunCancelled,
    EngineClosedError,
    ProgressSink,
)
from fleetcheck.engine.connector import Connector, Session
from fleetcheck.engine.formatter import format_check_message
from fleetcheck.engine.pressure import NullPressureHint, PressureHint
from fleetcheck.engine.throttle import ConnectionThrottle
from fleetcheck.targets import TargetDescriptor

logger = logging.getLogger(__name__)

STATEMENT_TIMEOUT_SECONDS = 30
BATCH_SIZE = 5
CLEANUP_INTERVAL = 20
NON_NUMERIC_MESSAGE = "Query did not return a valid numeric result"


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def normalize_error(exc: BaseException) -> str:
    message = re.sub(r"\s+", " ", str(exc).strip())
    return message[:500] if message else exc.__class__.__name__


def parse_int(value: Any) -> int | None:
    """Integer value of a scalar, or None when it is null or not an integer."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def row_count_passes(condition: RowCountCondition, count: int, expected_value: int) -> bool:
    match condition:
        case RowCountCondition.EQUALS_0:
            return count == 0
        case RowCountCondition.GREATER_THAN_0:
            return count > 0
        case RowCountCondition.LESS_THAN_0:
            return count < 0
        case RowCountCondition.ANY:
            return True
        case RowCountCondition.UNRECOGNIZED:
            return count == expected_value


class SingleTargetExecutor:
    def __init__(
        self,
        target: TargetDescriptor,
        connector: Connector,
        throttle: ConnectionThrottle,
        *,
        statement_timeout: int = STATEMENT_TIMEOUT_SECONDS,
        batch_size: int = BATCH_SIZE,
        cleanup_interval: int = CLEANUP_INTERVAL,
        pressure: PressureHint | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.target = target
        self._connector = connector
        self._throttle = throttle
        self.statement_timeout = statement_timeout
        self.batch_size = batch_size
        self.cleanup_interval = cleanup_interval
        self._pressure = pressure or NullPressureHint()
        self._clock = clock
        self._closed = False
        self.reported_name: str | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise EngineClosedError(f"executor for target '{self.target.name}' is closed")

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._pressure.suggest_cleanup()

    async def __aenter__(self) -> SingleTargetExecutor:
        self._ensure_open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Connectivity
    # -------------------------------------------------------------------------

    async def test_connection(self) -> bool:
        """Open a session, record the server's own name, close. Never raises on I/O failure."""
        self._ensure_open()
        async with self._throttle.permit():
            try:
                session = await self._connector.open(self.target)
                try:
                    self.reported_name = await self._lookup_server_name(session)
                finally:
                    await session.close()
                return True
            except Exception as exc:  # noqa: BLE001
                logger.debug("connection test failed target=%s err=%s", self.target.name, exc)
                return False

    async def _lookup_server_name(self, session: Session) -> str | None:
        try:
            return await session.server_name(self.statement_timeout)
        except Exception as exc:  # noqa: BLE001
            logger.debug("server name lookup failed target=%s err=%s", self.target.name, exc)
            return None

    # -------------------------------------------------------------------------
    # Single check
    # -------------------------------------------------------------------------

    def _result(
        self,
        check: CheckDefinition,
        passed: bool,
        actual_value: int,
        message: str,
        executed_at: datetime,
    ) -> CheckResult:
        return CheckResult(
            check_id=check.id,
            check_name=check.display_name,
            category=check.category,
            severity=check.severity,
            passed=passed,
            actual_value=actual_value,
            message=message,
            executed_at=executed_at,
            target=self.target.name,
            expected_value=check.expected_value,
            source=check.source,
        )

    async def run_one(self, check: CheckDefinition) -> CheckResult:
        self._ensure_open()
        executed_at = self._clock()

        async with self._throttle.permit():
            try:
                session = await self._connector.open(self.target)
                try:
                    passed, actual, diagnostic = await self._interpret(check, session)
                finally:
                    await session.close()
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "CHECK_EXC | target=%s check=%s err=%s", self.target.name, check.id, exc
                )
                return self._result(
                    check, False, 0, f"Check execution failed: {normalize_error(exc)}", executed_at
                )

        message = diagnostic or format_check_message(check, passed, actual)
        logger.debug(
            "CHECK_DONE | target=%s check=%s passed=%s actual=%d",
            self.target.name,
            check.id,
            passed,
            actual,
        )
        return self._result(check, passed, actual, message, executed_at)

    async def _interpret(self, check: CheckDefinition, session: Session) -> tuple[bool, int, str | None]:
        """Return (passed, actual_value, diagnostic message or None)."""
        match check.execution_type:
            case ExecutionType.ROW_COUNT:
                count = 0
                async for _ in session.execute_rows(check.sql_query, self.statement_timeout):
                    count += 1
                return (
                    row_count_passes(check.row_count_condition, count, check.expected_value),
                    count,
                    None,
                )
            case ExecutionType.INFO_ONLY:
                value = await session.execute_scalar(check.sql_query, self.statement_timeout)
                actual = parse_int(value)
                return True, actual if actual is not None else 0, None
            case ExecutionType.BINARY | ExecutionType.UNRECOGNIZED:
                value = await session.execute_scalar(check.sql_query, self.statement_timeout)
                actual = parse_int(value)
                if actual is None:
                    return False, 0, NON_NUMERIC_MESSAGE
                return actual == check.expected_value, actual, None

    # -------------------------------------------------------------------------
    # Batches
    # -------------------------------------------------------------------------

    async def run_batch(
        self,
        checks: list[CheckDefinition],
        progress: ProgressSink | None = None,
        cancel: CancellationToken | None = None,
    ) -> list[CheckResult]:
        """Run checks batch by batch; results come back in input order."""
        self._ensure_open()
        checks = list(checks)
        total = len(checks)
        completed = 0
        hinted = 0
        results: list[CheckResult] = []

        async def _run_and_report(check: CheckDefinition) -> CheckResult:
            nonlocal completed
            result = await self.run_one(check)
            completed += 1
            if progress is not None:
                progress(completed, total, check.display_name)
            return result

        try:
            for start in range(0, total, self.batch_size):
                if cancel is not None and cancel.is_set():
                    raise CheckRunCancelled(
                        f"check run cancelled for target '{self.target.name}' "
                        f"after {completed}/{total} checks"
                    )
                batch = checks[start : start + self.batch_size]
                results.extend(await asyncio.gather(*(_run_and_report(c) for c in batch)))

                if self.cleanup_interval > 0 and completed // self.cleanup_interval > hinted:
                    hinted = completed // self.cleanup_interval
                    self._pressure.suggest_cleanup()
            return results
        finally:
            self._pressure.suggest_cleanup()
