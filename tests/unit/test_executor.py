"""Unit tests for SingleTargetExecutor against a scripted connector."""

from __future__ import annotations

import asyncio

import pytest

from fleetcheck.catalog import CheckDefinition, RowCountCondition
from fleetcheck.engine import CheckRunCancelled, EngineClosedError
from fleetcheck.engine.executor import (
    NON_NUMERIC_MESSAGE,
    SingleTargetExecutor,
    normalize_error,
    parse_int,
    row_count_passes,
)
from fleetcheck.engine.throttle import ConnectionThrottle
from fleetcheck.targets import TargetDescriptor

TARGET = TargetDescriptor(name="prod-eu", dsn="prod_eu.duckdb")


def _check(check_id: str = "C1", **overrides: object) -> CheckDefinition:
    base: dict[str, object] = {
        "id": check_id,
        "name": f"Check {check_id}",
        "category": "General",
        "sql_query": f"q_{check_id}",
    }
    base.update(overrides)
    return CheckDefinition(**base)


def _executor(connector, **kwargs) -> SingleTargetExecutor:
    throttle = kwargs.pop("throttle", None) or ConnectionThrottle()
    return SingleTargetExecutor(TARGET, connector, throttle, **kwargs)


async def _run_single(fake_connector, check: CheckDefinition, outcome: object, **kwargs):
    connector = fake_connector({"*": {check.sql_query: outcome}})
    return await _executor(connector, **kwargs).run_one(check)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "raw,expected",
    [(0, 0), (7, 7), (-3, -3), ("5", 5), (" 4 ", 4), (None, None), ("abc", None), (2.5, None), (True, None)],
)
def test_parse_int(raw, expected):
    assert parse_int(raw) == expected


def test_normalize_error_collapses_whitespace():
    assert normalize_error(RuntimeError("line one\n   line two")) == "line one line two"


def test_normalize_error_truncates():
    assert len(normalize_error(RuntimeError("x" * 2000))) == 500


def test_normalize_error_empty_message_uses_type():
    assert normalize_error(TimeoutError()) == "TimeoutError"


@pytest.mark.parametrize(
    "condition,count,expected_value,passed",
    [
        (RowCountCondition.EQUALS_0, 0, 0, True),
        (RowCountCondition.EQUALS_0, 2, 0, False),
        (RowCountCondition.GREATER_THAN_0, 0, 0, False),
        (RowCountCondition.GREATER_THAN_0, 1, 0, True),
        (RowCountCondition.LESS_THAN_0, 0, 0, False),
        (RowCountCondition.ANY, 9, 0, True),
        (RowCountCondition.UNRECOGNIZED, 3, 3, True),
        (RowCountCondition.UNRECOGNIZED, 2, 3, False),
    ],
)
def test_row_count_passes(condition, count, expected_value, passed):
    assert row_count_passes(condition, count, expected_value) is passed


# ---------------------------------------------------------------------------
# Interpretation
# ---------------------------------------------------------------------------


class TestBinary:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "value,expected_value,passed,actual",
        [(0, 0, True, 0), (1, 0, False, 1), (5, 5, True, 5), ("5", 5, True, 5), (-1, 0, False, -1)],
    )
    async def test_passes_when_value_equals_expected(
        self, fake_connector, value, expected_value, passed, actual
    ):
        result = await _run_single(fake_connector, _check(expected_value=expected_value), value)
        assert result.passed is passed
        assert result.actual_value == actual
        assert result.target == "prod-eu"
        assert result.expected_value == expected_value

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [None, "abc", 2.5])
    async def test_non_numeric_fails(self, fake_connector, value):
        result = await _run_single(fake_connector, _check(), value)
        assert result.passed is False
        assert result.actual_value == 0
        assert result.message == NON_NUMERIC_MESSAGE

    @pytest.mark.asyncio
    async def test_unrecognized_type_behaves_like_binary(self, fake_connector):
        check = _check(execution_type="Threshold", expected_value=2)
        result = await _run_single(fake_connector, check, 2)
        assert result.passed is True

    @pytest.mark.asyncio
    async def test_message_uses_templates(self, fake_connector):
        check = _check(
            check_triggered="@ database(s) without backup",
            check_cleared="All databases backed up",
        )
        failed = await _run_single(fake_connector, check, 1)
        passed = await _run_single(fake_connector, check, 0)
        assert failed.message == "1 database without backup"
        assert passed.message == "All databases backed up"


class TestRowCount:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "condition,rows,passed",
        [
            ("Equals0", 0, True),
            ("Equals0", 3, False),
            ("GreaterThan0", 3, True),
            ("GreaterThan0", 0, False),
            ("LessThan0", 0, False),
            ("Any", 7, True),
        ],
    )
    async def test_conditions(self, fake_connector, condition, rows, passed):
        check = _check(execution_type="RowCount", row_count_condition=condition)
        result = await _run_single(fake_connector, check, rows)
        assert result.passed is passed
        assert result.actual_value == rows

    @pytest.mark.asyncio
    async def test_rows_are_counted_not_read(self, fake_connector):
        check = _check(execution_type="RowCount", row_count_condition="GreaterThan0")
        result = await _run_single(fake_connector, check, [("a", 1), None, ("c", 3)])
        assert result.actual_value == 3

    @pytest.mark.asyncio
    async def test_unrecognized_condition_compares_expected_value(self, fake_connector):
        check = _check(execution_type="RowCount", row_count_condition="AtLeast5", expected_value=2)
        assert (await _run_single(fake_connector, check, 2)).passed is True
        assert (await _run_single(fake_connector, check, 5)).passed is False


class TestInfoOnly:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("value,actual", [(42, 42), (None, 0), ("x", 0), ("17", 17)])
    async def test_always_passes(self, fake_connector, value, actual):
        check = _check(execution_type="InfoOnly", expected_state="Database size is @ MB")
        result = await _run_single(fake_connector, check, value)
        assert result.passed is True
        assert result.actual_value == actual
        assert result.message == f"Database size is {actual} MB"


# ---------------------------------------------------------------------------
# Failures inside a check
# ---------------------------------------------------------------------------


class TestCheckFailures:
    @pytest.mark.asyncio
    async def test_query_exception_becomes_failed_result(self, fake_connector):
        result = await _run_single(fake_connector, _check(), RuntimeError("Invalid object name 'x'"))
        assert result.passed is False
        assert result.actual_value == 0
        assert result.message == "Check execution failed: Invalid object name 'x'"

    @pytest.mark.asyncio
    async def test_open_failure_becomes_failed_result(self, fake_connector):
        connector = fake_connector(unreachable=("prod-eu",))
        result = await _executor(connector).run_one(_check())
        assert result.passed is False
        assert result.message.startswith("Check execution failed: cannot reach prod-eu")

    @pytest.mark.asyncio
    async def test_session_closed_and_permit_released_after_failure(self, fake_connector):
        connector = fake_connector({"*": {"q_C1": RuntimeError("boom")}})
        throttle = ConnectionThrottle(2)
        await _executor(connector, throttle=throttle).run_one(_check())
        assert connector.open_sessions == 0
        assert throttle.in_use == 0

    @pytest.mark.asyncio
    async def test_statement_timeout_passed_to_session(self, fake_connector):
        connector = fake_connector()
        await _executor(connector, statement_timeout=7).run_one(_check())
        assert connector.timeouts == [7]

    @pytest.mark.asyncio
    async def test_source_and_timestamp_from_check_and_clock(self, fake_connector, fixed_clock):
        connector = fake_connector()
        result = await _executor(connector, clock=fixed_clock).run_one(_check(source="BPCheck"))
        assert result.source == "BPCheck"
        assert result.executed_at == fixed_clock()
        assert result.synthetic is False


# ---------------------------------------------------------------------------
# Batches
# ---------------------------------------------------------------------------


class TestRunBatch:
    @pytest.mark.asyncio
    async def test_results_in_input_order(self, fake_connector):
        connector = fake_connector(seed=7)
        checks = [_check(f"C{i}") for i in range(12)]
        results = await _executor(connector).run_batch(checks)
        assert [r.check_id for r in results] == [c.id for c in checks]

    @pytest.mark.asyncio
    async def test_batch_width_bounds_sessions(self, fake_connector):
        connector = fake_connector(delay=0.001)
        checks = [_check(f"C{i}") for i in range(12)]
        await _executor(connector, batch_size=5).run_batch(checks)
        assert connector.peak_sessions == 5
        assert connector.opened == 12

    @pytest.mark.asyncio
    async def test_throttle_smaller_than_batch(self, fake_connector):
        connector = fake_connector(delay=0.001)
        throttle = ConnectionThrottle(2)
        checks = [_check(f"C{i}") for i in range(10)]
        await _executor(connector, throttle=throttle, batch_size=5).run_batch(checks)
        assert connector.peak_sessions <= 2
        assert throttle.peak == 2

    @pytest.mark.asyncio
    async def test_progress_reports_every_check(self, fake_connector):
        connector = fake_connector()
        calls: list[tuple[int, int, str]] = []
        checks = [_check(f"C{i}") for i in range(7)]
        await _executor(connector).run_batch(checks, lambda *a: calls.append(a))
        assert [c[0] for c in calls] == list(range(1, 8))
        assert {c[1] for c in calls} == {7}
        assert {c[2] for c in calls} == {c.display_name for c in checks}

    @pytest.mark.asyncio
    async def test_empty_catalog(self, fake_connector, recording_pressure):
        connector = fake_connector()
        results = await _executor(connector, pressure=recording_pressure).run_batch([])
        assert results == []
        assert connector.opened == 0
        assert recording_pressure.calls == 1

    @pytest.mark.asyncio
    async def test_cleanup_hint_interval(self, fake_connector, recording_pressure):
        connector = fake_connector()
        checks = [_check(f"C{i}") for i in range(40)]
        await _executor(connector, pressure=recording_pressure, cleanup_interval=20).run_batch(checks)
        # after check 20, after check 40, and once at the end
        assert recording_pressure.calls == 3

    @pytest.mark.asyncio
    async def test_cleanup_interval_zero_only_final_hint(self, fake_connector, recording_pressure):
        connector = fake_connector()
        checks = [_check(f"C{i}") for i in range(40)]
        await _executor(connector, pressure=recording_pressure, cleanup_interval=0).run_batch(checks)
        assert recording_pressure.calls == 1

    @pytest.mark.asyncio
    async def test_cleanup_hint_when_batches_straddle_interval(self, fake_connector, recording_pressure):
        connector = fake_connector()
        checks = [_check(f"C{i}") for i in range(60)]
        executor = _executor(connector, pressure=recording_pressure, batch_size=3, cleanup_interval=20)
        await executor.run_batch(checks)
        # after checks 21, 42 and 60 (crossing 20, 40 and 60), and once at the end
        assert recording_pressure.calls == 4

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, fake_connector):
        connector = fake_connector()
        cancel = asyncio.Event()
        cancel.set()
        with pytest.raises(CheckRunCancelled, match="after 0/3 checks"):
            await _executor(connector).run_batch([_check("A"), _check("B"), _check("C")], cancel=cancel)
        assert connector.opened == 0

    @pytest.mark.asyncio
    async def test_cancel_observed_at_batch_boundary(self, fake_connector):
        connector = fake_connector()
        cancel = asyncio.Event()
        checks = [_check(f"C{i}") for i in range(12)]
        with pytest.raises(CheckRunCancelled, match="after 5/12 checks"):
            await _executor(connector, batch_size=5).run_batch(
                checks, lambda *_: cancel.set(), cancel
            )
        # the in-flight batch finished; nothing after it started
        assert connector.opened == 5
        assert connector.open_sessions == 0

    def test_invalid_batch_size(self, fake_connector):
        with pytest.raises(ValueError, match="batch_size"):
            _executor(fake_connector(), batch_size=0)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_connection_check(self, fake_connector):
        throttle = ConnectionThrottle(1)
        ok = _executor(fake_connector(), throttle=throttle)
        down = _executor(fake_connector(unreachable=("prod-eu",)), throttle=throttle)
        assert await ok.test_connection() is True
        assert await down.test_connection() is False
        assert throttle.in_use == 0

    @pytest.mark.asyncio
    async def test_connection_check_records_server_name(self, fake_connector):
        executor = _executor(fake_connector(server_names={"prod-eu": "SQLPROD01"}))
        assert executor.reported_name is None
        assert await executor.test_connection() is True
        assert executor.reported_name == "SQLPROD01"

    @pytest.mark.asyncio
    async def test_server_name_failure_does_not_fail_connection_check(self, fake_connector):
        connector = fake_connector(server_names={"prod-eu": RuntimeError("permission denied")})
        executor = _executor(connector)
        assert await executor.test_connection() is True
        assert executor.reported_name is None
        assert connector.open_sessions == 0

    @pytest.mark.asyncio
    async def test_use_after_close_raises(self, fake_connector):
        executor = _executor(fake_connector())
        executor.close()
        assert executor.closed
        with pytest.raises(EngineClosedError):
            await executor.run_one(_check())
        with pytest.raises(EngineClosedError):
            await executor.run_batch([_check()])
        with pytest.raises(EngineClosedError):
            await executor.test_connection()

    def test_close_is_idempotent(self, fake_connector, recording_pressure):
        executor = _executor(fake_connector(), pressure=recording_pressure)
        executor.close()
        executor.close()
        assert recording_pressure.calls == 1

    @pytest.mark.asyncio
    async def test_context_manager_closes(self, fake_connector):
        async with _executor(fake_connector()) as executor:
            await executor.run_one(_check())
        assert executor.closed
