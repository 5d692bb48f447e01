"""
tests/conftest.py — Shared fixtures and path setup for all tests.

Adds the project root to sys.path so tests can import without installing:
    from config.settings import Settings
    from fleetcheck.engine.executor import SingleTargetExecutor

Provides `fake_connector`, a factory for a scripted in-memory Connector that
records how many sessions are open at once.
"""
from __future__ import annotations

import asyncio
import logging
import pathlib
import random
import sys
from datetime import UTC, datetime

import pytest

# Make project root importable without installing as a package
PROJECT_ROOT = pathlib.Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

FIXED_NOW = datetime(2024, 1, 15, 9, 30, 0, tzinfo=UTC)


class FakeSession:
    def __init__(self, connector: FakeConnector, target_name: str):
        self._connector = connector
        self._target_name = target_name
        self.closed = False

    def _outcome(self, sql: str) -> object:
        outcome = self._connector.outcome(self._target_name, sql)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def execute_scalar(self, sql: str, timeout_seconds: int) -> object:
        self._connector.timeouts.append(timeout_seconds)
        await self._connector.pause()
        return self._outcome(sql)

    async def execute_rows(self, sql: str, timeout_seconds: int):
        self._connector.timeouts.append(timeout_seconds)
        await self._connector.pause()
        outcome = self._outcome(sql)
        rows = range(outcome) if isinstance(outcome, int) else outcome
        for row in rows:
            yield (row,)

    async def server_name(self, timeout_seconds: int) -> str | None:
        name = self._connector.server_names.get(self._target_name)
        if isinstance(name, BaseException):
            raise name
        return name

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._connector.open_sessions -= 1


class FakeConnector:
    """Scripted connector.

    responses maps target name -> {sql text -> outcome}; the "*" target is the
    fallback for every target. An outcome is a scalar, a row count / row list
    for RowCount queries, or an exception instance to raise. server_names
    maps target name -> the name its server reports for itself (or an
    exception to raise from the lookup).
    """

    def __init__(
        self,
        responses: dict[str, dict[str, object]] | None = None,
        unreachable: tuple[str, ...] = (),
        delay: float = 0.0,
        seed: int | None = None,
        server_names: dict[str, object] | None = None,
    ):
        self.responses = responses or {}
        self.unreachable = set(unreachable)
        self.delay = delay
        self.server_names = server_names or {}
        self._rng = random.Random(seed) if seed is not None else None
        self.open_sessions = 0
        self.peak_sessions = 0
        self.opened = 0
        self.open_log: list[str] = []
        self.timeouts: list[int] = []

    async def pause(self) -> None:
        if self._rng is not None:
            await asyncio.sleep(self._rng.uniform(0, 0.003))
        else:
            await asyncio.sleep(self.delay)

    def outcome(self, target_name: str, sql: str) -> object:
        scripted = self.responses.get(target_name, {})
        if sql in scripted:
            return scripted[sql]
        return self.responses.get("*", {}).get(sql, 0)

    async def open(self, target) -> FakeSession:
        self.open_log.append(target.name)
        if target.name in self.unreachable:
            await self.pause()
            raise ConnectionError(f"cannot reach {target.name}")
        self.open_sessions += 1
        self.opened += 1
        self.peak_sessions = max(self.peak_sessions, self.open_sessions)
        await self.pause()
        return FakeSession(self, target.name)


class RecordingPressure:
    def __init__(self) -> None:
        self.calls = 0

    def suggest_cleanup(self) -> None:
        self.calls += 1


@pytest.fixture(autouse=True)
def _reset_cli_logger():
    """setup_logging() attaches handlers to a process-wide logger; drop them between tests."""
    yield
    logger = logging.getLogger("fleetcheck")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


@pytest.fixture
def fake_connector():
    return FakeConnector


@pytest.fixture
def recording_pressure():
    return RecordingPressure()


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW
