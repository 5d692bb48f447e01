"""
Connector and session interfaces, plus the DuckDB implementation.

The engine needs a few things from a backing store: open a session against
a target, run a statement returning a scalar, run a statement returning rows
it can drain, and ask the server for its own name. DuckDB calls are blocking, so each one runs in a
worker thread; a statement that outlives its timeout is interrupted.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any, Protocol, TypeVar

import duckdb

from fleetcheck.targets import TargetDescriptor

logger = logging.getLogger(__name__)

MEMORY_DSN = ":memory:"
_T = TypeVar("_T")


class StatementTimeout(TimeoutError):
    """A statement did not finish within its timeout and was interrupted."""


class Session(Protocol):
    async def execute_scalar(self, sql: str, timeout_seconds: int) -> Any: ...

    def execute_rows(self, sql: str, timeout_seconds: int) -> AsyncIterator[tuple]: ...

    async def server_name(self, timeout_seconds: int) -> str | None:
        """Name the server reports for itself, or None when it has none."""
        ...

    async def close(self) -> None: ...


class Connector(Protocol):
    async def open(self, target: TargetDescriptor) -> Session: ...


class DuckDBSession:
    def __init__(self, con: duckdb.DuckDBPyConnection, fetch_size: int = 1000):
        self._con = con
        self.fetch_size = fetch_size

    def _timed_out(self, timeout_seconds: float) -> StatementTimeout:
        self._con.interrupt()
        return StatementTimeout(f"statement exceeded {timeout_seconds}s and was interrupted")

    async def _run(self, fn: Callable[..., _T], arg: Any, timeout_seconds: float) -> _T:
        if timeout_seconds <= 0:
            raise self._timed_out(timeout_seconds)
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, arg), timeout_seconds)
        except asyncio.TimeoutError:
            raise self._timed_out(timeout_seconds) from None

    def _scalar(self, sql: str) -> Any:
        row = self._con.execute(sql).fetchone()
        return row[0] if row else None

    async def execute_scalar(self, sql: str, timeout_seconds: int) -> Any:
        return await self._run(self._scalar, sql, timeout_seconds)

    async def execute_rows(self, sql: str, timeout_seconds: int) -> AsyncIterator[tuple]:
        """Yield result rows; executing and draining share one deadline."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_seconds
        await self._run(self._con.execute, sql, timeout_seconds)
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise self._timed_out(timeout_seconds)
            try:
                chunk = await asyncio.wait_for(
                    asyncio.to_thread(self._con.fetchmany, self.fetch_size), remaining
                )
            except asyncio.TimeoutError:
                raise self._timed_out(timeout_seconds) from None
            if not chunk:
                break
            for row in chunk:
                yield row

    async def server_name(self, timeout_seconds: int) -> str | None:
        name = await self._run(self._scalar, "SELECT current_database()", timeout_seconds)
        return str(name) if name else None

    async def close(self) -> None:
        await asyncio.to_thread(self._con.close)


class DuckDBConnector:
    """Opens one DuckDB connection per session; target.dsn is a database path.

    File databases are opened read-only by default so a missing file is an
    unreachable target instead of a newly created empty database.
    """

    def __init__(self, read_only: bool = True, fetch_size: int = 1000):
        self.read_only = read_only
        self.fetch_size = fetch_size

    def _connect(self, dsn: str) -> duckdb.DuckDBPyConnection:
        if dsn == MEMORY_DSN:
            return duckdb.connect(MEMORY_DSN)
        return duckdb.connect(dsn, read_only=self.read_only)

    async def open(self, target: TargetDescriptor) -> DuckDBSession:
        con = await asyncio.to_thread(self._connect, target.dsn)
        logger.debug("opened duckdb session target=%s dsn=%s", target.name, target.dsn)
        return DuckDBSession(con, fetch_size=self.fetch_size)
