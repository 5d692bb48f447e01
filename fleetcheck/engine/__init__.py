"""
fleetcheck/engine — Check execution engine.

Single-target execution (executor), the shared session throttle, result
message formatting, and the multi-target fan-out (fleet). Every module
produces or consumes CheckResult records defined here.

Usage:
    from fleetcheck.engine import CheckResult
    from fleetcheck.engine.fleet import FleetOrchestrator
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

CONNECTION_CHECK_ID = "CONNECTION"
ERROR_CHECK_ID = "ERROR"
SYSTEM_SOURCE = "System"

# (completed, total, label)
ProgressSink = Callable[[int, int, str], None]
# (target name, completed, total, label)
FleetProgressSink = Callable[[str, int, int, str], None]


class CancellationToken(Protocol):
    """Anything with is_set(): asyncio.Event and threading.Event both qualify."""

    def is_set(self) -> bool: ...


class EngineClosedError(RuntimeError):
    """An executor was used after close()."""


class CheckRunCancelled(Exception):
    """Cancellation was observed at a batch boundary."""


@dataclass(frozen=True)
class CheckResult:
    check_id: str
    check_name: str
    category: str
    severity: str
    passed: bool
    actual_value: int
    message: str
    executed_at: datetime
    target: str
    expected_value: int = 0
    source: str = "Custom"

    @property
    def synthetic(self) -> bool:
        return self.source == SYSTEM_SOURCE

    def __str__(self) -> str:
        status = "PASS" if self.passed else "FAIL"
        return f"  [{status}] {self.check_name}: {self.message}"
