"""Bounded gate on concurrently open sessions, shared by every executor of a run."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator


class ConnectionThrottle:
    """Counting semaphore around session opens.

    One instance is shared by all executors that should be bounded together;
    independent instances give independently throttled engines in the same
    process. Permits are always released, whatever happens inside the block.

    The throttle outlives any single run: the underlying semaphore is created
    for the running event loop and rebuilt when a later run (a new
    `asyncio.run`) uses the throttle after every permit has been released.
    """

    def __init__(self, capacity: int = 10):
        if capacity < 1:
            raise ValueError("throttle capacity must be >= 1")
        self.capacity = capacity
        self._semaphore: asyncio.Semaphore | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._in_use = 0
        self._peak = 0

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def peak(self) -> int:
        """Highest number of permits held at once since construction."""
        return self._peak

    @property
    def available(self) -> int:
        return self.capacity - self._in_use

    def _gate(self) -> asyncio.Semaphore:
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._loop is not loop:
            if self._in_use:
                raise RuntimeError(
                    f"{self._in_use} throttle permit(s) still held by another event loop"
                )
            self._semaphore = asyncio.Semaphore(self.capacity)
            self._loop = loop
        return self._semaphore

    @contextlib.asynccontextmanager
    async def permit(self) -> AsyncIterator[None]:
        gate = self._gate()
        await gate.acquire()
        self._in_use += 1
        self._peak = max(self._peak, self._in_use)
        try:
            yield
        finally:
            self._in_use -= 1
            gate.release()

    def __repr__(self) -> str:
        return f"ConnectionThrottle(capacity={self.capacity}, in_use={self._in_use})"
