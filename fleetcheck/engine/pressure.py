"""Resource-pressure hints issued by executors between batches.

Hints are optional: the engine is correct with NullPressureHint.
"""

from __future__ import annotations

import gc
import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class PressureHint(Protocol):
    def suggest_cleanup(self) -> None: ...


class NullPressureHint:
    def suggest_cleanup(self) -> None:
        pass


class GcPressureHint:
    """Collect the young generations; cheap enough to call every few batches."""

    def __init__(self, generation: int = 1):
        self.generation = generation
        self.calls = 0

    def suggest_cleanup(self) -> None:
        self.calls += 1
        collected = gc.collect(self.generation)
        logger.debug("cleanup hint: gc generation=%d collected=%d", self.generation, collected)
