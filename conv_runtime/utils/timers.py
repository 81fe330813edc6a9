# conv_runtime/utils/timers.py
# -*- coding: utf-8 -*-
"""
conv-runtime — timing utilities
-------------------------------
Small helper for measuring how long upstream calls take.

Used by the turn relay to log generation latency per session.
"""

from __future__ import annotations

import logging
import time
from contextlib import ContextDecorator
from typing import Optional


class Stopwatch(ContextDecorator):
    """
    Simple stopwatch context manager.

    Example:
        with Stopwatch("generation s1", logger):
            await client.generate(...)

    Logs something like:
        generation s1 took 0.237 s

    The measured duration stays available as `elapsed` after the block.
    """

    def __init__(
        self,
        label: str,
        logger: Optional[logging.Logger] = None,
        level: int = logging.INFO,
    ) -> None:
        self.label = label
        self.logger = logger or logging.getLogger(__name__)
        self.level = level
        self.elapsed: float = 0.0
        self._start: float = 0.0

    def __enter__(self) -> "Stopwatch":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, exc_tb) -> None:  # type: ignore[override]
        self.elapsed = time.perf_counter() - self._start
        if exc_type is None:
            self.logger.log(self.level, "%s took %.3f s", self.label, self.elapsed)
        else:
            self.logger.log(
                self.level,
                "%s failed after %.3f s (%s)",
                self.label,
                self.elapsed,
                exc_type.__name__,
            )
