"""
Timing helpers for the research pipeline.

Branch, research and fusion steps log their latency in one standard
``[TIMING]`` format so a slow branch is easy to spot in the console.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

logger = logging.getLogger(__name__)


def log_timing(stage: str, action: str, duration_ms: Optional[float] = None) -> None:
    """Log a timing event in standard format."""
    if duration_ms is not None:
        line = f"[TIMING] {stage}: {action}: duration={duration_ms:.0f}ms"
    else:
        line = f"[TIMING] {stage}: {action}"
    print(line)
    logger.debug(line)


def elapsed_ms(start: float) -> float:
    """Milliseconds since a ``time.perf_counter()`` reading."""
    return (time.perf_counter() - start) * 1000


@asynccontextmanager
async def async_timer(stage: str, action: str = "OPERATION"):
    """Async context manager logging START / END of an awaited block."""
    log_timing(stage, f"{action} START")
    start = time.perf_counter()
    try:
        yield
    finally:
        log_timing(stage, f"{action} END", elapsed_ms(start))


class StepTimer:
    """
    Collects per-step durations for one pipeline run.

    Usage:
        timer = StepTimer("dispatch")
        async with timer.async_step("branches"):
            await gather_branches()
        timer.summary()
    """

    def __init__(self, stage: str):
        self.stage = stage
        self.steps: dict[str, float] = {}
        self.start_time = time.perf_counter()

    @asynccontextmanager
    async def async_step(self, step_name: str):
        start = time.perf_counter()
        try:
            yield
        finally:
            duration_ms = elapsed_ms(start)
            self.steps[step_name] = duration_ms
            log_timing(self.stage, step_name, duration_ms)

    def summary(self) -> float:
        total_ms = elapsed_ms(self.start_time)
        log_timing(self.stage, "TOTAL", total_ms)
        return total_ms
