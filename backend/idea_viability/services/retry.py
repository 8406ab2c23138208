"""Retry policy value object and a generic async retry runner.

The policy says *how* to retry; ``run_with_retry`` applies it to any
zero-argument coroutine factory.  Configuration errors are never retried.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: delay = initial_delay * factor ** (attempt - 1), capped."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = 10.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay < 0 or self.factor < 1:
            raise ValueError("initial_delay must be >= 0 and factor >= 1")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given failed attempt (1-based)."""
        return min(self.initial_delay * (self.factor ** (attempt - 1)), self.max_delay)


# Presets for the external capabilities
OPENAI_RETRY_POLICY = RetryPolicy(max_attempts=2, initial_delay=0.5, factor=2.0, max_delay=1.5)
SEARCH_RETRY_POLICY = RetryPolicy(max_attempts=3, initial_delay=0.5, factor=2.0, max_delay=1.5)


async def run_with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await ``fn()`` until it succeeds or the policy's attempts are used up.

    The last exception is re-raised unchanged.  Exceptions outside
    ``retry_on`` (and any ConfigurationError) propagate immediately.
    """
    attempt = 1
    while True:
        try:
            return await fn()
        except ConfigurationError:
            raise
        except retry_on as exc:
            if attempt >= policy.max_attempts:
                logger.warning("Giving up after %d attempt(s): %s", attempt, exc)
                raise
            delay = policy.delay_for(attempt)
            if on_retry is not None:
                on_retry(attempt, exc)
            logger.info("Attempt %d failed (%s); retrying in %.2fs", attempt, exc, delay)
            await sleep(delay)
            attempt += 1
