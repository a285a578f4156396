"""
Retry policy for DispatchDesk
Bounded exponential backoff passed explicitly to I/O-calling services
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Tuple, Type

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry a transient failure.

    max_retries counts retries after the first attempt, so the default
    policy makes at most three calls.
    """
    max_retries: int = 2
    initial_delay: float = 0.5
    backoff_multiplier: float = 2.0
    max_delay: float = 10.0
    jitter: float = 0.2

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, retry_number: int) -> float:
        """Delay in seconds before the given retry (1-based), jitter applied."""
        delay = min(self.initial_delay * (self.backoff_multiplier ** (retry_number - 1)), self.max_delay)
        if self.jitter:
            delay += delay * self.jitter * (random.random() - 0.5) * 2
        return max(delay, 0.0)

    async def run(
        self,
        fn: Callable[[], Awaitable[Any]],
        *,
        retryable: Tuple[Type[BaseException], ...] = (Exception,),
        label: str = "operation",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> Any:
        """Await fn(), retrying on retryable exceptions; re-raises the last one."""
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await fn()
            except retryable as exc:
                if attempt == self.max_attempts:
                    logger.error(f"{label} failed after {self.max_attempts} attempts: {exc}")
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    f"{label} attempt {attempt}/{self.max_attempts} failed ({exc}), retrying in {delay:.2f}s"
                )
                await sleep(delay)


NO_RETRY = RetryPolicy(max_retries=0)
