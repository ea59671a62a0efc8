"""Retry policy shared by every call site that retries."""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, ClassVar, Tuple, Type, TypeVar

from ..errors import NetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 1
    base_delay: float = 0.5
    max_delay: float = 8.0
    jitter: float = 0.25
    retry_on: Tuple[Type[BaseException], ...] = (NetworkError,)

    CATALOG: ClassVar["RetryPolicy"]
    ARTIFACT: ClassVar["RetryPolicy"]
    PROCESSOR: ClassVar["RetryPolicy"]

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based)."""
        delay = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        return delay + random.uniform(0, self.jitter * delay)

    async def run(self, func: Callable[[], Awaitable[T]], description: str = "") -> T:
        attempt = 1
        while True:
            try:
                return await func()
            except self.retry_on as e:
                if attempt >= self.max_attempts:
                    raise
                delay = self.delay_for(attempt)
                logger.warning("%s failed (%s), retrying in %.1fs [%d/%d]",
                               description or "operation", e, delay, attempt, self.max_attempts)
                await asyncio.sleep(delay)
                attempt += 1


# Catalog and descriptor lookups are retried; artifact downloads and processor
# steps fail straight to the coordinator.
RetryPolicy.CATALOG = RetryPolicy(max_attempts=3, base_delay=0.5)
RetryPolicy.ARTIFACT = RetryPolicy(max_attempts=1)
RetryPolicy.PROCESSOR = RetryPolicy(max_attempts=1)
