import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Tuple, Type

from timetrack.exceptions import NetworkError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff: attempt n (from 0) waits min(max_delay, base_delay * 2**n),
    plus up to `jitter` seconds. `max_attempts` counts the first call.
    Only `retry_on` errors are retried, everything else propagates at once.
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.0
    retry_on: Tuple[Type[BaseException], ...] = (NetworkError,)

    def delay_for(self, attempt: int) -> float:
        delay = min(self.max_delay, self.base_delay * (2 ** attempt))
        if self.jitter:
            delay = min(self.max_delay, delay + random.uniform(0, self.jitter))
        return delay

    async def run(self, operation: Callable[[], Awaitable], sleep: Callable[[float], Awaitable] = asyncio.sleep):
        attempts = max(1, self.max_attempts)
        for attempt in range(attempts):
            try:
                return await operation()
            except self.retry_on as exc:
                if attempt + 1 >= attempts:
                    logger.warning(f"Giving up after {attempts} attempts: {exc}")
                    raise
                delay = self.delay_for(attempt)
                logger.warning(f"Attempt {attempt + 1}/{attempts} failed ({exc}), retrying in {delay:.1f}s")
                await sleep(delay)
