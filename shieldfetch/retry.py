import asyncio
import random
from dataclasses import dataclass


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry with a backoff function.

    retry index 1 is the first repeat; the delay before it is
    base_delay_s * multiplier ** (retry - 1) plus up to jitter_s of noise.
    multiplier=1.0 gives a fixed backoff.
    """
    max_retries: int = 0
    base_delay_s: float = 0.0
    multiplier: float = 1.0
    jitter_s: float = 0.0

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, retry: int) -> float:
        delay = self.base_delay_s * (self.multiplier ** max(retry - 1, 0))
        if self.jitter_s:
            delay += random.uniform(0, self.jitter_s)
        return delay

    async def backoff(self, retry: int) -> None:
        delay = self.delay_for(retry)
        if delay > 0:
            await asyncio.sleep(delay)
