import asyncio
import logging
import random
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from .errors import NetworkError

logger = logging.getLogger(__name__)


def jitter(min_s: float = 1.0, max_s: float = 3.0) -> float:
    """Random pre-request delay in seconds, independent of pacing state."""
    return random.uniform(min_s, max_s)


async def acquire_within(lock: asyncio.Lock, timeout: float) -> bool:
    """
    Acquire lock within timeout seconds. Returns False on timeout.

    The lock is never left held on a False return or on cancellation, even
    when the grant lands in the same loop iteration as the deadline.
    """
    waiter = asyncio.ensure_future(lock.acquire())
    try:
        done, _ = await asyncio.wait({waiter}, timeout=timeout)
    except asyncio.CancelledError:
        if waiter.done() and not waiter.cancelled():
            lock.release()
        else:
            waiter.cancel()
        raise
    if done:
        return True
    waiter.cancel()
    return False


@dataclass
class DomainState:
    last_request: float | None = None
    gate: asyncio.Lock = field(default_factory=asyncio.Lock)


class DomainPacer:
    """
    Per-domain single-flight gate with minimum spacing.

    - Only one permit per domain is held at a time; others queue on the lock
    - A permit is granted no sooner than min_delay_s after the previous grant
    - The timestamp is taken at grant time, not when the request finishes
    - DomainState entries are created lazily and kept for the pacer's lifetime

    Waiting is unbounded unless wait_timeout_s is set, in which case a waiter
    that cannot get the gate in time fails with NetworkError.
    """

    def __init__(
        self,
        min_delay_s: float = 1.0,
        jitter_range: tuple[float, float] = (1.0, 3.0),
        wait_timeout_s: float | None = None,
        clock=time.monotonic,
    ):
        self.min_delay_s = min_delay_s
        self.jitter_range = jitter_range
        self.wait_timeout_s = wait_timeout_s
        self._clock = clock
        self._domains: dict[str, DomainState] = {}

    def _state(self, domain: str) -> DomainState:
        state = self._domains.get(domain)
        if state is None:
            state = self._domains[domain] = DomainState()
        return state

    @property
    def domains(self) -> list[str]:
        return list(self._domains)

    def last_request(self, domain: str) -> float | None:
        state = self._domains.get(domain.lower())
        return state.last_request if state else None

    @asynccontextmanager
    async def acquire(self, domain: str):
        state = self._state(domain.lower())

        if self.wait_timeout_s is None:
            await state.gate.acquire()
        else:
            if not await acquire_within(state.gate, self.wait_timeout_s):
                raise NetworkError(
                    f"pacer wait timed out after {self.wait_timeout_s}s for {domain}",
                    retryable=True,
                )

        try:
            if state.last_request is not None:
                since_last = self._clock() - state.last_request
            else:
                since_last = self.min_delay_s
            if since_last < self.min_delay_s:
                wait = self.min_delay_s - since_last
                logger.debug("Pacing %s for %.3fs", domain, wait)
                await asyncio.sleep(wait)
            state.last_request = self._clock()
            yield
        finally:
            state.gate.release()

    async def sleep_jitter(self) -> float:
        delay = jitter(*self.jitter_range)
        await asyncio.sleep(delay)
        return delay
