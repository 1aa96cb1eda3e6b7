import asyncio
import inspect
import logging
import time
from typing import Awaitable, Callable, Sequence

from .errors import InternalError
from .options import FetchOptions
from .orchestrator import FetchOrchestrator
from .results import BatchProgress, FetchResult
from .utils import domain_of

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[BatchProgress], Awaitable[None] | None]


class BatchExecutor:
    """
    Bounded-concurrency fan-out over the orchestrator.

    - At most `concurrency` fetches in flight (asyncio.Semaphore)
    - results[i] always belongs to requests[i], whatever the completion order
    - on_progress fires once per finished request, in completion order
    - a failing request becomes a failed row; siblings are never cancelled
    """

    def __init__(self, orchestrator: FetchOrchestrator):
        self.orchestrator = orchestrator

    async def run(
        self,
        requests: Sequence[tuple[str, FetchOptions]],
        concurrency: int = 3,
        on_progress: ProgressCallback | None = None,
    ) -> list[FetchResult]:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")

        total = len(requests)
        results: list[FetchResult | None] = [None] * total
        semaphore = asyncio.Semaphore(concurrency)
        completed = 0

        async def worker(index: int, url: str, options: FetchOptions) -> None:
            nonlocal completed
            async with semaphore:
                t0 = time.perf_counter()
                try:
                    result = await self.orchestrator.fetch(url, options)
                except Exception as e:
                    # orchestrator.fetch already converts failures; keep the batch whole regardless
                    logger.exception("Batch item %d (%s) raised", index, url)
                    result = FetchResult.failure(
                        url,
                        InternalError(f"{type(e).__name__}: {e}"),
                        domain=domain_of(url),
                        elapsed_s=time.perf_counter() - t0,
                    )

            results[index] = result
            completed += 1
            if on_progress is not None:
                await self._report(on_progress, BatchProgress(
                    completed=completed,
                    total=total,
                    percentage=completed / total * 100,
                    current_url=url,
                ))

        await asyncio.gather(*(
            worker(index, url, options) for index, (url, options) in enumerate(requests)
        ))
        return results

    @staticmethod
    async def _report(callback: ProgressCallback, progress: BatchProgress) -> None:
        try:
            outcome = callback(progress)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception("Progress callback failed at %d/%d", progress.completed, progress.total)
