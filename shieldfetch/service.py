import logging
from typing import Any, Mapping, Sequence

import aiohttp

from .batch import BatchExecutor, ProgressCallback
from .browser_fetcher import BrowserFetcher
from .errors import ValidationError
from .http_fetcher import HttpFetcher
from .options import FetchOptions
from .orchestrator import FetchOrchestrator
from .pacer import DomainPacer
from .pool import SessionLauncher, SessionPool
from .results import BatchResult, BatchSummary, FetchResult
from .settings import DEFAULT_CRAWLER_CONFIG, CrawlerConfig

logger = logging.getLogger(__name__)


def coerce_options(options: FetchOptions | Mapping[str, Any] | None) -> FetchOptions:
    if options is None:
        return FetchOptions()
    if isinstance(options, FetchOptions):
        return options
    return FetchOptions.model_validate(dict(options))


class CrawlerService:
    """
    Owns one pacer, one session pool, one aiohttp session and the
    orchestrator / batch executor wired on top of them.

    Usage:
        async with CrawlerService(config) as crawler:
            result = await crawler.fetch_one("https://example.com")

    Independent instances share no state, so tests can run several side by side.
    """

    def __init__(
        self,
        config: CrawlerConfig | None = None,
        *,
        launcher: SessionLauncher | None = None,
        http_session: aiohttp.ClientSession | None = None,
    ):
        self.config = config or DEFAULT_CRAWLER_CONFIG
        self.pacer = DomainPacer(
            min_delay_s=self.config.min_delay_s,
            jitter_range=(self.config.jitter_min_s, self.config.jitter_max_s),
            wait_timeout_s=self.config.pacer_wait_timeout_s,
        )
        self.pool = SessionPool(self.config, launcher=launcher)
        self._http_session = http_session
        self._owns_http_session = http_session is None
        self.orchestrator: FetchOrchestrator | None = None
        self.executor: BatchExecutor | None = None

    async def start(self) -> "CrawlerService":
        if self.orchestrator is not None:
            return self
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        self.pool.start()
        self.orchestrator = FetchOrchestrator(
            self.config,
            self.pacer,
            HttpFetcher(self._http_session, self.config),
            BrowserFetcher(self.pool, self.config),
        )
        self.executor = BatchExecutor(self.orchestrator)
        return self

    async def close(self) -> None:
        try:
            await self.pool.drain_all()
        finally:
            if self._owns_http_session and self._http_session is not None:
                await self._http_session.close()
                self._http_session = None
            self.orchestrator = None
            self.executor = None

    async def __aenter__(self) -> "CrawlerService":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _require_started(self) -> None:
        if self.orchestrator is None:
            raise RuntimeError("CrawlerService is not started; use 'async with' or call start()")

    async def fetch_one(
        self, url: str, options: FetchOptions | Mapping[str, Any] | None = None
    ) -> FetchResult:
        self._require_started()
        return await self.orchestrator.fetch(url, coerce_options(options))

    async def fetch_batch(
        self,
        urls: Sequence[str],
        options: FetchOptions | Mapping[str, Any] | None = None,
        *,
        concurrency: int | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> BatchResult:
        """
        Fetch every URL under one concurrency cap.

        Raises ValidationError for an empty or oversized list; individual URL
        problems come back as failed rows instead.
        """
        self._require_started()
        if not urls:
            raise ValidationError("URLs array cannot be empty")
        if len(urls) > self.config.max_batch_size:
            raise ValidationError(f"Batch size exceeds maximum limit of {self.config.max_batch_size}")

        fetch_options = coerce_options(options)
        concurrency = concurrency or self.config.default_batch_concurrency

        logger.info("Starting batch of %d URL(s) with concurrency %d", len(urls), concurrency)
        results = await self.executor.run(
            [(url, fetch_options) for url in urls],
            concurrency=concurrency,
            on_progress=on_progress,
        )
        summary = BatchSummary.from_results(results)
        logger.info(
            "Batch finished: %d ok, %d failed, %d via browser",
            summary.successful, summary.failed, summary.used_browser,
        )
        return BatchResult(results=results, summary=summary)
