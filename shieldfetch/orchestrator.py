"""
Per-URL fetch state machine.

    INIT -> PACE_WAIT -> DIRECT_FETCH -> SUCCESS
                                      -> BLOCKED / FAILED -> BROWSER_FETCH (if allowed)
    BROWSER_FETCH -> SUCCESS | BROWSER_FAILED -> RETRY (bounded) -> TERMINAL

Every attempt, direct or browser, optionally sleeps a jitter delay and then
holds the domain's pacer permit for the whole network / browser action.
fetch() always returns a FetchResult; only task cancellation escapes.
"""

import logging
import time
from dataclasses import replace
from typing import Awaitable, Callable

from .errors import FetchError, InternalError, NetworkError, ValidationError
from .options import FetchOptions
from .pacer import DomainPacer
from .policy import should_fallback, starts_in_browser
from .results import FetchResult
from .retry import RetryPolicy
from .settings import CrawlerConfig
from .utils import validate_url

logger = logging.getLogger(__name__)


class FetchOrchestrator:

    def __init__(self, config: CrawlerConfig, pacer: DomainPacer, http_fetcher, browser_fetcher):
        self.config = config
        self.pacer = pacer
        self.http_fetcher = http_fetcher
        self.browser_fetcher = browser_fetcher
        self.direct_retry = RetryPolicy(
            max_retries=config.direct_max_retries,
            base_delay_s=config.direct_retry_delay_s,
        )

    def browser_retry(self, options: FetchOptions) -> RetryPolicy:
        budget = options.max_retries if options.max_retries is not None else self.config.browser_max_retries
        return RetryPolicy(max_retries=budget, base_delay_s=self.config.browser_retry_delay_s)

    async def fetch(self, url: str, options: FetchOptions | None = None) -> FetchResult:
        options = options or FetchOptions()
        t0 = time.perf_counter()

        try:
            domain = validate_url(url)
        except ValidationError as e:
            return FetchResult.failure(url, e, elapsed_s=time.perf_counter() - t0)

        try:
            return await self._run(url, domain, options, t0)
        except Exception as e:
            logger.exception("Unexpected failure fetching %s", url)
            return FetchResult.failure(
                url,
                InternalError(f"{type(e).__name__}: {e}"),
                domain=domain,
                elapsed_s=time.perf_counter() - t0,
            )

    async def _run(self, url: str, domain: str, options: FetchOptions, t0: float) -> FetchResult:
        mode = options.use_browser

        if starts_in_browser(url, mode, self.config):
            logger.debug("Routing %s straight to browser (mode=%s)", url, mode.value)
            return await self._browser_path(url, domain, options, t0)

        result, error, retries = await self._attempts(
            self.direct_retry,
            lambda: self._paced(domain, options, lambda: self.http_fetcher.fetch(url, options, domain)),
            retry_on=lambda e: isinstance(e, NetworkError) and e.retryable,
            url=url,
            path="direct",
        )
        if result is not None:
            return self._finish(result, retries, t0)

        if not should_fallback(error, mode, self.config):
            return FetchResult.failure(
                url, error, domain=domain, retry_count=retries, elapsed_s=time.perf_counter() - t0,
            )

        logger.warning("Direct fetch of %s failed (%s: %s), falling back to browser", url, error.kind.value, error)
        return await self._browser_path(url, domain, options, t0)

    async def _browser_path(self, url: str, domain: str, options: FetchOptions, t0: float) -> FetchResult:
        policy = self.browser_retry(options)
        result, error, retries = await self._attempts(
            policy,
            lambda: self._paced(domain, options, lambda: self.browser_fetcher.fetch(url, options, domain)),
            retry_on=lambda e: not isinstance(e, ValidationError),
            url=url,
            path="browser",
        )
        if result is not None:
            return self._finish(result, retries, t0)

        return FetchResult.failure(
            url,
            error,
            used_browser=True,
            domain=domain,
            retry_count=retries,
            elapsed_s=time.perf_counter() - t0,
            message=f"Browser fetch failed after {retries + 1} attempt(s): {error}",
        )

    async def _paced(self, domain: str, options: FetchOptions, action: Callable[[], Awaitable[FetchResult]]) -> FetchResult:
        if options.random_delay:
            await self.pacer.sleep_jitter()
        async with self.pacer.acquire(domain):
            return await action()

    async def _attempts(
        self,
        policy: RetryPolicy,
        attempt: Callable[[], Awaitable[FetchResult]],
        *,
        retry_on: Callable[[FetchError], bool],
        url: str,
        path: str,
    ) -> tuple[FetchResult | None, FetchError | None, int]:
        """Run attempt() under policy. Returns (result, last_error, retries_used)."""
        error = None
        for n in range(policy.max_attempts):
            if n:
                logger.info("Retrying %s fetch for %s (attempt %d/%d)", path, url, n + 1, policy.max_attempts)
                await policy.backoff(n)
            try:
                return await attempt(), None, n
            except FetchError as e:
                error = e
                if not retry_on(e):
                    return None, e, n
                logger.warning("%s fetch attempt %d failed for %s: %s", path.capitalize(), n + 1, url, e)
        return None, error, policy.max_attempts - 1

    @staticmethod
    def _finish(result: FetchResult, retries: int, t0: float) -> FetchResult:
        return replace(result, retry_count=retries, elapsed_s=time.perf_counter() - t0)
