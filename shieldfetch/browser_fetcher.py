import logging

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .errors import BrowserNavigationError
from .headers import browser_headers
from .options import FetchOptions
from .policy import WAIT_MARKER, find_challenge_marker
from .pool import SessionPool
from .results import FetchResult
from .settings import CrawlerConfig

logger = logging.getLogger(__name__)

_CHALLENGE_GONE_JS = (
    "marker => !document.body || !document.body.innerHTML.toLowerCase().includes(marker)"
)


class BrowserFetcher:
    """
    Heavyweight JS-enabled fetcher on top of a pooled Playwright session.

    - Borrows a session from the SessionPool (shared across calls and retries)
    - Opens a fresh page per attempt and always closes it
    - Applies rotated headers and an optional viewport override
    - Waits out "checking your browser" interstitials for a bounded time
    - Optional selector wait is soft-fail

    Raises BrowserLaunchError (from the pool) or BrowserNavigationError.
    """

    name = "browser"

    def __init__(self, pool: SessionPool, config: CrawlerConfig):
        self.pool = pool
        self.config = config

    async def fetch(self, url: str, options: FetchOptions, domain: str | None = None) -> FetchResult:
        session = await self.pool.get(options.browser_options)
        timeout_ms = (options.browser_timeout_s or self.config.browser_timeout_s) * 1000

        try:
            page = await session.new_page()
        except PlaywrightError as e:
            raise BrowserNavigationError(f"Could not open page: {e}") from e

        try:
            viewport = options.browser_options.viewport
            if viewport:
                await page.set_viewport_size({"width": viewport.width, "height": viewport.height})

            await page.set_extra_http_headers(
                browser_headers(options.additional_headers, rotate=self.config.rotate_user_agent)
            )
            page.set_default_timeout(timeout_ms)
            page.set_default_navigation_timeout(timeout_ms)

            wait_until = "networkidle" if options.wait_for_network_idle else "domcontentloaded"
            response = await page.goto(url, wait_until=wait_until, timeout=timeout_ms)
            if response is None:
                raise BrowserNavigationError("No response received")

            html = await page.content()
            marker = find_challenge_marker(html, self.config)
            if marker:
                logger.info("Challenge marker %r on %s after render", marker, url)
                if WAIT_MARKER in html.lower():
                    await self._wait_out_challenge(page, url)

            if options.wait_for_selector:
                await self._wait_for_selector(page, options.wait_for_selector)

            html = await page.content()
            headers = response.headers
            return FetchResult(
                requested_url=url,
                success=True,
                url=page.url,
                status=response.status,
                headers=headers,
                html=html,
                content_type=headers.get("content-type", ""),
                used_browser=True,
                domain=domain,
            )

        except PlaywrightTimeoutError as e:
            raise BrowserNavigationError(f"Navigation timed out after {timeout_ms / 1000:g}s: {e}") from e
        except PlaywrightError as e:
            raise BrowserNavigationError(f"Browser error: {e}") from e

        finally:
            try:
                await page.close()
            except Exception as e:
                logger.warning("Error closing page: %s", e)

    async def _wait_out_challenge(self, page, url: str) -> None:
        try:
            await page.wait_for_function(
                _CHALLENGE_GONE_JS,
                arg=WAIT_MARKER,
                timeout=self.config.challenge_wait_s * 1000,
            )
        except PlaywrightTimeoutError:
            logger.warning("Challenge on %s did not clear within %gs, proceeding anyway", url, self.config.challenge_wait_s)
            return

        # let the post-challenge page finish loading
        await page.wait_for_timeout(self.config.challenge_settle_s * 1000)

    async def _wait_for_selector(self, page, selector: str) -> None:
        try:
            await page.wait_for_selector(selector, timeout=self.config.selector_wait_s * 1000)
        except PlaywrightTimeoutError:
            logger.warning("Selector %s not found, proceeding anyway", selector)
