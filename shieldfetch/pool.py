import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol

from playwright.async_api import async_playwright
from playwright_stealth import Stealth

from .errors import BrowserLaunchError
from .options import BrowserOptions
from .settings import CrawlerConfig

logger = logging.getLogger(__name__)


def merge_launch_args(baseline: tuple[str, ...], extra: tuple[str, ...]) -> list[str]:
    """Baseline hardening flags first, then caller flags not already present."""
    merged = list(baseline)
    for arg in extra:
        if arg not in merged:
            merged.append(arg)
    return merged


class BrowserHandle:
    """A launched browser plus the single stealth context pages are opened in."""

    def __init__(self, browser, context):
        self.browser = browser
        self.context = context

    async def new_page(self):
        return await self.context.new_page()

    def is_connected(self) -> bool:
        return self.browser.is_connected()

    async def close(self) -> None:
        try:
            await self.context.close()
        finally:
            await self.browser.close()


class SessionLauncher(Protocol):
    async def launch(self, options: BrowserOptions) -> Any: ...

    async def stop(self) -> None: ...


class PlaywrightLauncher:
    """
    Launches Chromium through Playwright with playwright-stealth evasions
    applied to the session's context.

    One Playwright driver is started lazily and shared by every session.
    """

    def __init__(self, config: CrawlerConfig):
        self.config = config
        self._playwright = None
        self._start_lock = asyncio.Lock()
        self._stealth = Stealth()

    async def _driver(self):
        async with self._start_lock:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
            return self._playwright

    async def launch(self, options: BrowserOptions) -> BrowserHandle:
        playwright = await self._driver()

        headless = self.config.browser_headless if options.headless is None else options.headless
        args = merge_launch_args(self.config.browser_args, options.launch_args)
        if options.viewport:
            viewport = {"width": options.viewport.width, "height": options.viewport.height}
        else:
            viewport = {
                "width": self.config.browser_viewport_width,
                "height": self.config.browser_viewport_height,
            }

        browser = await playwright.chromium.launch(headless=headless, args=args)
        try:
            context = await browser.new_context(
                viewport=viewport,
                ignore_https_errors=True,
                locale="en-US",
            )
            await self._stealth.apply_stealth_async(context)
        except Exception:
            await browser.close()
            raise

        logger.info("Launched browser session (headless=%s, viewport=%s)", headless, viewport)
        return BrowserHandle(browser, context)

    async def stop(self) -> None:
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None


@dataclass
class Session:
    fingerprint: str
    handle: Any
    created_at: float
    last_used: float

    async def new_page(self):
        return await self.handle.new_page()

    def is_connected(self) -> bool:
        return self.handle.is_connected()

    async def close(self) -> None:
        await self.handle.close()


class SessionPool:
    """
    Capacity-bounded pool of reusable browser sessions.

    - Sessions are keyed by the canonical BrowserOptions fingerprint, with
      headless resolved against the config default first
    - At capacity, the least-recently-used session is closed before a new launch
    - A background sweep closes sessions idle longer than idle_timeout_s
    - Every lookup / insert / evict runs under one lock, launches included,
      so concurrent get() calls never double-evict or double-launch
    """

    def __init__(
        self,
        config: CrawlerConfig,
        launcher: SessionLauncher | None = None,
        clock=time.monotonic,
    ):
        self.capacity = config.pool_capacity
        self.idle_timeout_s = config.idle_timeout_s
        self.sweep_interval_s = config.sweep_interval_s
        self.drain_timeout_s = config.drain_timeout_s
        self.default_headless = config.browser_headless
        self._launcher = launcher or PlaywrightLauncher(config)
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()
        self._sweeper: asyncio.Task | None = None
        self._closed = False

    @property
    def size(self) -> int:
        return len(self._sessions)

    @property
    def fingerprints(self) -> list[str]:
        return list(self._sessions)

    def start(self) -> None:
        """Start the idle sweep. Must be called from a running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._closed = False
            self._sweeper = asyncio.create_task(self._sweep_loop(), name="session-pool-sweep")

    async def get(self, options: BrowserOptions | None = None) -> Session:
        options = options or BrowserOptions()
        if options.headless is None:
            options = options.model_copy(update={"headless": self.default_headless})
        key = options.fingerprint()

        async with self._lock:
            if self._closed:
                raise BrowserLaunchError("Session pool has been drained")

            session = self._sessions.get(key)
            if session is not None:
                if session.is_connected():
                    session.last_used = self._clock()
                    return session
                logger.warning("Pooled browser session disconnected, relaunching")
                del self._sessions[key]
                await self._close_quietly(session)

            if len(self._sessions) >= self.capacity:
                await self._evict_lru()

            try:
                handle = await self._launcher.launch(options)
            except BrowserLaunchError:
                raise
            except Exception as e:
                raise BrowserLaunchError(f"Failed to launch browser: {e}") from e

            now = self._clock()
            session = Session(fingerprint=key, handle=handle, created_at=now, last_used=now)
            self._sessions[key] = session
            logger.debug("Pool size %d/%d after launch", len(self._sessions), self.capacity)
            return session

    async def _evict_lru(self) -> None:
        key, session = min(self._sessions.items(), key=lambda item: item[1].last_used)
        del self._sessions[key]
        logger.info("Pool at capacity (%d), evicting least-recently-used session", self.capacity)
        await self._close_quietly(session)

    async def sweep(self, now: float | None = None) -> int:
        """Close sessions idle longer than idle_timeout_s. Returns how many were closed."""
        async with self._lock:
            now = self._clock() if now is None else now
            stale = [
                key for key, session in self._sessions.items()
                if now - session.last_used > self.idle_timeout_s
            ]
            for key in stale:
                session = self._sessions.pop(key)
                await self._close_quietly(session)

        if stale:
            logger.info("Idle sweep closed %d session(s)", len(stale))
        return len(stale)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_s)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Idle sweep failed")

    async def _close_quietly(self, session: Session) -> None:
        try:
            await session.close()
        except Exception as e:
            logger.warning("Error closing browser session: %s", e)

    async def drain_all(self) -> None:
        """Close every session and stop the sweep. Safe to call more than once."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None

        async with self._lock:
            already_closed = self._closed
            self._closed = True
            sessions = list(self._sessions.values())
            self._sessions.clear()

            if sessions:
                try:
                    await asyncio.wait_for(
                        asyncio.gather(*(self._close_quietly(s) for s in sessions)),
                        self.drain_timeout_s,
                    )
                except asyncio.TimeoutError:
                    logger.error(
                        "Timed out after %.1fs closing %d browser session(s)",
                        self.drain_timeout_s, len(sessions),
                    )
                else:
                    logger.info("Drained %d browser session(s)", len(sessions))

            if not already_closed:
                try:
                    await self._launcher.stop()
                except Exception as e:
                    logger.warning("Error stopping browser driver: %s", e)
