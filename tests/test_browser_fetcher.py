import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from shieldfetch.browser_fetcher import BrowserFetcher
from shieldfetch.errors import BrowserLaunchError, BrowserNavigationError
from shieldfetch.options import BrowserOptions, FetchOptions, Viewport
from shieldfetch.pool import SessionPool
from shieldfetch.settings import CrawlerConfig

from fakes import CHALLENGE_HTML, PLAIN_HTML, FakeLauncher


def make_fetcher(launcher, **overrides):
    cfg = CrawlerConfig(**overrides)
    return BrowserFetcher(SessionPool(cfg, launcher=launcher), cfg)


@pytest.mark.asyncio
async def test_renders_page_and_closes_it():
    launcher = FakeLauncher()
    fetcher = make_fetcher(launcher)

    result = await fetcher.fetch("https://good.example/a", FetchOptions(), domain="good.example")

    assert result.success
    assert result.used_browser
    assert result.status == 200
    assert result.html == PLAIN_HTML
    assert result.url == "https://good.example/a"
    assert result.content_type.startswith("text/html")
    page = launcher.launched[0].pages[0]
    assert page.closed
    assert "User-Agent" in page.extra_headers


@pytest.mark.asyncio
async def test_viewport_and_headers_are_applied():
    launcher = FakeLauncher()
    fetcher = make_fetcher(launcher)
    options = FetchOptions(
        additional_headers={"X-Trace": "abc"},
        browser_options=BrowserOptions(viewport=Viewport(width=800, height=600)),
    )

    await fetcher.fetch("https://good.example/a", options)

    page = launcher.launched[0].pages[0]
    assert page.viewport == {"width": 800, "height": 600}
    assert page.extra_headers["X-Trace"] == "abc"


@pytest.mark.asyncio
async def test_waits_out_checking_your_browser_interstitial():
    launcher = FakeLauncher(responder=lambda url: (503, CHALLENGE_HTML), challenge_clears=True)
    fetcher = make_fetcher(launcher)

    result = await fetcher.fetch("https://blocked.example/a", FetchOptions())

    page = launcher.launched[0].pages[0]
    assert page.waited_for_challenge
    assert result.success
    assert result.html == PLAIN_HTML


@pytest.mark.asyncio
async def test_waits_for_interstitial_after_long_inline_script():
    html = (
        "<html><head><script>" + "x" * 20_000 + "</script></head>"
        "<body>Checking your browser before accessing</body></html>"
    )
    launcher = FakeLauncher(responder=lambda url: (200, html), challenge_clears=True)
    fetcher = make_fetcher(launcher)

    result = await fetcher.fetch("https://blocked.example/a", FetchOptions())

    assert launcher.launched[0].pages[0].waited_for_challenge
    assert result.html == PLAIN_HTML


@pytest.mark.asyncio
async def test_unresolved_challenge_proceeds_with_what_rendered():
    launcher = FakeLauncher(responder=lambda url: (503, CHALLENGE_HTML), challenge_clears=False)
    fetcher = make_fetcher(launcher)

    result = await fetcher.fetch("https://blocked.example/a", FetchOptions())

    assert result.success
    assert result.html == CHALLENGE_HTML


@pytest.mark.asyncio
async def test_marker_without_interstitial_does_not_wait():
    html = "<html><body>Served by cloudflare</body></html>"
    launcher = FakeLauncher(responder=lambda url: (200, html))
    fetcher = make_fetcher(launcher)

    result = await fetcher.fetch("https://cdn.example/", FetchOptions())

    assert result.success
    assert not launcher.launched[0].pages[0].waited_for_challenge


@pytest.mark.asyncio
async def test_missing_selector_is_soft_fail(caplog):
    launcher = FakeLauncher()
    fetcher = make_fetcher(launcher)

    result = await fetcher.fetch("https://good.example/a", FetchOptions(wait_for_selector="#never-there"))

    assert result.success
    assert "not found, proceeding anyway" in caplog.text


@pytest.mark.asyncio
async def test_navigation_timeout_becomes_navigation_error_and_page_closes():
    launcher = FakeLauncher(responder=lambda url: PlaywrightTimeoutError("Timeout 60000ms exceeded."))
    fetcher = make_fetcher(launcher)

    with pytest.raises(BrowserNavigationError, match="timed out"):
        await fetcher.fetch("https://slow.example/", FetchOptions())

    assert launcher.launched[0].pages[0].closed


@pytest.mark.asyncio
async def test_crash_and_missing_response_become_navigation_errors():
    launcher = FakeLauncher(responder=lambda url: PlaywrightError("Target crashed"))
    fetcher = make_fetcher(launcher)
    with pytest.raises(BrowserNavigationError, match="Target crashed"):
        await fetcher.fetch("https://crash.example/", FetchOptions())

    launcher = FakeLauncher(responder=lambda url: None)
    fetcher = make_fetcher(launcher)
    with pytest.raises(BrowserNavigationError, match="No response received"):
        await fetcher.fetch("https://empty.example/", FetchOptions())


@pytest.mark.asyncio
async def test_launch_failure_propagates():
    fetcher = make_fetcher(FakeLauncher(fail_times=1))

    with pytest.raises(BrowserLaunchError):
        await fetcher.fetch("https://good.example/a", FetchOptions())
