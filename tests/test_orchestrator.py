import asyncio

import pytest

from shieldfetch.browser_fetcher import BrowserFetcher
from shieldfetch.errors import (
    BlockedError,
    BrowserLaunchError,
    BrowserNavigationError,
    ErrorKind,
    NetworkError,
)
from shieldfetch.options import BrowserMode, FetchOptions
from shieldfetch.orchestrator import FetchOrchestrator
from shieldfetch.pacer import DomainPacer
from shieldfetch.pool import SessionPool
from shieldfetch.settings import CrawlerConfig

from fakes import CHALLENGE_HTML, FakeLauncher, ScriptedFetcher, ok_result

QUIET = FetchOptions(random_delay=False)


def make_config(**overrides):
    base = dict(
        min_delay_s=0,
        jitter_min_s=0,
        jitter_max_s=0,
        browser_retry_delay_s=0,
        direct_retry_delay_s=0,
    )
    base.update(overrides)
    return CrawlerConfig(**base)


def make_orchestrator(http=None, browser=None, **overrides):
    cfg = make_config(**overrides)
    pacer = DomainPacer(min_delay_s=cfg.min_delay_s, jitter_range=(cfg.jitter_min_s, cfg.jitter_max_s))
    http = http or ScriptedFetcher()
    browser = browser or ScriptedFetcher(used_browser=True)
    return FetchOrchestrator(cfg, pacer, http, browser), http, browser


@pytest.mark.asyncio
async def test_plain_page_uses_direct_path_only():
    orch, http, browser = make_orchestrator()

    result = await orch.fetch("https://good.example/a", QUIET)

    assert result.success is True
    assert result.used_browser is False
    assert http.calls == ["https://good.example/a"]
    assert browser.calls == []
    assert result.retry_count == 0
    assert result.elapsed_s >= 0


@pytest.mark.asyncio
async def test_blocked_direct_falls_back_to_browser():
    url = "https://blocked.example/a"
    http = ScriptedFetcher(script={url: [BlockedError("Blocked with status 503", status=503)]})
    orch, _, browser = make_orchestrator(http=http)

    result = await orch.fetch(url, QUIET)

    assert result.success is True
    assert result.used_browser is True
    assert browser.calls == [url]


@pytest.mark.asyncio
async def test_503_checking_your_browser_end_to_end_through_browser_fetcher():
    """Direct 503 + interstitial -> browser session renders the real page."""
    url = "https://blocked.example/a"
    cfg = make_config()
    http = ScriptedFetcher(script={url: [BlockedError("checking your browser", status=503)]})
    launcher = FakeLauncher(responder=lambda u: (503, CHALLENGE_HTML), challenge_clears=True)
    browser = BrowserFetcher(SessionPool(cfg, launcher=launcher), cfg)
    orch = FetchOrchestrator(cfg, DomainPacer(min_delay_s=0), http, browser)

    result = await orch.fetch(url, QUIET)

    assert result.success is True
    assert result.used_browser is True
    assert "checking your browser" not in result.html.lower()


@pytest.mark.asyncio
async def test_never_mode_does_not_fall_back_even_when_blocked():
    url = "https://blocked.example/a"
    http = ScriptedFetcher(script={url: [BlockedError("blocked", status=403)]})
    orch, _, browser = make_orchestrator(http=http)

    result = await orch.fetch(url, FetchOptions(random_delay=False, use_browser=BrowserMode.NEVER))

    assert result.success is False
    assert result.error_kind is ErrorKind.BLOCKED
    assert result.status == 403
    assert result.used_browser is False
    assert browser.calls == []


@pytest.mark.asyncio
async def test_always_mode_skips_direct():
    orch, http, browser = make_orchestrator()

    result = await orch.fetch("https://good.example/a", FetchOptions(random_delay=False, use_browser="always"))

    assert result.used_browser is True
    assert http.calls == []
    assert browser.calls == ["https://good.example/a"]


@pytest.mark.asyncio
async def test_auto_mode_sends_known_challenge_domains_to_browser():
    orch, http, browser = make_orchestrator()

    result = await orch.fetch("https://www.reddit.com/r/python", QUIET)

    assert result.used_browser is True
    assert http.calls == []


@pytest.mark.asyncio
async def test_network_error_falls_back_unless_disabled():
    url = "https://flaky.example/"
    http = ScriptedFetcher(script={url: [NetworkError("HTTP error! status: 404", status=404)]})
    orch, _, browser = make_orchestrator(http=http)
    assert (await orch.fetch(url, QUIET)).used_browser is True

    http = ScriptedFetcher(script={url: [NetworkError("HTTP error! status: 404", status=404)]})
    orch, _, browser = make_orchestrator(http=http, fallback_on_network_error=False)
    result = await orch.fetch(url, QUIET)
    assert result.success is False
    assert result.error_kind is ErrorKind.NETWORK
    assert browser.calls == []


@pytest.mark.asyncio
async def test_invalid_url_is_validation_error_without_touching_pacer_or_fetchers():
    orch, http, browser = make_orchestrator()

    for bad in ("not a url", "ftp://example.com/file", "https://", ""):
        result = await orch.fetch(bad, QUIET)
        assert result.success is False
        assert result.error_kind is ErrorKind.VALIDATION

    assert http.calls == [] and browser.calls == []
    assert orch.pacer.domains == []


@pytest.mark.asyncio
async def test_browser_retries_within_budget_then_succeeds():
    url = "https://retry.example/"
    browser = ScriptedFetcher(
        script={url: [BrowserNavigationError("timeout"), BrowserNavigationError("timeout"), ok_result(url, True)]},
    )
    orch, _, _ = make_orchestrator(browser=browser)

    result = await orch.fetch(url, FetchOptions(random_delay=False, use_browser="always"))

    assert result.success is True
    assert result.retry_count == 2
    assert len(browser.calls) == 3


@pytest.mark.asyncio
async def test_browser_failure_after_budget_is_tagged_result():
    url = "https://down.example/"
    browser = ScriptedFetcher(script={url: [BrowserLaunchError("Failed to launch browser: no chromium")]})
    orch, _, _ = make_orchestrator(browser=browser)

    result = await orch.fetch(url, FetchOptions(random_delay=False, use_browser="always", max_retries=1))

    assert result.success is False
    assert result.used_browser is True
    assert result.error_kind is ErrorKind.BROWSER_LAUNCH
    assert "after 2 attempt(s)" in result.error
    assert len(browser.calls) == 2


@pytest.mark.asyncio
async def test_browser_retries_reuse_the_pooled_session():
    url = "https://retry.example/"
    calls = {"n": 0}

    def responder(u):
        calls["n"] += 1
        if calls["n"] < 3:
            return BrowserNavigationError("page crashed")
        return (200, "<html>finally</html>")

    cfg = make_config()
    launcher = FakeLauncher(responder=responder)
    browser = BrowserFetcher(SessionPool(cfg, launcher=launcher), cfg)
    orch = FetchOrchestrator(cfg, DomainPacer(min_delay_s=0), ScriptedFetcher(), browser)

    result = await orch.fetch(url, FetchOptions(random_delay=False, use_browser="always"))

    assert result.success is True
    assert len(launcher.launched) == 1
    pages = launcher.launched[0].pages
    assert len(pages) == 3
    assert all(p.closed for p in pages)


@pytest.mark.asyncio
async def test_direct_retry_policy_repeats_only_retryable_errors():
    url = "https://flaky.example/"
    http = ScriptedFetcher(script={url: [NetworkError("timed out", retryable=True), ok_result(url)]})
    orch, _, browser = make_orchestrator(http=http, direct_max_retries=1)

    result = await orch.fetch(url, QUIET)

    assert result.success is True
    assert result.used_browser is False
    assert result.retry_count == 1
    assert browser.calls == []


@pytest.mark.asyncio
async def test_unexpected_exception_never_escapes():
    http = ScriptedFetcher(default=KeyError("surprise"))
    orch, _, _ = make_orchestrator(http=http)

    result = await orch.fetch("https://good.example/a", QUIET)

    assert result.success is False
    assert result.error_kind is ErrorKind.INTERNAL


@pytest.mark.asyncio
async def test_direct_and_browser_attempts_to_one_domain_never_overlap():
    url = "https://blocked.example/"
    shared = ScriptedFetcher(delay=0.02, used_browser=True)

    class Direct:
        async def fetch(self, u, options, domain=None):
            await shared.fetch(u, options, domain)
            raise BlockedError("blocked", status=503)

    cfg = make_config(min_delay_s=0.01)
    orch = FetchOrchestrator(cfg, DomainPacer(min_delay_s=0.01), Direct(), shared)

    results = await asyncio.gather(*(orch.fetch(f"{url}{i}", QUIET) for i in range(5)))

    assert all(r.used_browser for r in results)
    assert shared.max_active_by_domain["blocked.example"] == 1
    intervals = sorted((start, end) for _, start, end in shared.intervals)
    assert all(nxt[0] >= cur[1] for cur, nxt in zip(intervals, intervals[1:]))
