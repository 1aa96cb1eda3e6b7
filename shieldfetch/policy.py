"""
Block-detection policy for direct and browser fetches.

A response counts as a challenge when its status is one of the configured
block codes, or when any configured marker appears in its body
(case-insensitive). Known challenge domains skip the direct attempt in AUTO
mode, and a failed direct attempt falls back to a browser session unless the
caller pinned the mode to NEVER.
"""

from urllib.parse import urlparse

from .errors import BlockedError, FetchError, NetworkError
from .options import BrowserMode
from .settings import CrawlerConfig

WAIT_MARKER = "checking your browser"


def is_block_status(status: int | None, config: CrawlerConfig) -> bool:
    return status is not None and status in config.block_status_codes


def find_challenge_marker(body: str, config: CrawlerConfig) -> str | None:
    """
    Return the first configured challenge marker present in the body.

    The whole body is searched unless challenge_scan_bytes caps it.
    """
    if not body:
        return None
    if config.challenge_scan_bytes is not None:
        body = body[: config.challenge_scan_bytes]
    lower = body.lower()
    for marker in config.challenge_markers:
        if marker.lower() in lower:
            return marker
    return None


def detect_block(status: int | None, body: str, config: CrawlerConfig) -> BlockedError | None:
    """
    Return a BlockedError describing the challenge, or None for a clean response.
    Either signal alone is enough: a block status, or a marker in the body.
    """
    marker = find_challenge_marker(body, config)
    if is_block_status(status, config):
        detail = f" (marker: {marker!r})" if marker else ""
        return BlockedError(f"Blocked with status {status}{detail}", status=status, marker=marker)
    if marker:
        return BlockedError(f"Challenge marker {marker!r} in response body", status=status, marker=marker)
    return None


def is_known_challenge_domain(url: str, config: CrawlerConfig) -> bool:
    hostname = (urlparse(url).hostname or "").lower()
    if not hostname:
        return False
    return any(
        hostname == domain or hostname.endswith(f".{domain}")
        for domain in config.known_challenge_domains
    )


def starts_in_browser(url: str, mode: BrowserMode, config: CrawlerConfig) -> bool:
    if mode is BrowserMode.ALWAYS:
        return True
    if mode is BrowserMode.NEVER:
        return False
    return is_known_challenge_domain(url, config)


def should_fallback(error: FetchError, mode: BrowserMode, config: CrawlerConfig) -> bool:
    if mode is BrowserMode.NEVER:
        return False

    if isinstance(error, BlockedError):
        return True

    if isinstance(error, NetworkError):
        return config.fallback_on_network_error

    return False
