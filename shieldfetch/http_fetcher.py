import asyncio
import logging

import aiohttp

from .errors import NetworkError
from .headers import browser_headers
from .options import FetchOptions
from .policy import detect_block
from .results import FetchResult
from .settings import CrawlerConfig
from .utils import RETRYABLE_ERRORS

logger = logging.getLogger(__name__)


class HttpFetcher:
    """
    Lightweight direct fetcher built on aiohttp.

    - One GET per call, abortable by a total timeout
    - Redirects followed up to the configured cap
    - Rotated realistic headers, caller headers merged on top
    - Block detection on status code and body head

    Raises BlockedError / NetworkError; pacing and retries happen outside.
    """
    name = "http"

    def __init__(self, session: aiohttp.ClientSession, config: CrawlerConfig):
        self.session = session
        self.config = config

    async def fetch(self, url: str, options: FetchOptions, domain: str | None = None) -> FetchResult:
        timeout_s = options.timeout_s or self.config.default_timeout_s
        max_redirects = (
            options.max_redirects if options.max_redirects is not None else self.config.max_redirects
        )
        headers = browser_headers(options.additional_headers, rotate=self.config.rotate_user_agent)

        try:
            async with self.session.get(
                url,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=timeout_s),
                # aiohttp reads max_redirects=0 as "no limit"
                allow_redirects=options.follow_redirects and max_redirects > 0,
                max_redirects=max_redirects,
            ) as resp:
                body = await self._read_body(resp)
                html = self._decode(body, resp.charset)
                status = resp.status
                resp_headers = dict(resp.headers)
                final_url = str(resp.url)
        except aiohttp.TooManyRedirects:
            raise NetworkError(f"Exceeded {max_redirects} redirects") from None
        except asyncio.TimeoutError:
            raise NetworkError(f"Request timed out after {timeout_s}s", retryable=True) from None
        except aiohttp.ClientError as e:
            name = type(e).__name__
            raise NetworkError(f"{name}: {e}", retryable=name in RETRYABLE_ERRORS) from e

        blocked = detect_block(status, html, self.config)
        if blocked is not None:
            raise blocked

        if not 200 <= status < 300:
            raise NetworkError(f"HTTP error! status: {status}", status=status, retryable=status >= 500)

        return FetchResult(
            requested_url=url,
            success=True,
            url=final_url,
            status=status,
            headers=resp_headers,
            html=html,
            content_type=resp_headers.get("Content-Type", ""),
            used_browser=False,
            domain=domain,
        )

    async def _read_body(self, resp: aiohttp.ClientResponse) -> bytes:
        limit = self.config.max_response_bytes
        if resp.content_length is not None and resp.content_length > limit:
            raise NetworkError(f"Content too large: {resp.content_length} bytes > {limit} bytes", status=resp.status)

        chunks = []
        size = 0
        async for chunk in resp.content.iter_chunked(64 * 1024):
            size += len(chunk)
            if size > limit:
                raise NetworkError(f"Content too large: more than {limit} bytes", status=resp.status)
            chunks.append(chunk)
        return b"".join(chunks)

    @staticmethod
    def _decode(body: bytes, charset: str | None) -> str:
        try:
            return body.decode(charset or "utf-8", errors="replace")
        except LookupError:
            return body.decode("utf-8", errors="replace")
