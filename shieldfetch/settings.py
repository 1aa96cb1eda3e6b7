import logging
from pathlib import Path
from dataclasses import dataclass, fields
import yaml

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[1]

BASELINE_BROWSER_ARGS = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
    "--disable-background-timer-throttling",
    "--disable-renderer-backgrounding",
    "--disable-backgrounding-occluded-windows",
)

DEFAULT_CHALLENGE_MARKERS = (
    "checking your browser",
    "cloudflare",
    "cf-browser-verification",
    "cf-challenge",
    "ray id",
    "__cf_bm",
    "please wait while we check your browser",
)

DEFAULT_CHALLENGE_DOMAINS = (
    "discord.com",
    "reddit.com",
    "medium.com",
    "dev.to",
    "hashnode.com",
    "notion.so",
)


@dataclass
class CrawlerConfig:
    """
    Service-level configuration for the fetch core.

    Values can be overridden via crawler_config.yaml at the project root.
    Per-call knobs live in options.FetchOptions instead.
    """

    # Domain pacing
    min_delay_s: float = 1.0
    jitter_min_s: float = 1.0
    jitter_max_s: float = 3.0
    pacer_wait_timeout_s: float | None = None  # None = wait forever

    # Direct (HTTP) fetch
    default_timeout_s: float = 30.0
    max_redirects: int = 5
    max_response_bytes: int = 10 * 1024 * 1024
    direct_max_retries: int = 0
    direct_retry_delay_s: float = 1.0
    rotate_user_agent: bool = True

    # Batch
    default_batch_concurrency: int = 3
    max_batch_size: int = 100

    # Session pool
    pool_capacity: int = 3
    idle_timeout_s: float = 300.0
    sweep_interval_s: float = 60.0
    drain_timeout_s: float = 30.0

    # Browser fetch
    browser_headless: bool = True
    browser_viewport_width: int = 1366
    browser_viewport_height: int = 768
    browser_args: tuple[str, ...] = BASELINE_BROWSER_ARGS
    browser_timeout_s: float = 60.0
    browser_max_retries: int = 2
    browser_retry_delay_s: float = 2.0
    challenge_wait_s: float = 30.0
    challenge_settle_s: float = 3.0
    selector_wait_s: float = 10.0

    # Block detection
    block_status_codes: tuple[int, ...] = (403, 503, 429)
    challenge_markers: tuple[str, ...] = DEFAULT_CHALLENGE_MARKERS
    challenge_scan_bytes: int | None = None  # None = whole body
    known_challenge_domains: tuple[str, ...] = DEFAULT_CHALLENGE_DOMAINS
    fallback_on_network_error: bool = True

    def __post_init__(self):
        if self.min_delay_s < 0:
            raise ValueError("min_delay_s must be >= 0")
        if not 0 <= self.jitter_min_s <= self.jitter_max_s:
            raise ValueError("jitter range must satisfy 0 <= jitter_min_s <= jitter_max_s")
        if self.pool_capacity < 1:
            raise ValueError("pool_capacity must be >= 1")
        if self.default_batch_concurrency < 1:
            raise ValueError("default_batch_concurrency must be >= 1")
        if self.browser_max_retries < 0 or self.direct_max_retries < 0:
            raise ValueError("retry budgets must be >= 0")
        if self.challenge_scan_bytes is not None and self.challenge_scan_bytes < 1:
            raise ValueError("challenge_scan_bytes must be >= 1 or None")


def load_crawler_config(path: str | Path | None = None) -> CrawlerConfig:
    """
    Load CrawlerConfig from YAML if present; otherwise use defaults.

    By default, looks for `crawler_config.yaml` at the project root.
    """

    if path is None:
        path = PROJECT_ROOT / "crawler_config.yaml"

    path = Path(path)

    if not path.exists():
        logger.debug("[config] YAML not found at %s, using defaults", path)
        return CrawlerConfig()

    raw = path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}

    if not isinstance(data, dict):
        logger.warning("[config] Expected mapping in %s, got %s, using defaults", path, type(data))
        return CrawlerConfig()

    allowed_keys = {f.name for f in fields(CrawlerConfig)}
    unknown = sorted(set(data) - allowed_keys)
    if unknown:
        logger.warning("[config] Ignoring unknown keys in %s: %s", path, ", ".join(unknown))

    # YAML gives lists; the config keeps tuples so it stays hashable
    filtered = {
        k: tuple(v) if isinstance(v, list) else v
        for k, v in data.items()
        if k in allowed_keys
    }

    return CrawlerConfig(**filtered)


DEFAULT_CRAWLER_CONFIG = load_crawler_config()
