from .errors import (
    BlockedError,
    BrowserLaunchError,
    BrowserNavigationError,
    ErrorKind,
    FetchError,
    NetworkError,
    ValidationError,
)
from .options import BrowserMode, BrowserOptions, FetchOptions, Viewport
from .results import BatchProgress, BatchResult, BatchSummary, FetchResult
from .service import CrawlerService
from .settings import CrawlerConfig, load_crawler_config

__all__ = [
    "BatchProgress",
    "BatchResult",
    "BatchSummary",
    "BlockedError",
    "BrowserLaunchError",
    "BrowserMode",
    "BrowserNavigationError",
    "BrowserOptions",
    "CrawlerConfig",
    "CrawlerService",
    "ErrorKind",
    "FetchError",
    "FetchOptions",
    "FetchResult",
    "NetworkError",
    "ValidationError",
    "Viewport",
    "load_crawler_config",
]
