"""
Failure taxonomy for the fetch core.

These exceptions are raised inside the fetchers and the session pool and are
converted into failed FetchResult rows at the orchestrator boundary, so
callers never see them from fetch_one / fetch_batch (batch-level input
validation excepted).
"""

from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "ValidationError"
    NETWORK = "NetworkError"
    BLOCKED = "BlockedError"
    BROWSER_LAUNCH = "BrowserLaunchError"
    BROWSER_NAVIGATION = "BrowserNavigationError"
    INTERNAL = "InternalError"


class FetchError(Exception):
    kind = ErrorKind.INTERNAL

    def __init__(self, message: str, *, status: int | None = None):
        super().__init__(message)
        self.status = status


class ValidationError(FetchError):
    """Malformed input. Never retried, never paced."""
    kind = ErrorKind.VALIDATION


class NetworkError(FetchError):
    """Timeout, refused connection, or a non-2xx without a challenge signature."""
    kind = ErrorKind.NETWORK

    def __init__(self, message: str, *, status: int | None = None, retryable: bool = False):
        super().__init__(message, status=status)
        self.retryable = retryable


class BlockedError(FetchError):
    """The response matched an anti-bot challenge signature."""
    kind = ErrorKind.BLOCKED

    def __init__(self, message: str, *, status: int | None = None, marker: str | None = None):
        super().__init__(message, status=status)
        self.marker = marker


class BrowserLaunchError(FetchError):
    kind = ErrorKind.BROWSER_LAUNCH


class BrowserNavigationError(FetchError):
    kind = ErrorKind.BROWSER_NAVIGATION


class InternalError(FetchError):
    """Unexpected exception caught at the orchestrator boundary."""
    kind = ErrorKind.INTERNAL
