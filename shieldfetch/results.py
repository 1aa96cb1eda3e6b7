from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

import pandas as pd

from .errors import ErrorKind, FetchError


@dataclass(frozen=True)
class FetchResult:
    """
    Normalized per-URL outcome shared by the direct and browser paths.

    Fields:
        requested_url : The URL the caller asked for.
        success       : True when a document was retrieved.
        url           : Final URL after redirects (requested URL on failure).
        status        : HTTP status code if one was observed.
        headers       : Response headers (read-only mapping).
        html          : Document body ("" on failure).
        content_type  : Content-Type header value, "" when absent.
        used_browser  : True when the result came from (or failed in) the browser path.
        error_kind    : ErrorKind tag on failure, None on success.
        error         : Human readable error message on failure.
        domain        : Hostname the request was paced under.
        retry_count   : Attempts beyond the first on the path that produced this row.
        elapsed_s     : Wall-clock seconds from call start to result.
    """
    requested_url: str
    success: bool
    url: str
    status: int | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    html: str = ""
    content_type: str = ""
    used_browser: bool = False
    error_kind: ErrorKind | None = None
    error: str | None = None
    domain: str | None = None
    retry_count: int = 0
    elapsed_s: float = 0.0

    def __post_init__(self):
        # frozen: freeze the header map as well
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))

    @classmethod
    def failure(
        cls,
        url: str,
        exc: FetchError,
        *,
        used_browser: bool = False,
        domain: str | None = None,
        retry_count: int = 0,
        elapsed_s: float = 0.0,
        message: str | None = None,
    ) -> "FetchResult":
        return cls(
            requested_url=url,
            success=False,
            url=url,
            status=exc.status,
            used_browser=used_browser,
            error_kind=exc.kind,
            error=message or str(exc),
            domain=domain,
            retry_count=retry_count,
            elapsed_s=elapsed_s,
        )

    def to_row(self) -> dict:
        """Flat dict for tabular export; the body is reduced to its length."""
        return {
            "requested_url": self.requested_url,
            "url": self.url,
            "success": self.success,
            "status": self.status,
            "content_type": self.content_type,
            "bytes_len": len(self.html.encode("utf-8", "ignore")),
            "used_browser": self.used_browser,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error": self.error,
            "domain": self.domain,
            "retry_count": self.retry_count,
            "elapsed_s": self.elapsed_s,
        }


@dataclass(frozen=True)
class BatchProgress:
    completed: int
    total: int
    percentage: float
    current_url: str


@dataclass(frozen=True)
class BatchSummary:
    total: int
    successful: int
    failed: int
    used_browser: int

    @classmethod
    def from_results(cls, results: list[FetchResult]) -> "BatchSummary":
        successful = sum(1 for r in results if r.success)
        return cls(
            total=len(results),
            successful=successful,
            failed=len(results) - successful,
            used_browser=sum(1 for r in results if r.used_browser),
        )


@dataclass(frozen=True)
class BatchResult:
    results: list[FetchResult]
    summary: BatchSummary

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([r.to_row() for r in self.results])
