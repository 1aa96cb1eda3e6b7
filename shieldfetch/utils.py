from urllib.parse import urlparse

from .errors import ValidationError


def validate_url(url: str) -> str:
    """
    Check that url is an absolute http(s) URL and return its lower-cased
    hostname, the unit of pacing.
    """
    if not isinstance(url, str) or not url.strip():
        raise ValidationError("URL is required")

    try:
        parsed = urlparse(url.strip())
        hostname = parsed.hostname
    except ValueError as e:
        raise ValidationError(f"Invalid URL format: {url!r} ({e})") from None

    if parsed.scheme not in ("http", "https") or not hostname:
        raise ValidationError(f"Invalid URL format: {url!r}")
    return hostname.lower()


def domain_of(url: str) -> str | None:
    try:
        return validate_url(url)
    except ValidationError:
        return None


# Error types for which it is reasonable to retry a direct HTTP request.
RETRYABLE_ERRORS = {
    "TimeoutError",
    "ServerTimeoutError",
    "ClientConnectorError",
    "ClientOSError",
    "ServerDisconnectedError",
    "ClientPayloadError",
}
