"""URL helpers shared by the crawler and sitemap discovery."""

from typing import Optional
from urllib.parse import urlparse, urlunparse


def normalize_url(url: str) -> str:
    """Drop the fragment and a trailing slash so equivalent URLs compare equal.

    Examples:
        https://example.com/about/#team -> https://example.com/about
        https://example.com/ -> https://example.com
    """
    parsed = urlparse(url.strip())
    path = parsed.path
    if path.endswith("/"):
        path = path[:-1]
    return urlunparse((parsed.scheme, parsed.netloc, path, parsed.params, parsed.query, ""))


def hostname_of(url: str) -> Optional[str]:
    hostname = urlparse(url).hostname
    return hostname.lower() if hostname else None


def is_same_host(url: str, other: str) -> bool:
    """True if both URLs point at the same hostname."""
    host = hostname_of(url)
    return host is not None and host == hostname_of(other)


def is_http_url(url: str) -> bool:
    return urlparse(url).scheme in ("http", "https")
