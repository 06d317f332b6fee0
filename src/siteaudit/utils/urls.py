"""URL normalization and origin helpers."""

from typing import Optional
from urllib.parse import urljoin, urlparse, urlunparse

HTTP_SCHEMES = ("http", "https")


def is_http_url(url: str) -> bool:
    """Return True for absolute http(s) URLs with a host."""
    if not isinstance(url, str) or not url.strip():
        return False
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False
    return parsed.scheme.lower() in HTTP_SCHEMES and bool(parsed.hostname)


def _canonical_netloc(scheme: str, netloc: str) -> str:
    netloc = netloc.lower()
    # Drop default ports
    if scheme == "http" and netloc.endswith(":80"):
        netloc = netloc[:-3]
    elif scheme == "https" and netloc.endswith(":443"):
        netloc = netloc[:-4]
    return netloc


def canonical_url(url: str) -> str:
    """Identity of a URL for repeat detection.

    Lowercases scheme and host, drops default ports and the fragment. Path
    and query are kept exactly, so ``/a`` and ``/a/`` stay distinct.
    """
    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    netloc = _canonical_netloc(scheme, parsed.netloc)
    return urlunparse((scheme, netloc, parsed.path or "/", parsed.params, parsed.query, ""))


def normalize_url(url: str) -> str:
    """Normalize URL by lowercasing scheme/host and removing fragments and trailing slashes.

    Args:
        url: URL to normalize

    Returns:
        Normalized URL
    """
    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    netloc = _canonical_netloc(scheme, parsed.netloc)
    path = parsed.path or "/"
    # Remove trailing slash (except for root)
    if len(path) > 1 and path.endswith('/'):
        path = path.rstrip('/') or '/'
    return urlunparse((scheme, netloc, path, "", parsed.query, ""))


def strip_www(hostname: str) -> str:
    hostname = (hostname or "").lower()
    return hostname[4:] if hostname.startswith("www.") else hostname


def host_of(url: str) -> str:
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def is_same_origin(url: str, seed_url: str) -> bool:
    """Same-origin for crawling purposes: hosts match once ``www.`` is ignored."""
    host = host_of(url)
    return bool(host) and strip_www(host) == strip_www(host_of(seed_url))


def resolve_url(reference: str, base_url: str) -> Optional[str]:
    """Resolve a (possibly relative) reference against a base URL.

    Returns None when the result is not a usable http(s) URL.
    """
    reference = (reference or "").strip()
    if not reference:
        return None
    try:
        absolute = urljoin(base_url, reference)
    except ValueError:
        return None
    return absolute if is_http_url(absolute) else None
