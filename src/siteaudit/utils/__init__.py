"""URL helpers shared by the crawler, link checker and redirect resolver."""

from .urls import (
    is_http_url,
    canonical_url,
    normalize_url,
    strip_www,
    host_of,
    is_same_origin,
    resolve_url,
)

__all__ = [
    "is_http_url",
    "canonical_url",
    "normalize_url",
    "strip_www",
    "host_of",
    "is_same_origin",
    "resolve_url",
]
