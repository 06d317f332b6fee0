"""Tests for URL helpers."""

import pytest

from siteaudit.utils.urls import (
    canonical_url,
    host_of,
    is_http_url,
    is_same_origin,
    normalize_url,
    resolve_url,
    strip_www,
)


class TestIsHttpUrl:

    @pytest.mark.parametrize("url", [
        "http://example.com",
        "https://example.com/path?q=1",
        "  https://example.com  ",
    ])
    def test_valid(self, url):
        assert is_http_url(url)

    @pytest.mark.parametrize("url", [
        "",
        "   ",
        "example.com",
        "ftp://example.com",
        "javascript:alert(1)",
        "http://",
        None,
        42,
    ])
    def test_invalid(self, url):
        assert not is_http_url(url)


class TestNormalizeUrl:

    def test_lowercases_scheme_and_host(self):
        assert normalize_url("HTTPS://Example.COM/Path") == "https://example.com/Path"

    def test_drops_fragment_and_trailing_slash(self):
        assert normalize_url("https://example.com/a/#top") == "https://example.com/a"

    def test_root_keeps_slash(self):
        assert normalize_url("https://example.com") == "https://example.com/"

    def test_drops_default_port(self):
        assert normalize_url("https://example.com:443/x") == "https://example.com/x"
        assert normalize_url("http://example.com:8080/x") == "http://example.com:8080/x"

    def test_keeps_query(self):
        assert normalize_url("https://example.com/s?q=1") == "https://example.com/s?q=1"


class TestCanonicalUrl:

    def test_case_and_default_port_variants_match(self):
        assert canonical_url("HTTPS://Example.com:443/a") == canonical_url("https://example.com/a")
        assert canonical_url("http://EXAMPLE.com:80/") == "http://example.com/"

    def test_keeps_path_case_and_trailing_slash(self):
        assert canonical_url("https://example.com/A/") == "https://example.com/A/"
        assert canonical_url("https://example.com/a") != canonical_url("https://example.com/a/")

    def test_drops_fragment_keeps_query(self):
        assert canonical_url("https://example.com/s?q=1#x") == "https://example.com/s?q=1"

    def test_non_default_port_kept(self):
        assert canonical_url("https://example.com:8443/") == "https://example.com:8443/"


class TestOrigins:

    def test_strip_www(self):
        assert strip_www("WWW.Example.com") == "example.com"
        assert strip_www("example.com") == "example.com"

    def test_host_of(self):
        assert host_of("https://Sub.Example.com:8443/a") == "sub.example.com"

    def test_same_origin_ignores_www(self):
        assert is_same_origin("https://www.example.com/a", "https://example.com/")
        assert not is_same_origin("https://blog.example.com/", "https://example.com/")


class TestResolveUrl:

    def test_relative(self):
        assert resolve_url("/b", "https://example.com/a/") == "https://example.com/b"
        assert resolve_url("c", "https://example.com/a/") == "https://example.com/a/c"

    def test_absolute(self):
        assert resolve_url("https://other.com/x", "https://example.com/") == "https://other.com/x"

    @pytest.mark.parametrize("reference", ["", "   ", "mailto:a@example.com", "javascript:void(0)", "tel:123"])
    def test_unusable_references(self, reference):
        assert resolve_url(reference, "https://example.com/") is None
