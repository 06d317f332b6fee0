"""Tests for guarded fetching and error classification."""

import httpx
import pytest

pytest_plugins = ('pytest_asyncio',)

from siteaudit.exceptions import (
    AnalysisTimeoutError,
    FetchFailedError,
    SSLFailureError,
    SSRFBlockedError,
    WebsiteUnreachableError,
)
from siteaudit.http_client import GuardedFetcher, classify_error, error_for_kind

BASE = "https://example.com"
REQUEST = httpx.Request("GET", BASE)


class TestClassifyError:

    @pytest.mark.parametrize("exc, kind", [
        (httpx.ConnectTimeout("timed out", request=REQUEST), "timeout"),
        (httpx.ReadTimeout("timed out", request=REQUEST), "timeout"),
        (httpx.ConnectError("[Errno -2] Name or service not known", request=REQUEST), "dns"),
        (httpx.ConnectError("[Errno 111] Connection refused", request=REQUEST), "connect"),
        (httpx.ConnectError("[SSL: CERTIFICATE_VERIFY_FAILED]", request=REQUEST), "tls"),
        (httpx.RemoteProtocolError("Server disconnected", request=REQUEST), "network"),
        (SSRFBlockedError("http://10.0.0.1/"), "blocked"),
    ])
    def test_kinds(self, exc, kind):
        assert classify_error(exc) == kind


class TestGuardedFetcher:

    @pytest.mark.asyncio
    async def test_requires_context_manager(self, guard):
        fetcher = GuardedFetcher(guard)

        with pytest.raises(RuntimeError):
            fetcher.client

    @pytest.mark.asyncio
    async def test_get_following_limits_redirects(self, site_transport, guard):
        routes = {
            "/1": httpx.Response(301, headers={"Location": "/2"}),
            "/2": httpx.Response(301, headers={"Location": "/3"}),
            "/3": httpx.Response(200, text="done"),
        }
        async with GuardedFetcher(guard, transport=site_transport(routes)) as fetcher:
            response, final_url = await fetcher.get_following(f"{BASE}/1", max_redirects=5)
            capped, capped_url = await fetcher.get_following(f"{BASE}/1", max_redirects=1)

        assert response.status_code == 200
        assert final_url == f"{BASE}/3"
        assert capped.status_code == 301
        assert capped_url == f"{BASE}/2"

    @pytest.mark.asyncio
    async def test_every_hop_is_guarded(self, site_transport, guard):
        routes = {"/": httpx.Response(302, headers={"Location": "http://192.168.1.1/"})}
        async with GuardedFetcher(guard, transport=site_transport(routes)) as fetcher:
            with pytest.raises(SSRFBlockedError):
                await fetcher.get_following(f"{BASE}/", max_redirects=3)

    @pytest.mark.asyncio
    async def test_fetch_text_raises_on_http_error(self, site_transport, guard):
        async with GuardedFetcher(guard, transport=site_transport({})) as fetcher:
            with pytest.raises(FetchFailedError):
                await fetcher.fetch_text(f"{BASE}/missing", max_redirects=3)

    @pytest.mark.asyncio
    async def test_fetch_text_wraps_transport_errors(self, guard):
        def handler(request):
            raise httpx.ConnectError("Connection refused", request=request)

        async with GuardedFetcher(guard, transport=httpx.MockTransport(handler)) as fetcher:
            with pytest.raises(FetchFailedError) as exc_info:
                await fetcher.fetch_text(f"{BASE}/", max_redirects=3)

        assert "Connection refused" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_fetch_text_lets_timeouts_through(self, guard):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        async with GuardedFetcher(guard, transport=httpx.MockTransport(handler)) as fetcher:
            with pytest.raises(httpx.ReadTimeout):
                await fetcher.fetch_text(f"{BASE}/", max_redirects=3)


class TestErrorForKind:

    @pytest.mark.parametrize("kind,error_type,status", [
        ("timeout", AnalysisTimeoutError, 408),
        ("dns", WebsiteUnreachableError, 404),
        ("connect", WebsiteUnreachableError, 404),
        ("tls", SSLFailureError, 502),
        ("network", FetchFailedError, 502),
        (None, FetchFailedError, 502),
    ])
    def test_kind_maps_to_api_error(self, kind, error_type, status):
        error = error_for_kind(kind, "boom", f"{BASE}/")

        assert isinstance(error, error_type)
        assert error.http_status == status

    def test_blocked_keeps_url(self):
        error = error_for_kind("blocked", "private address", f"{BASE}/")

        assert isinstance(error, SSRFBlockedError)
        assert error.url == f"{BASE}/"
