"""Tests for the HTTP API."""

import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from siteaudit.api import clamp, create_app
from siteaudit.config import AuditConfig
from siteaudit.exceptions import CrawlFailedError
from siteaudit.infrastructure.metrics import MetricsCollector
from siteaudit.infrastructure.rate_limiter import RateLimitConfig, SlidingWindowRateLimiter
from siteaudit.models import (
    AnalysisMode,
    AnalysisReport,
    AnalysisResults,
    CrawledPage,
    TaskStatus,
)
from siteaudit.orchestrator import AnalysisOrchestrator
from siteaudit.redirect_resolver import RedirectChainResolver

BASE = "https://example.com"


class FakeOrchestrator:
    """Stands in for AnalysisOrchestrator; records calls and returns a canned report."""

    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def run(self, url, mode=AnalysisMode.FULL, timeout=None):
        self.calls.append((url, mode, timeout))
        if self.error is not None:
            raise self.error
        statuses = {name: TaskStatus.COMPLETE for name in (
            "crawl", "brokenLinks", "speed", "mobile", "validation", "schema", "architecture"
        )}
        if mode is AnalysisMode.FAST:
            statuses["speed"] = statuses["schema"] = TaskStatus.SKIPPED
        results = AnalysisResults(crawl={f"{url}": CrawledPage(url=url, http_status=200)})
        return AnalysisReport(
            seed_url=url, mode=mode, results=results, status_by_task=statuses, duration_ms=12.0
        )


def redirect_site(request: httpx.Request) -> httpx.Response:
    if request.url.host == "www.example.com" or request.url.scheme == "http":
        return httpx.Response(301, headers={"Location": f"{BASE}/"})
    if request.url.path == "/old":
        return httpx.Response(302, headers={"Location": f"{BASE}/new"})
    return httpx.Response(200, html="<p>ok</p>")


@pytest.fixture
def orchestrator():
    return FakeOrchestrator()


@pytest.fixture
def resolver_calls():
    return []


@pytest.fixture
def make_client(guard, orchestrator, resolver_calls):
    def build(max_requests=50, handler=redirect_site, orchestrator_override=None):
        transport = httpx.MockTransport(handler)

        def resolver_factory(**options):
            resolver_calls.append(options)
            return RedirectChainResolver(guard=guard, transport=transport, **options)

        app = create_app(
            config=AuditConfig(suspicious_domains=["evil.test"]),
            guard=guard,
            limiter=SlidingWindowRateLimiter(
                RateLimitConfig(window_seconds=60.0, max_requests=max_requests)
            ),
            metrics=MetricsCollector(),
            orchestrator_factory=lambda: orchestrator_override or orchestrator,
            resolver_factory=resolver_factory,
        )
        return TestClient(app)

    return build


class TestClamp:

    def test_defaults_and_bounds(self):
        assert clamp(None, 280_000, 30_000, 300_000) == 280_000
        assert clamp(0, 280_000, 30_000, 300_000) == 280_000
        assert clamp(1_000, 280_000, 30_000, 300_000) == 30_000
        assert clamp(999_999, 280_000, 30_000, 300_000) == 300_000
        assert clamp(60_000, 280_000, 30_000, 300_000) == 60_000


class TestAnalyzeEndpoint:
    """Tests for POST /analyze."""

    def test_success(self, make_client, orchestrator):
        client = make_client()

        response = client.post("/analyze", json={"url": BASE})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "completed"
        assert body["analyzedUrl"] == BASE
        assert body["reportId"] == response.headers["X-Report-Id"]
        assert body["result"]["statusByTask"]["crawl"] == "complete"
        assert body["result"]["summary"]["pagesCrawled"] == 1
        assert response.headers["Cache-Control"] == "no-store"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Rate-Limit-Limit"] == "50"
        assert response.headers["X-Rate-Limit-Remaining"] == "49"
        assert "X-Request-Id" in response.headers

    def test_fast_mode_and_timeout_clamp(self, make_client, orchestrator):
        client = make_client()

        response = client.post(
            "/analyze", json={"url": BASE, "options": {"mode": "fast", "timeout": 5}}
        )

        assert response.status_code == 200
        assert response.json()["result"]["statusByTask"]["speed"] == "skipped"
        url, mode, timeout = orchestrator.calls[0]
        assert mode is AnalysisMode.FAST
        assert timeout == 30.0

    def test_missing_url_is_invalid_payload(self, make_client):
        client = make_client()

        response = client.post("/analyze", json={})

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_PAYLOAD"

    def test_non_string_url_is_invalid_payload(self, make_client):
        response = make_client().post("/analyze", json={"url": 42})

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_PAYLOAD"

    @pytest.mark.parametrize("url", ["", "example.com", "ftp://example.com/"])
    def test_invalid_url(self, make_client, url):
        response = make_client().post("/analyze", json={"url": url})

        body = response.json()
        assert response.status_code == 400
        assert body["code"] == "INVALID_URL"
        assert body["suggestion"]
        assert body["reportId"] == response.headers["X-Report-Id"]

    def test_private_target_blocked(self, make_client, orchestrator):
        response = make_client().post("/analyze", json={"url": "http://127.0.0.1:8080/"})

        assert response.status_code == 403
        assert response.json()["code"] == "SSRF_BLOCKED"
        assert orchestrator.calls == []

    def test_crawl_failure(self, make_client):
        client = make_client(orchestrator_override=FakeOrchestrator(CrawlFailedError("crawl failed")))

        response = client.post("/analyze", json={"url": BASE})

        assert response.status_code == 502
        assert response.json()["code"] == "CRAWL_FAILED"

    def test_timeout(self, make_client):
        client = make_client(orchestrator_override=FakeOrchestrator(asyncio.TimeoutError()))

        response = client.post("/analyze", json={"url": BASE})

        assert response.status_code == 408
        assert response.json()["code"] == "TIMEOUT_ERROR"

    def test_unreachable_site(self, make_client, guard):
        def no_such_host(request):
            raise httpx.ConnectError("[Errno -2] Name or service not known", request=request)

        orchestrator = AnalysisOrchestrator(
            config=AuditConfig(), guard=guard, transport=httpx.MockTransport(no_such_host)
        )
        client = make_client(orchestrator_override=orchestrator)

        response = client.post("/analyze", json={"url": BASE})

        assert response.status_code == 404
        assert response.json()["code"] == "WEBSITE_UNREACHABLE"

    def test_seed_transport_failure(self, make_client, guard):
        def reset(request):
            raise httpx.RemoteProtocolError("Server disconnected", request=request)

        orchestrator = AnalysisOrchestrator(
            config=AuditConfig(), guard=guard, transport=httpx.MockTransport(reset)
        )
        client = make_client(orchestrator_override=orchestrator)

        response = client.post("/analyze", json={"url": BASE})

        assert response.status_code == 502
        assert response.json()["code"] == "FETCH_ERROR"

    def test_rate_limit(self, make_client):
        client = make_client(max_requests=2)

        statuses = [client.post("/analyze", json={"url": BASE}).status_code for _ in range(3)]

        assert statuses == [200, 200, 429]
        limited = client.post("/analyze", json={"url": BASE})
        assert limited.json()["code"] == "RATE_LIMIT_EXCEEDED"
        assert limited.headers["X-Rate-Limit-Remaining"] == "0"
        assert limited.headers["X-Rate-Limit-Limit"] == "2"
        assert "Retry-After" in limited.headers


class TestRedirectCheckEndpoint:
    """Tests for POST /redirect-check."""

    def test_success(self, make_client):
        client = make_client()

        response = client.post("/redirect-check", json={"url": f"{BASE}/old"})

        assert response.status_code == 200
        body = response.json()
        assert [hop["status"] for hop in body["redirectChain"]] == [302, 200]
        assert body["summary"]["totalRedirects"] == 1
        assert body["summary"]["finalUrl"] == f"{BASE}/new"
        assert "temporary-redirect-in-chain" in body["summary"]["seoIssues"]
        assert body["summary"]["checksPerformed"][0] == "redirect-chain"
        assert "processingTime" in body["summary"]
        assert body["variantReports"][0]["candidate"] == f"{BASE}/old"
        assert response.headers["X-Report-Id"] == body["reportId"]

    def test_options_are_clamped(self, make_client, resolver_calls):
        client = make_client()

        client.post("/redirect-check", json={
            "url": BASE,
            "options": {
                "maxRedirects": 500,
                "timeout": 600_000,
                "followJavaScriptRedirects": True,
                "validateSSL": False,
                "userAgent": "Custom/1.0",
            },
        })

        options = resolver_calls[0]
        assert options["max_redirects"] == 20
        assert options["timeout"] == 60.0
        assert options["follow_script_redirects"] is True
        assert options["validate_ssl"] is False
        assert options["user_agent"] == "Custom/1.0"

    def test_zero_max_redirects_is_honoured(self, make_client, resolver_calls):
        response = make_client().post(
            "/redirect-check", json={"url": f"{BASE}/old", "options": {"maxRedirects": 0}}
        )

        assert resolver_calls[0]["max_redirects"] == 0
        assert response.status_code == 200
        assert "too-many-redirects" in response.json()["flags"]

    def test_unreachable_site(self, make_client):
        def refuse(request):
            raise httpx.ConnectError("Connection refused", request=request)

        response = make_client(handler=refuse).post("/redirect-check", json={"url": BASE})

        assert response.status_code == 404
        assert response.json()["code"] == "WEBSITE_UNREACHABLE"

    def test_tls_failure(self, make_client):
        def bad_cert(request):
            raise httpx.ConnectError("[SSL: CERTIFICATE_VERIFY_FAILED] certificate verify failed",
                                     request=request)

        response = make_client(handler=bad_cert).post("/redirect-check", json={"url": BASE})

        assert response.status_code == 502
        assert response.json()["code"] == "SSL_ERROR"

    def test_timeout(self, make_client):
        def slow(request):
            raise httpx.ReadTimeout("timed out", request=request)

        response = make_client(handler=slow).post("/redirect-check", json={"url": BASE})

        assert response.status_code == 408
        assert response.json()["code"] == "TIMEOUT_ERROR"

    def test_private_target_blocked(self, make_client, resolver_calls):
        response = make_client().post("/redirect-check", json={"url": "http://10.0.0.1/"})

        assert response.status_code == 403
        assert resolver_calls == []

    def test_invalid_payload(self, make_client):
        response = make_client().post("/redirect-check", content=b"not json",
                                      headers={"Content-Type": "application/json"})

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_PAYLOAD"


class TestOperationalEndpoints:
    """Tests for /health and /metrics."""

    def test_health(self, make_client):
        response = make_client().get("/health")

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "healthy"
        assert body["limits"]["maxRedirects"] == 20
        assert "uptime" in body
        assert "version" in body

    def test_metrics_counts_requests(self, make_client):
        client = make_client()
        client.post("/analyze", json={"url": BASE})
        client.post("/analyze", json={"url": "ftp://x"})

        body = client.get("/metrics").json()

        assert body["counters"]["analyze_completed"] == 1
        assert body["counters"]["requests_failed{code=INVALID_URL}"] == 1
        assert body["counters"]["http_requests_total{route=/analyze,status=200}"] == 1
        assert body["rateLimiter"]["total_allowed"] == 2

    def test_request_id_is_echoed(self, make_client):
        response = make_client().get("/health", headers={"X-Request-Id": "abc-123"})

        assert response.headers["X-Request-Id"] == "abc-123"
