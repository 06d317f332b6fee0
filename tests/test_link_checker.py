"""Tests for BrokenLinkChecker."""

import httpx
import pytest

pytest_plugins = ('pytest_asyncio',)

from siteaudit.link_checker import BrokenLinkChecker
from siteaudit.models import CrawledPage, LinkOutcome

BASE = "https://example.com"


def page(path, links=(), **kwargs):
    return CrawledPage(
        url=f"{BASE}{path}",
        http_status=kwargs.pop("http_status", 200),
        outbound_links=tuple(links),
        **kwargs,
    )


def link_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/ok":
        return httpx.Response(200)
    if path == "/gone":
        return httpx.Response(404)
    if path == "/moved":
        return httpx.Response(301, headers={"Location": f"{BASE}/new"})
    if path == "/nohead":
        if request.method == "HEAD":
            return httpx.Response(405)
        return httpx.Response(200, text="fine")
    if path == "/down":
        raise httpx.ConnectError("Connection refused", request=request)
    return httpx.Response(500)


class TestSampleLinks:
    """Tests for link sampling."""

    def test_respects_per_page_and_total_limits(self, guard):
        checker = BrokenLinkChecker(per_page_limit=2, total_limit=3, guard=guard)
        pages = {
            f"{BASE}/": page("/", [f"{BASE}/1", f"{BASE}/2", f"{BASE}/3"]),
            f"{BASE}/a": page("/a", [f"{BASE}/4", f"{BASE}/5"]),
        }

        sampled = checker.sample_links(pages)

        assert sampled == [
            (f"{BASE}/1", f"{BASE}/"),
            (f"{BASE}/2", f"{BASE}/"),
            (f"{BASE}/4", f"{BASE}/a"),
        ]

    def test_deduplicates_links(self, guard):
        checker = BrokenLinkChecker(guard=guard)
        pages = {
            f"{BASE}/": page("/", [f"{BASE}/x"]),
            f"{BASE}/a": page("/a", [f"{BASE}/x", f"{BASE}/y"]),
        }

        sampled = checker.sample_links(pages)

        assert [link for link, _ in sampled] == [f"{BASE}/x", f"{BASE}/y"]

    def test_skips_pages_that_failed(self, guard):
        checker = BrokenLinkChecker(guard=guard)
        pages = {f"{BASE}/": page("/", [f"{BASE}/x"], crawl_error=True, http_status=500)}

        assert checker.sample_links(pages) == []


class TestBrokenLinkChecker:
    """Tests for link probing."""

    @pytest.fixture
    def checker(self, guard):
        return BrokenLinkChecker(
            per_page_limit=10,
            total_limit=20,
            concurrency=2,
            guard=guard,
            transport=httpx.MockTransport(link_handler),
        )

    @pytest.mark.asyncio
    async def test_classifies_links(self, checker):
        links = [f"{BASE}/{p}" for p in ("ok", "gone", "moved", "nohead", "down")]
        pages = {f"{BASE}/": page("/", links)}

        report = await checker.check_links(pages)

        broken = {b.url: b for b in report.broken}
        assert set(broken) == {f"{BASE}/gone", f"{BASE}/down"}
        assert broken[f"{BASE}/gone"].status == 404
        assert broken[f"{BASE}/gone"].referer_url == f"{BASE}/"
        assert broken[f"{BASE}/down"].status is None
        assert "Connection refused" in broken[f"{BASE}/down"].error

        assert len(report.redirects) == 1
        assert report.redirects[0].url == f"{BASE}/moved"
        assert report.redirects[0].location == f"{BASE}/new"
        assert report.checked == 5


    @pytest.mark.asyncio
    async def test_head_falls_back_to_get(self, guard):
        methods = []

        def handler(request):
            methods.append(request.method)
            if request.method == "HEAD":
                return httpx.Response(501)
            return httpx.Response(200)

        checker = BrokenLinkChecker(guard=guard, transport=httpx.MockTransport(handler))

        report = await checker.check_links({f"{BASE}/": page("/", [f"{BASE}/x"])})

        assert report.broken == []
        assert methods == ["HEAD", "GET"]

    @pytest.mark.asyncio
    async def test_crawl_failures_reported_with_crawler_referer(self, checker):
        pages = {
            f"{BASE}/": page("/", [f"{BASE}/ok"]),
            f"{BASE}/dead": page("/dead", crawl_error=True, http_status=408, error="Request timed out"),
        }

        report = await checker.check_links(pages)

        assert len(report.broken) == 1
        failure = report.broken[0]
        assert failure.url == f"{BASE}/dead"
        assert failure.referer_url == "crawler"
        assert failure.status == 408
        assert failure.outcome is LinkOutcome.BROKEN
        assert report.checked == 1

    @pytest.mark.asyncio
    async def test_private_links_reported_broken_without_request(self, guard):
        requested = []

        def handler(request):
            requested.append(str(request.url))
            return httpx.Response(200)

        checker = BrokenLinkChecker(guard=guard, transport=httpx.MockTransport(handler))
        pages = {f"{BASE}/": page("/", ["http://127.0.0.1/admin"])}

        report = await checker.check_links(pages)

        assert requested == []
        assert report.broken[0].url == "http://127.0.0.1/admin"
        assert "SSRF" in report.broken[0].error

    @pytest.mark.asyncio
    async def test_no_links_no_requests(self, checker):
        report = await checker.check_links({})

        assert report.broken == []
        assert report.checked == 0

    @pytest.mark.asyncio
    async def test_report_serialization(self, checker):
        pages = {f"{BASE}/": page("/", [f"{BASE}/gone", f"{BASE}/down"])}

        data = (await checker.check_links(pages)).to_dict()

        assert data["checked"] == 2
        statuses = {entry["url"]: entry["status"] for entry in data["broken"]}
        assert statuses == {f"{BASE}/gone": 404, f"{BASE}/down": "Error"}
