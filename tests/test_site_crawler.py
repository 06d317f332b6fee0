"""Tests for AsyncSiteCrawler."""

import asyncio

import httpx
import pytest

pytest_plugins = ('pytest_asyncio',)

from siteaudit.site_crawler import AsyncSiteCrawler

BASE = "https://example.com"

HOME = """
<html><head>
  <title>Home</title>
  <meta name="description" content="Welcome home">
</head><body>
  <a href="/a">A</a>
  <a href="/b">B</a>
  <a href="/a#section">A again</a>
  <a href="https://other.com/x">External</a>
  <a href="/brochure.pdf">PDF</a>
  <a href="mailto:team@example.com">Mail</a>
</body></html>
"""

PAGE_A = """
<html><head><title>Page A</title></head><body>
  <a href="/c">C</a>
  <a href="/">Home</a>
</body></html>
"""

PAGE_B = """
<html><head><title>Page B</title><meta name="robots" content="noindex, follow"></head>
<body><a href="/missing">Missing</a></body></html>
"""

PAGE_C = "<html><head><title>Page C</title></head><body><a href='/d'>D</a></body></html>"


def site_routes(**overrides):
    routes = {
        "/": httpx.Response(200, html=HOME),
        "/a": httpx.Response(200, html=PAGE_A),
        "/b": httpx.Response(200, html=PAGE_B),
        "/c": httpx.Response(200, html=PAGE_C),
        "/d": httpx.Response(200, html="<title>D</title>"),
    }
    routes.update(overrides)
    return routes


def make_crawler(transport, guard, **kwargs):
    options = dict(
        max_depth=2,
        max_pages=10,
        request_timeout=2.0,
        overall_timeout=10.0,
        requests_per_second=1000.0,
        guard=guard,
        transport=transport,
    )
    options.update(kwargs)
    return AsyncSiteCrawler(**options)


class TestAsyncSiteCrawler:
    """Tests for the BFS crawl."""

    @pytest.mark.asyncio
    async def test_depth_one_crawls_seed_and_direct_links(self, site_transport, guard):
        crawler = make_crawler(site_transport(site_routes()), guard, max_depth=1, max_pages=5)

        pages = await crawler.crawl(BASE)

        assert set(pages) == {f"{BASE}/", f"{BASE}/a", f"{BASE}/b"}
        assert pages[f"{BASE}/"].depth == 0
        assert pages[f"{BASE}/a"].depth == 1

    @pytest.mark.asyncio
    async def test_extracts_page_metadata(self, site_transport, guard):
        crawler = make_crawler(site_transport(site_routes()), guard, max_depth=1)

        pages = await crawler.crawl(BASE)
        home = pages[f"{BASE}/"]

        assert home.http_status == 200
        assert home.title == "Home"
        assert home.meta_description == "Welcome home"
        assert home.is_indexable is True
        # Fragment duplicates collapse; non-http and off-site links are dropped
        assert home.outbound_links == (
            f"{BASE}/a",
            f"{BASE}/b",
            f"{BASE}/brochure.pdf",
        )

    @pytest.mark.asyncio
    async def test_noindex_meta(self, site_transport, guard):
        crawler = make_crawler(site_transport(site_routes()), guard, max_depth=1)

        pages = await crawler.crawl(BASE)

        assert pages[f"{BASE}/b"].is_indexable is False

    @pytest.mark.asyncio
    async def test_noindex_header(self, site_transport, guard):
        routes = site_routes(**{
            "/": httpx.Response(200, html="<title>x</title>", headers={"X-Robots-Tag": "noindex"}),
        })
        crawler = make_crawler(site_transport(routes), guard, max_depth=0)

        pages = await crawler.crawl(BASE)

        assert pages[f"{BASE}/"].is_indexable is False

    @pytest.mark.asyncio
    async def test_never_leaves_origin_or_crawls_assets(self, site_transport, guard):
        crawler = make_crawler(site_transport(site_routes()), guard, max_depth=3)

        pages = await crawler.crawl(BASE)

        assert "https://other.com/x" not in pages
        assert f"{BASE}/brochure.pdf" not in pages
        assert f"{BASE}/d" in pages

    @pytest.mark.asyncio
    async def test_page_graph_keeps_same_origin_links_only(self, site_transport, guard):
        routes = {"/": httpx.Response(200, html=(
            '<a href="https://other.org/x">x</a>'
            '<a href="https://www.example.com/team">team</a>'
            '<a href="/about">about</a>'
        ))}
        crawler = make_crawler(site_transport(routes), guard, max_depth=0)

        pages = await crawler.crawl(BASE)

        assert pages[f"{BASE}/"].outbound_links == (
            "https://www.example.com/team",
            f"{BASE}/about",
        )

    @pytest.mark.asyncio
    async def test_max_pages_bounds_fetches(self, site_transport, guard):
        crawler = make_crawler(site_transport(site_routes()), guard, max_pages=2)

        pages = await crawler.crawl(BASE)

        assert len(pages) == 2
        assert list(pages) == [f"{BASE}/", f"{BASE}/a"]

    @pytest.mark.asyncio
    async def test_error_status_recorded_as_crawl_error(self, site_transport, guard):
        crawler = make_crawler(site_transport(site_routes()), guard, max_depth=2)

        pages = await crawler.crawl(BASE)
        missing = pages[f"{BASE}/missing"]

        assert missing.crawl_error is True
        assert missing.http_status == 404
        assert missing.outbound_links == ()

    @pytest.mark.asyncio
    async def test_each_url_fetched_once(self, guard):
        hits = []

        def handler(request):
            hits.append(request.url.path)
            if request.url.path == "/robots.txt":
                return httpx.Response(404)
            return httpx.Response(200, html='<a href="/">home</a><a href="/loop">loop</a>')

        crawler = make_crawler(httpx.MockTransport(handler), guard, max_depth=5)

        pages = await crawler.crawl(BASE)

        assert set(pages) == {f"{BASE}/", f"{BASE}/loop"}
        assert hits.count("/") == 1
        assert hits.count("/loop") == 1

    @pytest.mark.asyncio
    async def test_follows_redirects_when_fetching(self, site_transport, guard):
        routes = site_routes(**{
            "/": httpx.Response(301, headers={"Location": "/home"}),
            "/home": httpx.Response(200, html="<title>Moved home</title><a href='a'>A</a>"),
        })
        crawler = make_crawler(site_transport(routes), guard, max_depth=1)

        pages = await crawler.crawl(BASE)
        seed = pages[f"{BASE}/"]

        assert seed.title == "Moved home"
        assert seed.final_url == f"{BASE}/home"
        # Relative links resolve against the final URL
        assert f"{BASE}/a" in seed.outbound_links

    @pytest.mark.asyncio
    async def test_redirect_to_private_address_is_blocked(self, site_transport, guard):
        routes = site_routes(**{
            "/": httpx.Response(302, headers={"Location": "http://10.0.0.1/admin"}),
        })
        crawler = make_crawler(site_transport(routes), guard, max_depth=1)

        pages = await crawler.crawl(BASE)
        seed = pages[f"{BASE}/"]

        assert seed.crawl_error is True
        assert seed.http_status == 403

    @pytest.mark.asyncio
    async def test_network_error_recorded(self, guard):
        def handler(request):
            if request.url.path == "/":
                return httpx.Response(200, html='<a href="/down">down</a>')
            raise httpx.ConnectError("Connection refused", request=request)

        crawler = make_crawler(httpx.MockTransport(handler), guard, max_depth=1)

        pages = await crawler.crawl(BASE)
        down = pages[f"{BASE}/down"]

        assert down.crawl_error is True
        assert down.http_status == 500
        assert "Connection refused" in down.error
        assert down.error_kind == "connect"

    @pytest.mark.asyncio
    async def test_slow_page_times_out(self, site_transport, guard):
        async def slow(request):
            await asyncio.sleep(2)
            return httpx.Response(200, html="<title>late</title>")

        routes = site_routes(**{"/a": slow})
        crawler = make_crawler(site_transport(routes), guard, max_depth=1, request_timeout=0.1)

        pages = await crawler.crawl(BASE)
        slow_page = pages[f"{BASE}/a"]

        assert slow_page.crawl_error is True
        assert slow_page.http_status == 408
        assert pages[f"{BASE}/b"].crawl_error is False

    @pytest.mark.asyncio
    async def test_overall_deadline_returns_partial_results(self, site_transport, guard):
        async def hang(request):
            await asyncio.sleep(5)
            return httpx.Response(200, html="<title>never</title>")

        routes = site_routes(**{"/a": hang, "/b": hang})
        crawler = make_crawler(
            site_transport(routes), guard, max_depth=1, request_timeout=5.0, overall_timeout=0.3
        )

        pages = await crawler.crawl(BASE)

        assert list(pages) == [f"{BASE}/"]

    @pytest.mark.asyncio
    async def test_respects_robots_txt(self, site_transport, guard):
        routes = site_routes(**{
            "/robots.txt": httpx.Response(200, text="User-agent: *\nDisallow: /b\n"),
        })
        crawler = make_crawler(site_transport(routes), guard, max_depth=1)

        pages = await crawler.crawl(BASE)

        assert f"{BASE}/a" in pages
        assert f"{BASE}/b" not in pages

    @pytest.mark.asyncio
    async def test_robots_txt_can_be_ignored(self, site_transport, guard):
        routes = site_routes(**{
            "/robots.txt": httpx.Response(200, text="User-agent: *\nDisallow: /b\n"),
        })
        crawler = make_crawler(site_transport(routes), guard, max_depth=1, respect_robots=False)

        pages = await crawler.crawl(BASE)

        assert f"{BASE}/b" in pages

    @pytest.mark.asyncio
    async def test_non_html_page_has_no_links(self, site_transport, guard):
        routes = site_routes(**{"/": httpx.Response(200, json={"ok": True})})
        crawler = make_crawler(site_transport(routes), guard)

        pages = await crawler.crawl(BASE)

        assert list(pages) == [f"{BASE}/"]
        assert pages[f"{BASE}/"].outbound_links == ()
