"""Asynchronous site crawler with level-synchronous breadth-first search."""

import asyncio
import logging
from typing import Dict, List, Optional, Set
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser

import httpx
from bs4 import BeautifulSoup

from siteaudit.constants import (
    CONTENT_FETCH_MAX_REDIRECTS,
    DEFAULT_CRAWL_MAX_CONCURRENT,
    DEFAULT_CRAWL_MAX_DEPTH,
    DEFAULT_CRAWL_MAX_PAGES,
    DEFAULT_CRAWL_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_CRAWL_REQUESTS_PER_SECOND,
    DEFAULT_CRAWL_TIMEOUT_SECONDS,
    DEFAULT_USER_AGENT,
)
from siteaudit.exceptions import SSRFBlockedError
from siteaudit.http_client import GuardedFetcher, classify_error, describe_error
from siteaudit.infrastructure.rate_limiter import TokenBucketLimiter
from siteaudit.infrastructure.ssrf_guard import SSRFGuard
from siteaudit.models import CrawledPage
from siteaudit.utils.urls import is_same_origin, normalize_url, resolve_url

logger = logging.getLogger(__name__)

# Links to these resources are recorded but never crawled
SKIP_EXTENSIONS = frozenset({
    '.pdf', '.jpg', '.jpeg', '.png', '.gif', '.svg', '.webp',
    '.zip', '.tar', '.gz', '.mp4', '.mp3', '.avi', '.mov',
    '.doc', '.docx', '.xls', '.xlsx', '.ppt', '.pptx',
    '.css', '.js', '.xml', '.json', '.ico', '.woff', '.woff2', '.ttf'
})


class AsyncSiteCrawler:
    """Crawls a bounded part of one site using breadth-first search (BFS).

    Pages are processed level by level: the seed is level 0, and level
    ``n + 1`` is every unseen same-origin link found on level ``n``. Each
    level is fetched concurrently, bounded by a semaphore and throttled by a
    token bucket. The crawl stops when ``max_pages`` fetches have been issued,
    when ``max_depth`` is exceeded, or when ``overall_timeout`` elapses; in the
    last case the pages collected so far are returned.
    """

    def __init__(
        self,
        max_depth: int = DEFAULT_CRAWL_MAX_DEPTH,
        max_pages: int = DEFAULT_CRAWL_MAX_PAGES,
        request_timeout: float = DEFAULT_CRAWL_REQUEST_TIMEOUT_SECONDS,
        overall_timeout: float = DEFAULT_CRAWL_TIMEOUT_SECONDS,
        max_concurrent: int = DEFAULT_CRAWL_MAX_CONCURRENT,
        requests_per_second: float = DEFAULT_CRAWL_REQUESTS_PER_SECOND,
        respect_robots: bool = True,
        user_agent: str = DEFAULT_USER_AGENT,
        guard: Optional[SSRFGuard] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the crawler.

        Args:
            max_depth: Deepest BFS level fetched (seed is 0)
            max_pages: Maximum number of page fetches issued
            request_timeout: Per-page fetch timeout in seconds
            overall_timeout: Deadline for the whole crawl in seconds
            max_concurrent: Maximum in-flight page fetches
            requests_per_second: Token bucket refill rate
            respect_robots: Skip URLs disallowed by robots.txt
            user_agent: User agent sent with every request
            guard: SSRF guard consulted before every fetch
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.max_depth = max_depth
        self.max_pages = max_pages
        self.request_timeout = request_timeout
        self.overall_timeout = overall_timeout
        self.max_concurrent = max_concurrent
        self.requests_per_second = requests_per_second
        self.respect_robots = respect_robots
        self.user_agent = user_agent
        self.guard = guard or SSRFGuard()
        self._transport = transport

    async def crawl(
        self, seed_url: str, timeout: Optional[float] = None
    ) -> Dict[str, CrawledPage]:
        """Crawl starting from ``seed_url``.

        Args:
            seed_url: The starting URL
            timeout: Deadline for this crawl; the shorter of it and
                ``overall_timeout`` applies

        Returns:
            Dictionary mapping normalized URLs to CrawledPage for every
            fetched page (partial if the overall deadline was hit)
        """
        seed = normalize_url(seed_url)
        pages: Dict[str, CrawledPage] = {}
        deadline = self.overall_timeout if timeout is None else min(self.overall_timeout, timeout)

        logger.info(f"Starting crawl from: {seed}")
        logger.info(f"Max depth: {self.max_depth}, Max pages: {self.max_pages}, "
                    f"Max concurrent: {self.max_concurrent}")

        async with GuardedFetcher(
            self.guard,
            timeout=self.request_timeout,
            user_agent=self.user_agent,
            transport=self._transport,
        ) as fetcher:
            try:
                await asyncio.wait_for(
                    self._crawl_levels(seed, pages, fetcher),
                    timeout=max(0.0, deadline),
                )
            except asyncio.TimeoutError:
                logger.warning(
                    f"Crawl deadline of {deadline}s reached; "
                    f"returning {len(pages)} pages"
                )

        logger.info(f"Crawl complete! Processed {len(pages)} pages")
        return pages

    async def _crawl_levels(
        self, seed: str, pages: Dict[str, CrawledPage], fetcher: GuardedFetcher
    ) -> None:
        robots = await self._load_robots_txt(seed, fetcher) if self.respect_robots else None
        semaphore = asyncio.Semaphore(self.max_concurrent)
        throttle = TokenBucketLimiter(
            rate=self.requests_per_second, capacity=max(1, self.max_concurrent)
        )

        seen: Set[str] = {seed}
        level: List[str] = [seed]
        depth = 0
        issued = 0

        while level and depth <= self.max_depth and issued < self.max_pages:
            batch = []
            for url in level:
                if issued >= self.max_pages:
                    break
                if robots is not None and not robots.can_fetch(self.user_agent, url):
                    logger.warning(f"Skipping {url} (disallowed by robots.txt)")
                    continue
                if not await self.guard.is_allowed_url(url):
                    logger.warning(f"Skipping {url} (blocked by SSRF guard)")
                    continue
                batch.append(url)
                issued += 1

            if not batch:
                break

            logger.info(f"--- Level {depth}: fetching {len(batch)} pages ---")
            await asyncio.gather(*(
                self._crawl_page(url, depth, pages, fetcher, semaphore, throttle)
                for url in batch
            ))

            if depth == self.max_depth:
                break

            next_level = []
            for url in batch:
                page = pages.get(url)
                if page is None:
                    continue
                for link in page.outbound_links:
                    if link in seen or not self._should_crawl(link, seed):
                        continue
                    seen.add(link)
                    next_level.append(link)

            level = next_level
            depth += 1

        logger.debug(f"Crawl throttle: {throttle.get_stats()}")

    async def _crawl_page(
        self,
        url: str,
        depth: int,
        pages: Dict[str, CrawledPage],
        fetcher: GuardedFetcher,
        semaphore: asyncio.Semaphore,
        throttle: TokenBucketLimiter,
    ) -> None:
        async with semaphore:
            await throttle.acquire()
            pages[url] = await self._fetch_page(url, depth, fetcher)

    async def _fetch_page(self, url: str, depth: int, fetcher: GuardedFetcher) -> CrawledPage:
        try:
            response, final_url = await asyncio.wait_for(
                fetcher.get_following(url, CONTENT_FETCH_MAX_REDIRECTS),
                timeout=self.request_timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning(f"Timeout fetching {url}")
            return CrawledPage(url=url, http_status=408, depth=depth,
                               crawl_error=True, error="Request timed out",
                               error_kind="timeout")
        except SSRFBlockedError as e:
            logger.warning(f"Blocked fetching {url}: {e.reason}")
            return CrawledPage(url=url, http_status=403, depth=depth,
                               crawl_error=True, error=str(e), error_kind="blocked")
        except httpx.HTTPError as e:
            logger.warning(f"Error fetching {url}: {describe_error(e)}")
            return CrawledPage(url=url, http_status=500, depth=depth,
                               crawl_error=True, error=describe_error(e),
                               error_kind=classify_error(e))

        status = response.status_code
        if status >= 400:
            return CrawledPage(url=url, http_status=status, depth=depth,
                               crawl_error=True, error=f"HTTP {status}",
                               final_url=final_url)

        content_type = response.headers.get("content-type", "")
        if "html" not in content_type.lower():
            return CrawledPage(url=url, http_status=status, depth=depth, final_url=final_url)

        return self._extract_page(url, depth, status, final_url, response)

    def _extract_page(
        self, url: str, depth: int, status: int, final_url: str, response: httpx.Response
    ) -> CrawledPage:
        """Parse title, description, indexability and links from an HTML response."""
        soup = BeautifulSoup(response.text, "lxml")

        title_tag = soup.find("title")
        title = title_tag.get_text(strip=True) if title_tag else None

        desc_tag = soup.find("meta", attrs={"name": "description"})
        description = desc_tag.get("content") if desc_tag else None

        is_indexable = True
        robots_meta = soup.find("meta", attrs={"name": "robots"})
        if robots_meta and "noindex" in (robots_meta.get("content") or "").lower():
            is_indexable = False
        if "noindex" in response.headers.get("x-robots-tag", "").lower():
            is_indexable = False

        links: List[str] = []
        found: Set[str] = set()
        for anchor in soup.find_all("a", href=True):
            absolute = resolve_url(anchor["href"], final_url)
            if absolute is None:
                continue
            normalized = normalize_url(absolute)
            if not is_same_origin(normalized, final_url):
                continue
            if normalized not in found:
                found.add(normalized)
                links.append(normalized)

        return CrawledPage(
            url=url,
            http_status=status,
            depth=depth,
            title=title or None,
            meta_description=description or None,
            is_indexable=is_indexable,
            outbound_links=tuple(links),
            final_url=final_url,
        )

    def _should_crawl(self, url: str, seed: str) -> bool:
        if not is_same_origin(url, seed):
            return False
        path = urlparse(url).path.lower()
        return not any(path.endswith(ext) for ext in SKIP_EXTENSIONS)

    async def _load_robots_txt(
        self, seed: str, fetcher: GuardedFetcher
    ) -> Optional[RobotFileParser]:
        """Load and parse robots.txt for the seed's origin.

        Returns:
            A parser, or None when robots.txt is absent or unreadable
        """
        parsed = urlparse(seed)
        robots_url = f"{parsed.scheme}://{parsed.netloc}/robots.txt"

        try:
            response, _ = await asyncio.wait_for(
                fetcher.get_following(robots_url, CONTENT_FETCH_MAX_REDIRECTS),
                timeout=self.request_timeout,
            )
        except (asyncio.TimeoutError, httpx.HTTPError, SSRFBlockedError) as e:
            logger.warning(f"Could not load robots.txt: {describe_error(e)}")
            return None

        if response.status_code != 200:
            logger.info(f"No robots.txt found at {robots_url} (status: {response.status_code})")
            return None

        rp = RobotFileParser()
        rp.set_url(robots_url)
        rp.parse(response.text.splitlines())
        logger.info(f"Loaded robots.txt from {robots_url}")
        if not rp.can_fetch(self.user_agent, seed):
            logger.warning(f"robots.txt may block crawling of {seed}")
        return rp
