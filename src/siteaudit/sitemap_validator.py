"""robots.txt and XML sitemap validation."""

import logging
from typing import List, Mapping, Optional
from urllib.parse import urljoin
from urllib.robotparser import RobotFileParser
from xml.etree import ElementTree as ET

import httpx

from siteaudit.constants import (
    AUDITOR_FETCH_MAX_REDIRECTS,
    DEFAULT_USER_AGENT,
    MAX_CHILD_SITEMAPS,
    SITEMAP_FETCH_TIMEOUT_SECONDS,
)
from siteaudit.exceptions import FetchFailedError, SSRFBlockedError
from siteaudit.http_client import GuardedFetcher
from siteaudit.infrastructure.ssrf_guard import SSRFGuard
from siteaudit.models import CrawledPage, ValidationResult
from siteaudit.utils.urls import normalize_url

logger = logging.getLogger(__name__)

SITEMAP_NS = '{http://www.sitemaps.org/schemas/sitemap/0.9}'


def _local_name(tag: str) -> str:
    return tag.split('}')[-1] if '}' in tag else tag


def _locs(root: ET.Element, entry: str) -> List[str]:
    """Text of every ``<entry><loc>`` element, namespaced or not."""
    found = []
    for elem in root.iter():
        if _local_name(elem.tag) != entry:
            continue
        loc = elem.find(f'{SITEMAP_NS}loc')
        if loc is None:
            loc = elem.find('loc')
        if loc is not None and loc.text and loc.text.strip():
            found.append(loc.text.strip())
    return found


class SitemapValidator:
    """
    Checks robots.txt presence and sitemap coverage for a site.

    The sitemap location comes from the first ``Sitemap:`` line of robots.txt,
    falling back to ``/sitemap.xml``. A sitemap index is followed one level
    deep, up to MAX_CHILD_SITEMAPS children.
    """

    def __init__(
        self,
        timeout: float = SITEMAP_FETCH_TIMEOUT_SECONDS,
        max_child_sitemaps: int = MAX_CHILD_SITEMAPS,
        user_agent: str = DEFAULT_USER_AGENT,
        guard: Optional[SSRFGuard] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.max_child_sitemaps = max_child_sitemaps
        self.user_agent = user_agent
        self.guard = guard or SSRFGuard()
        self._transport = transport

    async def validate(
        self, base_url: str, pages: Optional[Mapping[str, CrawledPage]] = None
    ) -> ValidationResult:
        """
        Validate robots.txt and sitemap for the site of ``base_url``.

        Args:
            base_url: Any URL on the site
            pages: Crawled pages, used to compute pages missing from the sitemap

        Returns:
            ValidationResult
        """
        result = ValidationResult()
        robots_url = urljoin(base_url, "/robots.txt")

        async with GuardedFetcher(
            self.guard,
            timeout=self.timeout,
            user_agent=self.user_agent,
            transport=self._transport,
        ) as fetcher:
            sitemap_url = urljoin(base_url, "/sitemap.xml")

            robots_body = await self._fetch(fetcher, robots_url)
            if robots_body is not None:
                result.robots_txt_exists = True
                parser = RobotFileParser(robots_url)
                parser.parse(robots_body.splitlines())
                declared = parser.site_maps()
                if declared:
                    sitemap_url = declared[0]

            sitemap_body = await self._fetch(fetcher, sitemap_url)
            if sitemap_body is not None:
                result.sitemap_exists = True
                result.sitemap_url = sitemap_url
                result.sitemap_urls = await self._parse_sitemap(fetcher, sitemap_body)

        if result.sitemap_exists and pages:
            result.missing_in_sitemap = self.find_missing(pages, result.sitemap_urls)

        logger.info(
            f"Validation for {base_url}: robots.txt={result.robots_txt_exists}, "
            f"sitemap={result.sitemap_exists} ({len(result.sitemap_urls)} URLs)"
        )
        return result

    def find_missing(
        self, pages: Mapping[str, CrawledPage], sitemap_urls: List[str]
    ) -> List[str]:
        """Crawled, indexable, successfully fetched pages absent from the sitemap."""
        listed = {normalize_url(url) for url in sitemap_urls}
        missing = []
        for url, page in pages.items():
            if page.crawl_error or not page.is_indexable:
                continue
            if not 200 <= page.http_status < 300:
                continue
            if normalize_url(url) not in listed:
                missing.append(url)
        return missing

    async def _fetch(self, fetcher: GuardedFetcher, url: str) -> Optional[str]:
        try:
            return await fetcher.fetch_text(url, AUDITOR_FETCH_MAX_REDIRECTS)
        except (FetchFailedError, SSRFBlockedError) as e:
            logger.debug(f"Could not fetch {url}: {e}")
            return None

    async def _parse_sitemap(self, fetcher: GuardedFetcher, content: str) -> List[str]:
        root = self._parse_xml(content)
        if root is None:
            return []

        root_tag = _local_name(root.tag)
        if root_tag == 'urlset':
            return _locs(root, 'url')
        if root_tag != 'sitemapindex':
            logger.warning(f"Unknown sitemap root element: {root_tag}")
            return []

        urls: List[str] = []
        for child_url in _locs(root, 'sitemap')[:self.max_child_sitemaps]:
            logger.info(f"Found child sitemap: {child_url}")
            body = await self._fetch(fetcher, child_url)
            if body is None:
                continue
            child = self._parse_xml(body)
            if child is not None and _local_name(child.tag) == 'urlset':
                urls.extend(_locs(child, 'url'))
        return urls

    def _parse_xml(self, content: str) -> Optional[ET.Element]:
        try:
            return ET.fromstring(content.strip())
        except ET.ParseError as e:
            logger.error(f"Failed to parse sitemap XML: {e}")
            return None
