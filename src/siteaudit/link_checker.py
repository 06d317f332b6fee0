"""Broken link detection over a crawled page map."""

import asyncio
import logging
from typing import List, Mapping, Optional, Tuple

import httpx

from siteaudit.constants import (
    CRAWLER_REFERER,
    DEFAULT_LINK_CHECK_CONCURRENCY,
    DEFAULT_LINK_CHECK_PER_PAGE,
    DEFAULT_LINK_CHECK_TIMEOUT_SECONDS,
    DEFAULT_LINK_CHECK_TOTAL,
    DEFAULT_USER_AGENT,
    HEAD_FALLBACK_STATUS_CODES,
)
from siteaudit.exceptions import SSRFBlockedError
from siteaudit.http_client import GuardedFetcher, describe_error
from siteaudit.infrastructure.ssrf_guard import SSRFGuard
from siteaudit.models import CrawledPage, LinkCheckReport, LinkOutcome, LinkProbeResult

logger = logging.getLogger(__name__)


class BrokenLinkChecker:
    """Probes a bounded sample of outbound links for errors and redirects.

    Links are sampled in page order: at most ``per_page_limit`` new links per
    page and ``total_limit`` overall. They are probed in batches of
    ``concurrency`` with HEAD, falling back to GET when the server does not
    support HEAD. Redirects are recorded but never followed.
    """

    def __init__(
        self,
        per_page_limit: int = DEFAULT_LINK_CHECK_PER_PAGE,
        total_limit: int = DEFAULT_LINK_CHECK_TOTAL,
        concurrency: int = DEFAULT_LINK_CHECK_CONCURRENCY,
        timeout: float = DEFAULT_LINK_CHECK_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        guard: Optional[SSRFGuard] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.per_page_limit = per_page_limit
        self.total_limit = total_limit
        self.concurrency = max(1, concurrency)
        self.timeout = timeout
        self.user_agent = user_agent
        self.guard = guard or SSRFGuard()
        self._transport = transport

    def sample_links(self, pages: Mapping[str, CrawledPage]) -> List[Tuple[str, str]]:
        """Select (link, referer) pairs to probe, deduplicated in page order."""
        selected: List[Tuple[str, str]] = []
        seen = set()
        for url, page in pages.items():
            if page.crawl_error:
                continue
            for link in page.outbound_links[:self.per_page_limit]:
                if link in seen:
                    continue
                seen.add(link)
                selected.append((link, url))
        return selected[:self.total_limit]

    async def check_links(self, pages: Mapping[str, CrawledPage]) -> LinkCheckReport:
        """Check links found during a crawl.

        Args:
            pages: Page map returned by the crawler

        Returns:
            LinkCheckReport with broken links and redirects
        """
        report = LinkCheckReport()

        for url, page in pages.items():
            if page.crawl_error:
                report.broken.append(LinkProbeResult(
                    url=url,
                    referer_url=CRAWLER_REFERER,
                    outcome=LinkOutcome.BROKEN,
                    status=page.http_status,
                    error=page.error,
                ))

        to_check = self.sample_links(pages)
        if not to_check:
            return report

        logger.info(f"Checking {len(to_check)} links in batches of {self.concurrency}")

        async with GuardedFetcher(
            self.guard,
            timeout=self.timeout,
            user_agent=self.user_agent,
            transport=self._transport,
        ) as fetcher:
            for start in range(0, len(to_check), self.concurrency):
                batch = to_check[start:start + self.concurrency]
                results = await asyncio.gather(*(
                    self.check_link(fetcher, link, referer) for link, referer in batch
                ))
                for result in results:
                    report.checked += 1
                    if result.outcome is LinkOutcome.BROKEN:
                        report.broken.append(result)
                    elif result.outcome is LinkOutcome.REDIRECT:
                        report.redirects.append(result)

        logger.info(
            f"Link check complete: {len(report.broken)} broken, "
            f"{len(report.redirects)} redirects"
        )
        return report

    async def check_link(
        self, fetcher: GuardedFetcher, link: str, referer: str
    ) -> LinkProbeResult:
        """Probe a single link. Never raises for network or SSRF failures."""
        try:
            response = await fetcher.request("HEAD", link)
            if response.status_code in HEAD_FALLBACK_STATUS_CODES:
                response = await fetcher.request("GET", link)
        except SSRFBlockedError as e:
            return LinkProbeResult(url=link, referer_url=referer,
                                   outcome=LinkOutcome.BROKEN, error=str(e))
        except httpx.HTTPError as e:
            logger.debug(f"Link probe failed for {link}: {describe_error(e)}")
            return LinkProbeResult(url=link, referer_url=referer,
                                   outcome=LinkOutcome.BROKEN, error=describe_error(e))

        status = response.status_code
        if status >= 400:
            return LinkProbeResult(url=link, referer_url=referer,
                                   outcome=LinkOutcome.BROKEN, status=status)
        location = response.headers.get("location")
        if 300 <= status < 400 and location:
            return LinkProbeResult(url=link, referer_url=referer,
                                   outcome=LinkOutcome.REDIRECT, status=status,
                                   location=location)
        return LinkProbeResult(url=link, referer_url=referer,
                               outcome=LinkOutcome.OK, status=status)
