"""Static mobile-friendliness checks for a single page."""

import logging
import re
from typing import Optional

import httpx
from bs4 import BeautifulSoup

from siteaudit.constants import (
    AUDITOR_FETCH_MAX_REDIRECTS,
    DEFAULT_USER_AGENT,
    MOBILE_MIN_FONT_SIZE_PX,
)
from siteaudit.http_client import GuardedFetcher
from siteaudit.infrastructure.ssrf_guard import SSRFGuard
from siteaudit.models import MobileScanResult

logger = logging.getLogger(__name__)

FONT_SIZE_PX = re.compile(r"font-size:\s*(\d+(?:\.\d+)?)px", re.IGNORECASE)


class MobileScanner:
    """Checks viewport meta, touch icons and body font size."""

    def __init__(
        self,
        timeout: float = 12.0,
        min_font_size: float = MOBILE_MIN_FONT_SIZE_PX,
        user_agent: str = DEFAULT_USER_AGENT,
        guard: Optional[SSRFGuard] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.min_font_size = min_font_size
        self.user_agent = user_agent
        self.guard = guard or SSRFGuard()
        self._transport = transport

    async def scan(self, url: str) -> MobileScanResult:
        """Fetch ``url`` and evaluate it.

        Raises:
            FetchFailedError: If the page cannot be fetched
            SSRFBlockedError: If the page (or a redirect) is blocked
            httpx.TimeoutException: If the page request times out
        """
        async with GuardedFetcher(
            self.guard,
            timeout=self.timeout,
            user_agent=self.user_agent,
            transport=self._transport,
        ) as fetcher:
            html = await fetcher.fetch_text(url, AUDITOR_FETCH_MAX_REDIRECTS)
        return self.evaluate(html)

    def evaluate(self, html: str) -> MobileScanResult:
        soup = BeautifulSoup(html or "", "html.parser")

        viewport_tag = soup.find("meta", attrs={"name": "viewport"})
        viewport = (viewport_tag.get("content") or "").lower() if viewport_tag else ""
        has_viewport = "width=device-width" in viewport or "initial-scale" in viewport

        touch_icons = False
        for link in soup.find_all("link", rel=True):
            rel = " ".join(link.get("rel") or []).lower()
            if "apple-touch-icon" in rel or ("icon" in rel.split() and link.get("sizes")):
                touch_icons = True
                break

        body = soup.find("body")
        match = FONT_SIZE_PX.search(body.get("style") or "") if body else None
        font_ok = match is None or float(match.group(1)) >= self.min_font_size

        return MobileScanResult(
            is_mobile_friendly=has_viewport and touch_icons and font_ok,
            viewport=has_viewport,
            touch_icons=touch_icons,
            appropriate_font_size=font_ok,
        )
