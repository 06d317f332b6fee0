"""JSON-LD structured data detection."""

import json
import logging
from typing import Any, Dict, List, Optional

import httpx
from bs4 import BeautifulSoup

from siteaudit.constants import AUDITOR_FETCH_MAX_REDIRECTS, DEFAULT_USER_AGENT
from siteaudit.http_client import GuardedFetcher
from siteaudit.infrastructure.ssrf_guard import SSRFGuard
from siteaudit.models import SchemaCheckResult

logger = logging.getLogger(__name__)


class StructuredDataChecker:
    """Lists the schema.org entities declared in a page's JSON-LD blocks.

    Top-level arrays and ``@graph`` containers are flattened; each entity is
    reported as ``{type, context}``.
    """

    def __init__(
        self,
        timeout: float = 5.0,
        user_agent: str = DEFAULT_USER_AGENT,
        guard: Optional[SSRFGuard] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.user_agent = user_agent
        self.guard = guard or SSRFGuard()
        self._transport = transport

    async def check(self, url: str) -> SchemaCheckResult:
        async with GuardedFetcher(
            self.guard,
            timeout=self.timeout,
            user_agent=self.user_agent,
            transport=self._transport,
        ) as fetcher:
            html = await fetcher.fetch_text(url, AUDITOR_FETCH_MAX_REDIRECTS)
        return self.extract(html)

    def extract(self, html: str) -> SchemaCheckResult:
        """Extract JSON-LD entities from HTML."""
        soup = BeautifulSoup(html or "", "html.parser")
        schemas: List[Dict[str, str]] = []

        for script in soup.find_all("script", type="application/ld+json"):
            if not script.string:
                continue
            try:
                data = json.loads(script.string)
            except json.JSONDecodeError as e:
                logger.debug(f"Invalid JSON-LD syntax: {str(e)[:100]}")
                continue

            if isinstance(data, list):
                items = data
            elif isinstance(data, dict) and isinstance(data.get("@graph"), list):
                items = data["@graph"]
            else:
                items = [data]

            for item in items:
                entity = self._describe(item)
                if entity is not None:
                    schemas.append(entity)

        return SchemaCheckResult(has_schema=bool(schemas), schemas=schemas)

    def _describe(self, item: Any) -> Optional[Dict[str, str]]:
        if not item:
            return None
        if isinstance(item, str):
            return {"type": item, "context": "Unknown"}
        if not isinstance(item, dict):
            return None
        schema_type = item.get("@type") or "Unknown"
        if isinstance(schema_type, list):
            schema_type = ",".join(str(t) for t in schema_type)
        return {"type": str(schema_type), "context": str(item.get("@context") or "Unknown")}
