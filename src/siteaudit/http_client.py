"""Guarded HTTP fetching shared by the crawler, link checker and auditors.

Every request goes through the SSRF guard first. Transport-level redirects are
always disabled; callers that want to follow redirects use
``GuardedFetcher.get_following`` so each hop is checked individually.
"""

import logging
from typing import Dict, Optional, Tuple

import httpx

from siteaudit.constants import DEFAULT_USER_AGENT
from siteaudit.infrastructure.ssrf_guard import SSRFGuard
from siteaudit.exceptions import (
    AnalysisTimeoutError,
    FetchFailedError,
    SiteAuditError,
    SSLFailureError,
    SSRFBlockedError,
    WebsiteUnreachableError,
)
from siteaudit.utils.urls import resolve_url

logger = logging.getLogger(__name__)

# Substrings of low-level connect errors, matched case-insensitively
_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo",
    "temporary failure in name resolution",
    "no address associated",
    "name resolution",
)
_TLS_MARKERS = ("ssl", "certificate", "tls")


def classify_error(exc: BaseException) -> str:
    """Map a fetch exception to one of: timeout, dns, connect, tls, network, blocked."""
    if isinstance(exc, SSRFBlockedError):
        return "blocked"
    if isinstance(exc, httpx.TimeoutException):
        return "timeout"
    message = str(exc).lower()
    if isinstance(exc, httpx.ConnectError):
        if any(marker in message for marker in _TLS_MARKERS):
            return "tls"
        if any(marker in message for marker in _DNS_MARKERS):
            return "dns"
        return "connect"
    if any(marker in message for marker in _TLS_MARKERS):
        return "tls"
    return "network"


def describe_error(exc: BaseException) -> str:
    """Non-empty human readable error text."""
    return str(exc) or type(exc).__name__


def error_for_kind(kind: Optional[str], message: str, url: str = "") -> SiteAuditError:
    """Translate a classified fetch failure into the error the API reports."""
    if kind == "timeout":
        return AnalysisTimeoutError(f"Request timeout - the website took too long to respond: {message}")
    if kind in ("dns", "connect"):
        return WebsiteUnreachableError(f"Website not found or unreachable: {message}")
    if kind == "tls":
        return SSLFailureError(f"SSL certificate error: {message}")
    if kind == "blocked":
        return SSRFBlockedError(url, message)
    return FetchFailedError(f"Unable to fetch website content: {message}")


def build_client(
    timeout: float,
    user_agent: str = DEFAULT_USER_AGENT,
    headers: Optional[Dict[str, str]] = None,
    verify: bool = True,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Create an AsyncClient with redirects disabled."""
    merged = {
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    }
    if headers:
        merged.update(headers)
    return httpx.AsyncClient(
        timeout=timeout,
        follow_redirects=False,
        headers=merged,
        verify=verify,
        transport=transport,
    )


class GuardedFetcher:
    """Thin wrapper over httpx.AsyncClient that checks the SSRF guard per request.

    Use as an async context manager, or pass an existing client to share it.
    """

    def __init__(
        self,
        guard: SSRFGuard,
        timeout: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.guard = guard
        self.timeout = timeout
        self.user_agent = user_agent
        self._transport = transport
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "GuardedFetcher":
        if self._client is None:
            self._client = build_client(
                self.timeout, user_agent=self.user_agent, transport=self._transport
            )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("GuardedFetcher used outside 'async with'")
        return self._client

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Issue a single request after the guard allows the URL.

        Raises:
            SSRFBlockedError: If the URL targets a blocked address
            httpx.HTTPError: On transport failures
        """
        await self.guard.ensure_allowed(url)
        return await self.client.request(method, url, **kwargs)

    async def get_following(
        self, url: str, max_redirects: int
    ) -> Tuple[httpx.Response, str]:
        """GET a URL following up to ``max_redirects`` redirects, guarding every hop.

        Returns:
            (final response, final URL). A response that is still a redirect
            after the budget is spent is returned as-is.
        """
        current = url
        redirects = 0
        while True:
            response = await self.request("GET", current)
            location = response.headers.get("location")
            if not (300 <= response.status_code < 400 and location):
                return response, current
            target = resolve_url(location, current)
            if target is None or redirects >= max_redirects:
                return response, current
            logger.debug(f"Following {response.status_code} {current} -> {target}")
            redirects += 1
            current = target

    async def fetch_text(self, url: str, max_redirects: int) -> str:
        """Fetch a document body. Timeouts propagate as-is so callers can tell them apart.

        Raises:
            SSRFBlockedError: If any hop targets a blocked address
            httpx.TimeoutException: If a hop times out
            FetchFailedError: On any other transport failure or a status >= 400
        """
        try:
            response, final_url = await self.get_following(url, max_redirects)
        except httpx.TimeoutException:
            raise
        except httpx.HTTPError as e:
            raise FetchFailedError(f"Failed to fetch {url}: {describe_error(e)}") from e
        if response.status_code >= 400:
            raise FetchFailedError(f"Failed to fetch {final_url}: HTTP {response.status_code}")
        return response.text
