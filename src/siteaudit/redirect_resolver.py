"""Redirect chain resolution with loop, truncation and variant handling.

The resolver fetches one hop at a time with transport redirects disabled, so
every hop is visible, timed and checked by the SSRF guard. Anomalies such as
loops or malformed Location headers end the chain and are recorded as flags;
they never raise.
"""

import asyncio
import logging
import re
import time
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse, urlunparse

import httpx
from bs4 import BeautifulSoup

from siteaudit.constants import (
    DEFAULT_MAX_REDIRECTS,
    DEFAULT_USER_AGENT,
    MAX_URL_VARIANTS,
    REDIRECT_BODY_SNIPPET_BYTES,
)
from siteaudit.exceptions import SSRFBlockedError
from siteaudit.http_client import build_client, classify_error, describe_error
from siteaudit.infrastructure.ssrf_guard import SSRFGuard
from siteaudit.models import (
    RedirectChain,
    RedirectHop,
    RedirectType,
    VariantProbeResult,
    VariantReport,
)
from siteaudit.utils.urls import canonical_url, resolve_url, strip_www

logger = logging.getLogger(__name__)

SCRIPT_REDIRECT_PATTERNS = [
    re.compile(r"window\.location\s*=\s*[\"']", re.IGNORECASE),
    re.compile(r"location\.href\s*=\s*[\"']", re.IGNORECASE),
    re.compile(r"location\.replace\s*\(", re.IGNORECASE),
    re.compile(r"document\.location\s*=\s*[\"']", re.IGNORECASE),
]

# Literal targets that can be followed without executing script
SCRIPT_TARGET_PATTERNS = [
    re.compile(
        r"(?:window\.location|document\.location|location\.href)(?:\.href)?\s*=\s*[\"']([^\"']+)[\"']",
        re.IGNORECASE,
    ),
    re.compile(r"location\.replace\s*\(\s*[\"']([^\"']+)[\"']", re.IGNORECASE),
]

META_REFRESH_URL = re.compile(r"url\s*=\s*(.+)", re.IGNORECASE)


def has_script_redirect(html: str) -> bool:
    return any(pattern.search(html) for pattern in SCRIPT_REDIRECT_PATTERNS)


def extract_script_target(html: str) -> Optional[str]:
    for pattern in SCRIPT_TARGET_PATTERNS:
        match = pattern.search(html)
        if match:
            return match.group(1).strip()
    return None


def extract_meta_refresh(html: str) -> Optional[str]:
    """Return the raw target of a ``<meta http-equiv="refresh">`` tag, if any."""
    soup = BeautifulSoup(html, "html.parser")
    for meta in soup.find_all("meta"):
        if (meta.get("http-equiv") or "").strip().lower() != "refresh":
            continue
        match = META_REFRESH_URL.search(meta.get("content") or "")
        if match:
            return match.group(1).strip().strip("'\"")
    return None


def build_url_variants(url: str, max_variants: int = MAX_URL_VARIANTS) -> List[str]:
    """Permutations of scheme, www prefix and trailing slash, as-given URL first.

    Args:
        url: URL as supplied by the caller
        max_variants: Cap on the number of candidates returned

    Returns:
        Deduplicated candidates in probe order
    """
    variants: List[str] = [url]

    try:
        parsed = urlparse(url)
    except ValueError:
        return variants
    if not parsed.hostname:
        return variants

    scheme = parsed.scheme.lower()
    other_scheme = "http" if scheme == "https" else "https"
    port_suffix = f":{parsed.port}" if parsed.port else ""
    bare = strip_www(parsed.hostname)
    hosts = [parsed.hostname, f"www.{bare}", bare]

    base_path = parsed.path or "/"
    if base_path.endswith("/"):
        toggled = base_path.rstrip("/")
    else:
        toggled = base_path + "/"
    paths = [base_path, toggled]

    for proto in (scheme, other_scheme):
        for host in hosts:
            for path in paths:
                variants.append(urlunparse(
                    (proto, host + port_suffix, path, parsed.params, parsed.query, parsed.fragment)
                ))

    unique: List[str] = []
    for candidate in variants:
        if candidate not in unique:
            unique.append(candidate)
    return unique[:max_variants]


class RedirectChainResolver:
    """Follows HTTP, meta-refresh and (optionally) script redirects hop by hop."""

    def __init__(
        self,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
        timeout: float = 30.0,
        follow_meta_refresh: bool = True,
        follow_script_redirects: bool = False,
        validate_ssl: bool = True,
        headers: Optional[Dict[str, str]] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        guard: Optional[SSRFGuard] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the resolver.

        Args:
            max_redirects: Redirects followed before the chain is truncated
            timeout: Per-hop deadline in seconds
            follow_meta_refresh: Follow ``<meta http-equiv="refresh">`` targets
            follow_script_redirects: Follow literal JavaScript location targets
            validate_ssl: Verify TLS certificates
            headers: Extra request headers
            user_agent: User agent sent with every hop
            guard: SSRF guard consulted before every hop
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.max_redirects = max_redirects
        self.timeout = timeout
        self.follow_meta_refresh = follow_meta_refresh
        self.follow_script_redirects = follow_script_redirects
        self.validate_ssl = validate_ssl
        self.headers = headers or {}
        self.user_agent = user_agent
        self.guard = guard or SSRFGuard()
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return build_client(
            self.timeout,
            user_agent=self.user_agent,
            headers=self.headers,
            verify=self.validate_ssl,
            transport=self._transport,
        )

    async def resolve(self, url: str) -> RedirectChain:
        """Resolve the redirect chain starting at ``url``."""
        async with self._client() as client:
            return await self._resolve_with(client, url)

    async def _resolve_with(self, client: httpx.AsyncClient, url: str) -> RedirectChain:
        chain = RedirectChain()
        seen = set()
        current = url
        redirects = 0

        while True:
            key = canonical_url(current)
            if key in seen:
                logger.info(f"Redirect loop detected at {current}")
                chain.hops.append(RedirectHop(
                    url=current, error="Redirect loop detected", error_kind="loop"
                ))
                chain.loop_detected = True
                chain.add_flag("redirect-loop")
                break
            seen.add(key)

            try:
                await self.guard.ensure_allowed(current)
            except SSRFBlockedError as e:
                logger.warning(f"Redirect hop blocked: {current} ({e.reason})")
                chain.hops.append(RedirectHop(url=current, error=str(e), error_kind="blocked"))
                chain.add_flag("ssrf-blocked")
                break

            hop = await self._fetch_hop(client, current)
            chain.hops.append(hop)
            if hop.error:
                break

            target, redirect_type = self._next_target(hop, chain)
            if target is None:
                break

            if redirects >= self.max_redirects:
                chain.truncated = True
                chain.add_flag("too-many-redirects")
                break

            hop.redirect_type = redirect_type
            redirects += 1
            current = target

        return chain

    async def _fetch_hop(self, client: httpx.AsyncClient, url: str) -> RedirectHop:
        start = time.perf_counter()
        try:
            status, headers, body = await asyncio.wait_for(
                self._read(client, url), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            return RedirectHop(
                url=url,
                error="Request timeout",
                error_kind="timeout",
                response_time_ms=(time.perf_counter() - start) * 1000,
            )
        except httpx.HTTPError as e:
            return RedirectHop(
                url=url,
                error=describe_error(e),
                error_kind=classify_error(e),
                response_time_ms=(time.perf_counter() - start) * 1000,
            )

        return RedirectHop(
            url=url,
            status=status,
            headers=headers,
            body_snippet=body,
            location=headers.get("location"),
            response_time_ms=(time.perf_counter() - start) * 1000,
            script_redirect_detected=has_script_redirect(body) if body else False,
        )

    async def _read(self, client: httpx.AsyncClient, url: str) -> Tuple[int, Dict[str, str], str]:
        """GET a URL keeping at most REDIRECT_BODY_SNIPPET_BYTES of the body."""
        async with client.stream("GET", url) as response:
            chunks = []
            size = 0
            async for chunk in response.aiter_bytes():
                chunks.append(chunk)
                size += len(chunk)
                if size >= REDIRECT_BODY_SNIPPET_BYTES:
                    break
            raw = b"".join(chunks)[:REDIRECT_BODY_SNIPPET_BYTES]
            encoding = response.encoding or "utf-8"
            return (
                response.status_code,
                dict(response.headers),
                raw.decode(encoding, errors="replace"),
            )

    def _next_target(
        self, hop: RedirectHop, chain: RedirectChain
    ) -> Tuple[Optional[str], Optional[RedirectType]]:
        if hop.is_http_redirect:
            if not hop.location:
                return None, None
            target = resolve_url(hop.location, hop.url)
            if target is None:
                logger.info(f"Malformed Location header at {hop.url}: {hop.location!r}")
                chain.add_flag("malformed-location")
                return None, None
            return target, RedirectType.HTTP

        if hop.status != 200:
            return None, None
        if "html" not in hop.headers.get("content-type", "").lower():
            return None, None

        if self.follow_meta_refresh:
            raw = extract_meta_refresh(hop.body_snippet)
            if raw:
                target = resolve_url(raw, hop.url)
                if target is None:
                    chain.add_flag("malformed-location")
                    return None, None
                return target, RedirectType.META_REFRESH

        if self.follow_script_redirects and hop.script_redirect_detected:
            raw = extract_script_target(hop.body_snippet)
            target = resolve_url(raw, hop.url) if raw else None
            if target is not None:
                return target, RedirectType.JAVASCRIPT

        return None, None

    async def resolve_variants(
        self, url: str, max_variants: int = MAX_URL_VARIANTS
    ) -> VariantProbeResult:
        """Probe scheme/host/path permutations of ``url`` concurrently.

        Every candidate is reported. The first successful candidate in probe
        order supplies the main chain.
        """
        candidates = build_url_variants(url, max_variants)
        logger.debug(f"Probing {len(candidates)} variants of {url}")

        async with self._client() as client:
            results = await asyncio.gather(*(
                self._probe_variant(client, candidate) for candidate in candidates
            ))

        main: Optional[RedirectChain] = None
        reports: List[VariantReport] = []
        for chain, report in results:
            reports.append(report)
            if main is None and report.success:
                main = chain
        return VariantProbeResult(chain=main, reports=reports)

    async def _probe_variant(
        self, client: httpx.AsyncClient, candidate: str
    ) -> Tuple[RedirectChain, VariantReport]:
        start = time.perf_counter()
        chain = await self._resolve_with(client, candidate)
        elapsed = (time.perf_counter() - start) * 1000

        if not chain.succeeded:
            first = chain.hops[0] if chain.hops else None
            return chain, VariantReport(
                candidate=candidate,
                success=False,
                error=first.error if first else "Failed to fetch URL",
                error_kind=first.error_kind if first else "network",
                response_time_ms=elapsed,
            )

        final = chain.final_hop
        return chain, VariantReport(
            candidate=candidate,
            success=True,
            chain_length=chain.redirect_count,
            final_url=final.url,
            final_status=final.status,
            response_time_ms=elapsed,
        )
