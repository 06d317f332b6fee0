"""
SSRF Guard.

Validates that a URL does not point at a loopback, private, link-local or
otherwise internal address before any outbound fetch is issued.

Resolution failures for both address families fail open: the URL is allowed
and the condition is logged, so DNS flakiness does not block public sites.
"""

import asyncio
import ipaddress
import logging
import socket
import time
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlparse

from siteaudit.constants import SSRF_DENYLIST
from siteaudit.exceptions import SSRFBlockedError

logger = logging.getLogger(__name__)

# (hostname, family) -> list of address strings
Resolver = Callable[[str, int], Awaitable[List[str]]]

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


async def system_resolver(hostname: str, family: int) -> List[str]:
    """Resolve hostname for one address family using the event loop's getaddrinfo."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(hostname, None, family=family, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


def is_blocked_address(address: IPAddress) -> bool:
    """True for loopback, RFC1918/ULA private, link-local and other non-public addresses."""
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped
    return (
        address.is_loopback
        or address.is_private
        or address.is_link_local
        or address.is_unspecified
        or address.is_multicast
        or address.is_reserved
    )


def _parse_ip(text: str) -> Optional[IPAddress]:
    # Scoped IPv6 literals carry a zone id, e.g. fe80::1%eth0
    try:
        return ipaddress.ip_address(text.split('%', 1)[0])
    except ValueError:
        return None


class SSRFGuard:
    """
    Decides whether an outbound fetch to a URL is allowed.

    Features:
    - Scheme check (http/https only)
    - Literal IP checks for IPv4 and IPv6 (including IPv4-mapped IPv6)
    - A and AAAA resolution; any blocked address rejects the host
    - Explicit hostname denylist
    - Short-lived, size-bounded per-host verdict cache
    """

    def __init__(
        self,
        resolver: Optional[Resolver] = None,
        denylist: Iterable[str] = SSRF_DENYLIST,
        resolve_timeout: float = 5.0,
        cache_ttl: float = 30.0,
        max_cache_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the guard.

        Args:
            resolver: Async callable (hostname, family) -> addresses
            denylist: Hostnames rejected without resolution
            resolve_timeout: Deadline for each DNS lookup (seconds)
            cache_ttl: Seconds a per-host verdict is reused
            max_cache_entries: Upper bound on cached verdicts
            clock: Monotonic time source
        """
        self._resolver = resolver or system_resolver
        self.denylist = frozenset(h.lower() for h in denylist)
        self.resolve_timeout = resolve_timeout
        self.cache_ttl = cache_ttl
        self.max_cache_entries = max(1, max_cache_entries)
        self._clock = clock
        self._cache: Dict[str, Tuple[float, Optional[str]]] = {}

    async def is_allowed_url(self, url: str) -> bool:
        return await self.blocked_reason(url) is None

    async def ensure_allowed(self, url: str) -> None:
        """Raise SSRFBlockedError if the URL must not be fetched."""
        reason = await self.blocked_reason(url)
        if reason is not None:
            raise SSRFBlockedError(url, reason)

    async def blocked_reason(self, url: str) -> Optional[str]:
        """
        Explain why a URL is blocked.

        Returns:
            None when the URL is allowed, otherwise a short reason
        """
        try:
            parsed = urlparse(url)
        except ValueError:
            return "malformed URL"

        if parsed.scheme.lower() not in ("http", "https"):
            return f"scheme '{parsed.scheme}' is not allowed"

        hostname = (parsed.hostname or "").rstrip('.').lower()
        if not hostname:
            return "URL has no host"

        if hostname in self.denylist or hostname.endswith(".localhost"):
            return f"host '{hostname}' is denylisted"

        literal = _parse_ip(hostname)
        if literal is not None:
            if is_blocked_address(literal):
                return f"address {literal} is private, loopback or link-local"
            return None

        cached = self._cache.get(hostname)
        now = self._clock()
        if cached is not None and now - cached[0] < self.cache_ttl:
            return cached[1]

        reason = await self._check_hostname(hostname)
        self._remember(hostname, now, reason)
        return reason

    def _remember(self, hostname: str, now: float, reason: Optional[str]) -> None:
        expired = [host for host, (at, _) in self._cache.items() if now - at >= self.cache_ttl]
        for host in expired:
            del self._cache[host]
        # Oldest entries first; re-inserting keeps that order
        self._cache.pop(hostname, None)
        while len(self._cache) >= self.max_cache_entries:
            del self._cache[next(iter(self._cache))]
        self._cache[hostname] = (now, reason)

    async def _check_hostname(self, hostname: str) -> Optional[str]:
        results = await asyncio.gather(
            self._resolve(hostname, socket.AF_INET),
            self._resolve(hostname, socket.AF_INET6),
            return_exceptions=True,
        )

        addresses: List[str] = []
        failures = 0
        for result in results:
            if isinstance(result, BaseException):
                failures += 1
            else:
                addresses.extend(result)

        if failures == len(results) or not addresses:
            logger.warning(
                f"SSRF guard could not resolve {hostname}; allowing (fail-open)"
            )
            return None

        for text in addresses:
            address = _parse_ip(text)
            if address is not None and is_blocked_address(address):
                logger.warning(f"SSRF guard blocked {hostname} -> {address}")
                return f"host '{hostname}' resolves to private address {address}"

        return None

    async def _resolve(self, hostname: str, family: int) -> List[str]:
        return await asyncio.wait_for(
            self._resolver(hostname, family), timeout=self.resolve_timeout
        )

    def clear_cache(self) -> None:
        self._cache.clear()
