"""Redirect chain analyzer for security and SEO assessment."""

import logging
from typing import Iterable, List, Optional

from siteaudit.constants import REDIRECT_CHAIN_TOO_LONG, TEMPORARY_REDIRECT_CODES
from siteaudit.models import (
    ChainAnalysis,
    DomainChange,
    RedirectChain,
    RedirectHop,
    RedirectType,
)
from siteaudit.utils.urls import host_of, strip_www

logger = logging.getLogger(__name__)


def _append_once(items: List[str], value: str) -> None:
    if value not in items:
        items.append(value)


class RedirectAnalyzer:
    """Analyzes a resolved redirect chain and its performance impact."""

    def __init__(self, suspicious_domains: Optional[Iterable[str]] = None):
        """Initialize analyzer.

        Args:
            suspicious_domains: Hosts whose appearance as the final
                destination is reported as ``suspicious-redirect``
        """
        self.suspicious_domains = [
            d.strip().lower() for d in (suspicious_domains or []) if d.strip()
        ]

    def analyze(self, chain: RedirectChain) -> ChainAnalysis:
        """Analyze one redirect chain.

        Args:
            chain: Chain returned by RedirectChainResolver

        Returns:
            ChainAnalysis with security issues, SEO issues and timings
        """
        analysis = ChainAnalysis(
            total_redirects=chain.redirect_count,
            truncated=chain.truncated,
        )
        if not chain.hops:
            return analysis

        final = self._final_hop(chain)
        analysis.final_url = final.url
        analysis.final_status = final.status
        analysis.has_redirects = analysis.total_redirects > 0

        self._analyze_hops(chain, analysis)
        self._analyze_flags(chain, analysis)

        if analysis.total_redirects > REDIRECT_CHAIN_TOO_LONG:
            _append_once(analysis.seo_issues, "redirect-chain-too-long")
        if analysis.total_redirects > 1:
            _append_once(analysis.seo_issues, "multiple-redirects")

        if self._is_suspicious(analysis.final_url):
            _append_once(analysis.security_issues, "suspicious-redirect")

        first_url = chain.hops[0].url
        if len(chain.hops) > 1 and strip_www(host_of(first_url)) == strip_www(host_of(final.url)):
            analysis.canonical_redirect = {"from": first_url, "to": final.url}

        analysis.performance_metrics = self._performance_metrics(chain.hops)

        logger.debug(
            f"Analyzed chain from {first_url}: {analysis.total_redirects} redirects, "
            f"{len(analysis.security_issues)} security issues, "
            f"{len(analysis.seo_issues)} SEO issues"
        )
        return analysis

    def _final_hop(self, chain: RedirectChain) -> RedirectHop:
        """Last hop that produced a response, or the first hop if none did."""
        for hop in reversed(chain.hops):
            if hop.status is not None:
                return hop
        return chain.hops[0]

    def _analyze_hops(self, chain: RedirectChain, analysis: ChainAnalysis) -> None:
        previous: Optional[RedirectHop] = None

        for index, hop in enumerate(chain.hops):
            step = index + 1

            if hop.status is not None:
                analysis.status_codes.append({"step": step, "status": hop.status, "url": hop.url})

            if hop.redirect_type is not None:
                _append_once(analysis.redirect_types, hop.redirect_type.value)
                if (
                    hop.redirect_type is RedirectType.HTTP
                    and hop.status in TEMPORARY_REDIRECT_CODES
                ):
                    _append_once(analysis.seo_issues, "temporary-redirect-in-chain")
            elif hop.script_redirect_detected and index < len(chain.hops) - 1:
                _append_once(analysis.redirect_types, RedirectType.JAVASCRIPT.value)

            if previous is not None:
                prev_host = host_of(previous.url)
                host = host_of(hop.url)
                if strip_www(prev_host) != strip_www(host):
                    analysis.domain_changes.append(
                        DomainChange(from_host=prev_host, to_host=host, step=step)
                    )
                    _append_once(analysis.security_issues, "domain-change")
                if previous.url.lower().startswith("https://") and hop.url.lower().startswith("http://"):
                    _append_once(analysis.security_issues, "scheme-downgrade")

            previous = hop

    def _analyze_flags(self, chain: RedirectChain, analysis: ChainAnalysis) -> None:
        if chain.truncated or "too-many-redirects" in chain.flags:
            _append_once(analysis.security_issues, "too-many-redirects")
        if "ssrf-blocked" in chain.flags:
            _append_once(analysis.security_issues, "ssrf-blocked")
        if chain.loop_detected or "redirect-loop" in chain.flags:
            _append_once(analysis.seo_issues, "redirect-loop")

    def _is_suspicious(self, url: str) -> bool:
        host = host_of(url)
        return any(host == d or host.endswith("." + d) for d in self.suspicious_domains)

    def _performance_metrics(self, hops: List[RedirectHop]) -> dict:
        times = [hop.response_time_ms for hop in hops if hop.response_time_ms > 0]
        if not times:
            return {"totalTime": 0.0, "averageResponseTime": 0.0, "slowestStep": 0.0, "fastestStep": 0.0}
        total = sum(times)
        return {
            "totalTime": round(total, 1),
            "averageResponseTime": round(total / len(times), 1),
            "slowestStep": round(max(times), 1),
            "fastestStep": round(min(times), 1),
        }
