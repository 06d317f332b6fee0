"""Data models for crawling, link checking, redirect analysis and reports."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple


class TaskStatus(str, Enum):
    """Lifecycle of one orchestrated sub-analysis.

    Every task starts ``PENDING`` and moves exactly once to a terminal state.
    """
    PENDING = "pending"
    COMPLETE = "complete"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self is not TaskStatus.PENDING


class AnalysisMode(str, Enum):
    """Orchestrator run mode. FAST skips the costliest auditors."""
    FULL = "full"
    FAST = "fast"


class LinkOutcome(str, Enum):
    OK = "ok"
    REDIRECT = "redirect"
    BROKEN = "broken"


class RedirectType(str, Enum):
    HTTP = "http"
    META_REFRESH = "meta-refresh"
    JAVASCRIPT = "javascript"


@dataclass(frozen=True)
class CrawledPage:
    """A page fetched during one crawl run."""

    url: str
    http_status: int
    depth: int = 0
    title: Optional[str] = None
    meta_description: Optional[str] = None
    is_indexable: bool = True
    outbound_links: Tuple[str, ...] = ()
    crawl_error: bool = False
    error: Optional[str] = None
    # timeout, dns, connect, tls, network or blocked; None for HTTP errors
    error_kind: Optional[str] = None
    final_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "status": self.http_status,
            "depth": self.depth,
            "title": self.title,
            "description": self.meta_description,
            "isIndexable": self.is_indexable,
            "links": list(self.outbound_links),
            "error": self.crawl_error,
            "errorMessage": self.error,
            "errorKind": self.error_kind,
            "finalUrl": self.final_url,
        }


@dataclass(frozen=True)
class LinkProbeResult:
    """Outcome of probing a single discovered link."""

    url: str
    referer_url: str
    outcome: LinkOutcome
    status: Optional[int] = None
    location: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "url": self.url,
            "referer": self.referer_url,
            "outcome": self.outcome.value,
            "status": self.status if self.status is not None else "Error",
        }
        if self.location:
            data["to"] = self.location
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class LinkCheckReport:
    """Broken links and redirects found in a sample of crawled links."""
    broken: List[LinkProbeResult] = field(default_factory=list)
    redirects: List[LinkProbeResult] = field(default_factory=list)
    checked: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "broken": [b.to_dict() for b in self.broken],
            "redirects": [r.to_dict() for r in self.redirects],
            "checked": self.checked,
        }


@dataclass
class RedirectHop:
    """One fetch step within a redirect chain."""

    url: str
    status: Optional[int] = None
    headers: Dict[str, str] = field(default_factory=dict)
    body_snippet: str = ""
    error: Optional[str] = None
    error_kind: Optional[str] = None  # timeout/dns/connect/tls/network/blocked/loop
    redirect_type: Optional[RedirectType] = None  # set when this hop was followed
    location: Optional[str] = None
    response_time_ms: float = 0.0
    script_redirect_detected: bool = False

    @property
    def is_http_redirect(self) -> bool:
        return self.status is not None and 300 <= self.status < 400

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "url": self.url,
            "status": self.status,
            "headers": self.headers,
            "responseTime": round(self.response_time_ms, 1),
        }
        if self.redirect_type is not None:
            data["redirectType"] = self.redirect_type.value
        if self.location:
            data["location"] = self.location
        if self.script_redirect_detected:
            data["scriptRedirectDetected"] = True
        if self.error:
            data["error"] = self.error
            data["errorKind"] = self.error_kind
        return data


@dataclass
class RedirectChain:
    """Ordered hops, oldest first.

    A chain holds at most ``max_redirects + 1`` hops. It ends either in a
    non-redirecting response or carries a ``too-many-redirects`` flag.
    """

    hops: List[RedirectHop] = field(default_factory=list)
    truncated: bool = False
    loop_detected: bool = False
    flags: List[str] = field(default_factory=list)

    def add_flag(self, flag: str) -> None:
        if flag not in self.flags:
            self.flags.append(flag)

    @property
    def final_hop(self) -> Optional[RedirectHop]:
        return self.hops[-1] if self.hops else None

    @property
    def final_url(self) -> Optional[str]:
        hop = self.final_hop
        return hop.url if hop else None

    @property
    def redirect_count(self) -> int:
        return sum(1 for hop in self.hops if hop.redirect_type is not None)

    @property
    def succeeded(self) -> bool:
        """True when at least the first hop produced an HTTP response."""
        return bool(self.hops) and self.hops[0].status is not None

    def to_list(self) -> List[Dict[str, Any]]:
        return [hop.to_dict() for hop in self.hops]


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of one sliding-window admission check."""
    allowed: bool
    remaining: int
    reset_time: float  # epoch seconds
    limit: int


@dataclass
class SiteDepthMap:
    """Shortest traversal depth from the seed for every reachable crawled URL."""

    depths: Dict[str, int] = field(default_factory=dict)
    groups: Dict[int, List[Dict[str, str]]] = field(default_factory=dict)

    @property
    def max_depth(self) -> int:
        return max(self.groups) if self.groups else 0

    def to_dict(self) -> Dict[str, List[Dict[str, str]]]:
        return {str(depth): pages for depth, pages in sorted(self.groups.items())}


@dataclass
class DomainChange:
    from_host: str
    to_host: str
    step: int

    def to_dict(self) -> Dict[str, Any]:
        return {"from": self.from_host, "to": self.to_host, "step": self.step}


@dataclass
class ChainAnalysis:
    """Chain-level findings derived from a resolved redirect chain."""

    total_redirects: int = 0
    final_url: str = ""
    final_status: Optional[int] = None
    has_redirects: bool = False
    truncated: bool = False
    redirect_types: List[str] = field(default_factory=list)
    security_issues: List[str] = field(default_factory=list)
    seo_issues: List[str] = field(default_factory=list)
    domain_changes: List[DomainChange] = field(default_factory=list)
    status_codes: List[Dict[str, Any]] = field(default_factory=list)
    performance_metrics: Dict[str, float] = field(default_factory=dict)
    canonical_redirect: Optional[Dict[str, str]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "totalRedirects": self.total_redirects,
            "finalUrl": self.final_url,
            "finalStatus": self.final_status,
            "hasRedirects": self.has_redirects,
            "truncated": self.truncated,
            "redirectTypes": self.redirect_types,
            "securityIssues": self.security_issues,
            "seoIssues": self.seo_issues,
            "domainChanges": [c.to_dict() for c in self.domain_changes],
            "statusCodes": self.status_codes,
            "performanceMetrics": self.performance_metrics,
        }
        if self.canonical_redirect:
            data["canonicalRedirect"] = self.canonical_redirect
        return data


@dataclass
class VariantReport:
    """Outcome of probing one scheme/host/path permutation of a URL."""
    candidate: str
    success: bool
    error: Optional[str] = None
    error_kind: Optional[str] = None
    chain_length: Optional[int] = None
    final_url: Optional[str] = None
    final_status: Optional[int] = None
    response_time_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "candidate": self.candidate,
            "success": self.success,
            "responseTimeMs": round(self.response_time_ms, 1),
        }
        if self.success:
            data.update(
                chainLength=self.chain_length,
                finalUrl=self.final_url,
                finalStatus=self.final_status,
            )
        else:
            data["error"] = self.error
        return data


@dataclass
class VariantProbeResult:
    chain: Optional[RedirectChain]
    reports: List[VariantReport] = field(default_factory=list)


@dataclass
class SpeedResult:
    performance_score: float
    first_contentful_paint: str = "N/A"
    largest_contentful_paint: str = "N/A"
    cumulative_layout_shift: str = "N/A"
    total_blocking_time: str = "N/A"
    audit_duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "performanceScore": self.performance_score,
            "firstContentfulPaint": self.first_contentful_paint,
            "largestContentfulPaint": self.largest_contentful_paint,
            "cumulativeLayoutShift": self.cumulative_layout_shift,
            "totalBlockingTime": self.total_blocking_time,
            "auditDuration": f"{self.audit_duration_ms:.0f}ms",
        }


@dataclass
class MobileScanResult:
    is_mobile_friendly: bool
    viewport: bool
    touch_icons: bool
    appropriate_font_size: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isMobileFriendly": self.is_mobile_friendly,
            "viewport": self.viewport,
            "touchIcons": self.touch_icons,
            "appropriateFontSize": self.appropriate_font_size,
        }


@dataclass
class ValidationResult:
    robots_txt_exists: bool = False
    sitemap_exists: bool = False
    sitemap_url: Optional[str] = None
    sitemap_urls: List[str] = field(default_factory=list)
    missing_in_sitemap: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "robotsTxtExists": self.robots_txt_exists,
            "sitemapExists": self.sitemap_exists,
            "sitemapUrl": self.sitemap_url,
            "sitemapURLs": self.sitemap_urls,
            "missingInSitemap": self.missing_in_sitemap,
        }


@dataclass
class SchemaCheckResult:
    has_schema: bool = False
    schemas: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"hasSchema": self.has_schema, "schemas": self.schemas}


@dataclass
class AnalysisResults:
    """Per-task results. A task that did not complete leaves its slot as None."""
    crawl: Optional[Dict[str, CrawledPage]] = None
    broken_links: Optional[LinkCheckReport] = None
    speed: Optional[SpeedResult] = None
    mobile: Optional[MobileScanResult] = None
    validation: Optional[ValidationResult] = None
    schema: Optional[SchemaCheckResult] = None
    architecture: Optional[SiteDepthMap] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "crawl": (
                {url: page.to_dict() for url, page in self.crawl.items()}
                if self.crawl is not None else None
            ),
            "brokenLinks": self.broken_links.to_dict() if self.broken_links else None,
            "speed": self.speed.to_dict() if self.speed else None,
            "mobile": self.mobile.to_dict() if self.mobile else None,
            "validation": self.validation.to_dict() if self.validation else None,
            "schema": self.schema.to_dict() if self.schema else None,
            "architecture": self.architecture.to_dict() if self.architecture else None,
        }


@dataclass
class AnalysisReport:
    """What an orchestrator run returns: results plus the per-task status map."""
    seed_url: str
    mode: AnalysisMode
    results: AnalysisResults
    status_by_task: Mapping[str, TaskStatus]
    started_at: datetime = field(default_factory=datetime.now)
    duration_ms: float = 0.0

    def summary(self) -> Dict[str, Any]:
        pages = len(self.results.crawl) if self.results.crawl else 0
        broken = len(self.results.broken_links.broken) if self.results.broken_links else 0
        speed = self.results.speed
        mobile = self.results.mobile
        return {
            "pagesCrawled": pages,
            "brokenLinks": broken,
            "speedScore": round(speed.performance_score * 100) if speed else None,
            "mobileFriendly": mobile.is_mobile_friendly if mobile else None,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": self.results.to_dict(),
            "statusByTask": {name: status.value for name, status in self.status_by_task.items()},
            "summary": self.summary(),
            "mode": self.mode.value,
            "durationMs": round(self.duration_ms, 1),
        }
