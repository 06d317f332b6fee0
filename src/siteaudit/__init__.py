"""Technical site auditor: crawling, link checks, redirect chains and crawlability."""

__version__ = "0.1.0"

from siteaudit.site_crawler import AsyncSiteCrawler
from siteaudit.link_checker import BrokenLinkChecker
from siteaudit.redirect_resolver import RedirectChainResolver
from siteaudit.redirect_analyzer import RedirectAnalyzer
from siteaudit.lighthouse_runner import LighthouseRunner
from siteaudit.mobile_scanner import MobileScanner
from siteaudit.sitemap_validator import SitemapValidator
from siteaudit.structured_data import StructuredDataChecker
from siteaudit.site_architecture import build_depth_map
from siteaudit.orchestrator import AnalysisOrchestrator
from siteaudit.models import (
    AnalysisMode,
    AnalysisReport,
    AnalysisResults,
    ChainAnalysis,
    CrawledPage,
    LinkCheckReport,
    RedirectChain,
    RedirectHop,
    TaskStatus,
)
from siteaudit.config import AuditConfig, settings

# Infrastructure
from siteaudit.infrastructure import (
    MetricsCollector,
    RateLimitConfig,
    SlidingWindowRateLimiter,
    SSRFGuard,
    TokenBucketLimiter,
)

__all__ = [
    # Core
    "AsyncSiteCrawler",
    "BrokenLinkChecker",
    "RedirectChainResolver",
    "RedirectAnalyzer",
    "LighthouseRunner",
    "MobileScanner",
    "SitemapValidator",
    "StructuredDataChecker",
    "build_depth_map",
    "AnalysisOrchestrator",
    # Models
    "AnalysisMode",
    "AnalysisReport",
    "AnalysisResults",
    "ChainAnalysis",
    "CrawledPage",
    "LinkCheckReport",
    "RedirectChain",
    "RedirectHop",
    "TaskStatus",
    "AuditConfig",
    "settings",
    # Infrastructure
    "MetricsCollector",
    "RateLimitConfig",
    "SlidingWindowRateLimiter",
    "SSRFGuard",
    "TokenBucketLimiter",
]
