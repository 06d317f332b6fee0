# src/siteaudit/constants.py
"""Centralized constants for the site auditor.

Defaults here are used when neither the environment nor a config file
overrides them. For the runtime configuration object, see config.py and
AuditConfig.
"""

# =============================================================================
# Request Boundary Constants
# =============================================================================

# Outer deadline for a full /analyze request (milliseconds)
DEFAULT_ANALYZE_TIMEOUT_MS = 280_000

# Hard ceiling for caller-supplied analysis timeouts (milliseconds)
MAX_ANALYZE_TIMEOUT_MS = 300_000

# Floor for caller-supplied analysis timeouts (milliseconds)
MIN_ANALYZE_TIMEOUT_MS = 30_000

# Sliding window rate limit
DEFAULT_RATE_LIMIT_WINDOW_SECONDS = 60.0
DEFAULT_RATE_LIMIT_MAX_REQUESTS = 50

# Seconds between bulk sweeps of idle rate limit identities
RATE_LIMIT_SWEEP_INTERVAL_SECONDS = 60.0

# Hostnames refused by the SSRF guard without resolving them
SSRF_DENYLIST = frozenset({"localhost", "0.0.0.0", "ip6-localhost", "ip6-loopback"})


# =============================================================================
# Crawler Constants
# =============================================================================

DEFAULT_CRAWL_MAX_DEPTH = 2
DEFAULT_CRAWL_MAX_PAGES = 10

# Per-page fetch timeout and overall crawl deadline (seconds)
DEFAULT_CRAWL_REQUEST_TIMEOUT_SECONDS = 5.0
DEFAULT_CRAWL_TIMEOUT_SECONDS = 15.0

DEFAULT_CRAWL_MAX_CONCURRENT = 3

# Token bucket refill rate for crawl fetches
DEFAULT_CRAWL_REQUESTS_PER_SECOND = 4.0

# Redirects followed when fetching a page for content (not chain analysis)
CONTENT_FETCH_MAX_REDIRECTS = 5

DEFAULT_USER_AGENT = "SiteAudit-Bot/1.0 (+https://github.com/siteaudit/siteaudit)"


# =============================================================================
# Link Checker Constants
# =============================================================================

DEFAULT_LINK_CHECK_PER_PAGE = 5
DEFAULT_LINK_CHECK_TOTAL = 15
DEFAULT_LINK_CHECK_CONCURRENCY = 5
DEFAULT_LINK_CHECK_TIMEOUT_SECONDS = 3.0

# Status codes that mean "HEAD not supported, retry with GET"
HEAD_FALLBACK_STATUS_CODES = (405, 501)

# Referer recorded for pages that failed during the crawl itself
CRAWLER_REFERER = "crawler"


# =============================================================================
# Redirect Constants
# =============================================================================

DEFAULT_MAX_REDIRECTS = 20
DEFAULT_REDIRECT_TIMEOUT_MS = 30_000
MAX_REDIRECT_TIMEOUT_MS = 60_000

# Bytes of body kept per hop for meta-refresh / script detection
REDIRECT_BODY_SNIPPET_BYTES = 64 * 1024

# Upper bound on scheme/host/path permutations probed per request
MAX_URL_VARIANTS = 8

# Chains with more redirects than this are "too long" for SEO
REDIRECT_CHAIN_TOO_LONG = 3

TEMPORARY_REDIRECT_CODES = (302, 303, 307)

REDIRECT_CHECKS_PERFORMED = [
    "redirect-chain",
    "status-codes",
    "domain-changes",
    "security-issues",
    "seo-issues",
    "performance-metrics",
]


# =============================================================================
# Orchestrator Constants
# =============================================================================

# Per-task (timeout seconds, retries), taken from production tuning
DEFAULT_TASK_POLICIES = {
    "crawl": (15.0, 0),
    "brokenLinks": (20.0, 0),
    "speed": (60.0, 0),
    "mobile": (15.0, 1),
    "validation": (15.0, 1),
    "schema": (12.0, 0),
}

# Linear backoff unit between retries (seconds)
DEFAULT_RETRY_BACKOFF_SECONDS = 1.0

# The crawler returns partial results at its own deadline; the orchestrator's
# hard stop on the crawl fires this much later
CRAWL_DEADLINE_GRACE_SECONDS = 2.0

# Tasks skipped outright in fast mode
FAST_MODE_SKIPPED_TASKS = ("speed", "schema")


# =============================================================================
# Auditor Constants
# =============================================================================

MOBILE_MIN_FONT_SIZE_PX = 12.0
AUDITOR_FETCH_MAX_REDIRECTS = 3
SITEMAP_FETCH_TIMEOUT_SECONDS = 10.0

# Child sitemaps followed from a sitemap index
MAX_CHILD_SITEMAPS = 3

LIGHTHOUSE_CHROME_FLAGS = [
    "--headless=new",
    "--disable-gpu",
    "--no-sandbox",
    "--disable-dev-shm-usage",
]


# =============================================================================
# Metrics Constants
# =============================================================================

# Samples retained per histogram
HISTOGRAM_MAX_SAMPLES = 1000
