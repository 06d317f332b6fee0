"""Exception taxonomy for the site auditor.

Each error carries a machine-readable ``code`` and the HTTP status the API
answers with. Protocol anomalies (redirect loops, too many redirects,
malformed Location headers) are not exceptions; they are recorded as flags on
the resulting chain.
"""

from typing import Optional


class SiteAuditError(Exception):
    """Base class for all errors raised by the site auditor."""

    code = "INTERNAL_ERROR"
    http_status = 500
    suggestion: Optional[str] = None

    def __init__(self, message: str, suggestion: Optional[str] = None):
        self.message = message
        if suggestion is not None:
            self.suggestion = suggestion
        super().__init__(message)


# Input validation: rejected immediately, never retried

class InvalidInputError(SiteAuditError):
    code = "INVALID_INPUT"
    http_status = 400


class InvalidPayloadError(InvalidInputError):
    code = "INVALID_PAYLOAD"
    suggestion = "Ensure your request includes a valid URL string in the body"


class InvalidURLError(InvalidInputError):
    code = "INVALID_URL"
    suggestion = "URL must start with http:// or https:// and be properly formatted"


# Security rejections: distinct status, never retried

class SecurityBlockedError(SiteAuditError):
    code = "SECURITY_BLOCKED"
    http_status = 403


class SSRFBlockedError(SecurityBlockedError):
    code = "SSRF_BLOCKED"
    suggestion = "Only public URLs can be analyzed"

    def __init__(self, url: str, reason: str = "resolves to a private or reserved address"):
        self.url = url
        self.reason = reason
        super().__init__(f"URL blocked for security reasons (SSRF protection): {reason}")


class RateLimitExceededError(SecurityBlockedError):
    code = "RATE_LIMIT_EXCEEDED"
    http_status = 429

    def __init__(self, decision):
        self.decision = decision
        super().__init__(
            "Too many requests. Please try again later.",
            suggestion=f"Limit: {decision.limit} requests per window",
        )


# Network failures: recorded per hop/link/task, fatal only at mandatory stages

class NetworkFailureError(SiteAuditError):
    code = "FETCH_ERROR"
    http_status = 502
    suggestion = "The website may be blocking automated requests or experiencing issues"


class WebsiteUnreachableError(NetworkFailureError):
    code = "WEBSITE_UNREACHABLE"
    http_status = 404
    suggestion = "Verify the URL is correct and the website is online"


class FetchFailedError(NetworkFailureError):
    code = "FETCH_ERROR"


class SSLFailureError(NetworkFailureError):
    code = "SSL_ERROR"
    suggestion = "The website has SSL certificate issues. Contact the website administrator."


class CrawlFailedError(NetworkFailureError):
    code = "CRAWL_FAILED"


# Deadlines

class AnalysisTimeoutError(SiteAuditError):
    code = "TIMEOUT_ERROR"
    http_status = 408
    suggestion = "Try checking a different URL or contact the website administrator"
