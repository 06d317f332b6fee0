"""FastAPI application exposing site analysis and redirect checking."""

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from siteaudit.config import AuditConfig, settings
from siteaudit.constants import (
    MAX_ANALYZE_TIMEOUT_MS,
    MAX_REDIRECT_TIMEOUT_MS,
    MIN_ANALYZE_TIMEOUT_MS,
    REDIRECT_CHECKS_PERFORMED,
)
from siteaudit.exceptions import (
    AnalysisTimeoutError,
    FetchFailedError,
    InvalidPayloadError,
    InvalidURLError,
    RateLimitExceededError,
    SiteAuditError,
)
from siteaudit.http_client import error_for_kind
from siteaudit.infrastructure.metrics import MetricsCollector, metrics as default_metrics
from siteaudit.infrastructure.rate_limiter import RateLimitConfig, SlidingWindowRateLimiter
from siteaudit.infrastructure.ssrf_guard import SSRFGuard
from siteaudit.models import AnalysisMode, RateLimitDecision, VariantReport
from siteaudit.orchestrator import AnalysisOrchestrator
from siteaudit.redirect_analyzer import RedirectAnalyzer
from siteaudit.redirect_resolver import RedirectChainResolver
from siteaudit.utils.urls import is_http_url

logger = logging.getLogger(__name__)


# =============================================================================
# Request models
# =============================================================================

class AnalyzeOptions(BaseModel):
    mode: AnalysisMode = AnalysisMode.FULL
    timeout: Optional[int] = Field(default=None, description="Outer deadline in milliseconds")


class AnalyzeRequest(BaseModel):
    url: str
    options: AnalyzeOptions = Field(default_factory=AnalyzeOptions)


class RedirectCheckOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    max_redirects: Optional[int] = Field(default=None, alias="maxRedirects")
    timeout: Optional[int] = Field(default=None, description="Per-hop timeout in milliseconds")
    follow_meta_refresh: bool = Field(default=True, alias="followMetaRefresh")
    follow_javascript_redirects: bool = Field(default=False, alias="followJavaScriptRedirects")
    validate_ssl: bool = Field(default=True, alias="validateSSL")
    headers: Optional[Dict[str, str]] = None
    user_agent: Optional[str] = Field(default=None, alias="userAgent")


class RedirectCheckRequest(BaseModel):
    url: str
    options: RedirectCheckOptions = Field(default_factory=RedirectCheckOptions)


# =============================================================================
# Helpers
# =============================================================================

def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def error_envelope(
    error: SiteAuditError, report_id: Optional[str] = None
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "error": error.message,
        "code": error.code,
        "timestamp": _timestamp(),
    }
    if report_id:
        payload["reportId"] = report_id
    if error.suggestion:
        payload["suggestion"] = error.suggestion
    return payload


def error_from_variant(report: Optional[VariantReport]) -> SiteAuditError:
    """Translate the failure of the as-given URL into an API error."""
    if report is None:
        return FetchFailedError("Unable to fetch website content")
    return error_for_kind(report.error_kind, report.error or "Failed to fetch URL", report.candidate)


def clamp(value: Optional[int], default: int, low: int, high: int) -> int:
    if not value or value <= 0:
        value = default
    return max(low, min(value, high))


def client_identity(request: Request) -> str:
    return request.client.host if request.client else "unknown"


# =============================================================================
# Application factory
# =============================================================================

def create_app(
    config: Optional[AuditConfig] = None,
    guard: Optional[SSRFGuard] = None,
    limiter: Optional[SlidingWindowRateLimiter] = None,
    metrics: Optional[MetricsCollector] = None,
    orchestrator_factory: Optional[Callable[[], AnalysisOrchestrator]] = None,
    resolver_factory: Optional[Callable[..., RedirectChainResolver]] = None,
) -> FastAPI:
    """
    Build the API application.

    Args:
        config: Audit configuration (defaults to environment)
        guard: SSRF guard shared by every request
        limiter: Sliding window limiter shared by rate-limited routes
        metrics: Metrics registry
        orchestrator_factory: Builds one orchestrator per analysis
        resolver_factory: Builds one resolver per redirect check from keyword options
    """
    config = config or AuditConfig.from_env()
    guard = guard or SSRFGuard()
    limiter = limiter or SlidingWindowRateLimiter(RateLimitConfig(
        window_seconds=config.rate_limit_window_seconds,
        max_requests=config.rate_limit_max_requests,
    ))
    metrics = metrics or default_metrics
    orchestrator_factory = orchestrator_factory or (
        lambda: AnalysisOrchestrator(config=config, guard=guard)
    )
    resolver_factory = resolver_factory or (
        lambda **options: RedirectChainResolver(guard=guard, **options)
    )
    analyzer = RedirectAnalyzer(suspicious_domains=config.suspicious_domains)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan: start and stop the rate limiter sweeper."""
        sweeper = asyncio.create_task(limiter.run_sweeper())
        logger.info("Rate limiter sweeper started")
        try:
            yield
        finally:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass
            logger.info("Rate limiter sweeper stopped")

    app = FastAPI(
        title="Site Audit API",
        version=settings.VERSION,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.limiter = limiter
    app.state.metrics = metrics

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-Id"] = request_id
        metrics.record_request(request.url.path, response.status_code, duration_ms)
        return response

    @app.exception_handler(SiteAuditError)
    async def handle_site_audit_error(request: Request, exc: SiteAuditError):
        report_id = getattr(request.state, "report_id", None)
        headers = dict(getattr(request.state, "extra_headers", {}))
        metrics.increment("requests_failed", labels={"code": exc.code})
        if exc.http_status >= 500:
            logger.error(f"{request.url.path} failed [{exc.code}]: {exc.message}")
        else:
            logger.info(f"{request.url.path} rejected [{exc.code}]: {exc.message}")
        return JSONResponse(
            status_code=exc.http_status,
            content=error_envelope(exc, report_id),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        error = InvalidPayloadError("Request body must include a string `url` field")
        return await handle_site_audit_error(request, error)

    async def admit(request: Request) -> RateLimitDecision:
        decision = await limiter.check_limit(client_identity(request))
        headers = {
            "X-Rate-Limit-Limit": str(decision.limit),
            "X-Rate-Limit-Remaining": str(decision.remaining),
            "Cache-Control": "no-store",
            "X-Content-Type-Options": "nosniff",
        }
        request.state.extra_headers = headers
        if not decision.allowed:
            headers["Retry-After"] = str(max(0, int(decision.reset_time - time.time())))
            metrics.increment("requests_rate_limited")
            raise RateLimitExceededError(decision)

        report_id = str(uuid.uuid4())
        request.state.report_id = report_id
        headers["X-Report-Id"] = report_id
        return decision

    def apply_headers(request: Request, response: Response) -> None:
        for name, value in request.state.extra_headers.items():
            response.headers[name] = value

    def validated_url(raw: str) -> str:
        url = (raw or "").strip()
        if not url or not is_http_url(url):
            raise InvalidURLError("Please provide a valid HTTP or HTTPS URL")
        return url

    @app.post("/analyze")
    async def analyze(body: AnalyzeRequest, request: Request, response: Response):
        await admit(request)
        apply_headers(request, response)
        url = validated_url(body.url)
        await guard.ensure_allowed(url)

        timeout_ms = clamp(
            body.options.timeout, config.analyze_timeout_ms,
            MIN_ANALYZE_TIMEOUT_MS, MAX_ANALYZE_TIMEOUT_MS,
        )
        timeout = timeout_ms / 1000.0
        report_id = request.state.report_id
        logger.info(f"analyze:start reportId={report_id} url={url} mode={body.options.mode.value}")
        metrics.increment("analyze_started")

        orchestrator = orchestrator_factory()
        try:
            # Small grace so the orchestrator's own deadline handling wins
            report = await asyncio.wait_for(
                orchestrator.run(url, body.options.mode, timeout=timeout),
                timeout=timeout + 5.0,
            )
        except asyncio.TimeoutError as e:
            raise AnalysisTimeoutError(
                "Request timeout - the website took too long to respond"
            ) from e

        metrics.increment("analyze_completed")
        metrics.observe("analyze_duration_ms", report.duration_ms)
        logger.info(f"analyze:completed reportId={report_id} durationMs={report.duration_ms:.0f}")

        data = report.to_dict()
        return {
            "reportId": report_id,
            "status": "completed",
            "analyzedUrl": url,
            "analysisTimestamp": _timestamp(),
            "result": {
                "results": data["results"],
                "statusByTask": data["statusByTask"],
                "summary": data["summary"],
                "mode": data["mode"],
                "durationMs": data["durationMs"],
            },
        }

    @app.post("/redirect-check")
    async def redirect_check(body: RedirectCheckRequest, request: Request, response: Response):
        start = time.perf_counter()
        await admit(request)
        apply_headers(request, response)
        url = validated_url(body.url)
        await guard.ensure_allowed(url)

        options = body.options
        requested = config.max_redirects if options.max_redirects is None else options.max_redirects
        max_redirects = min(requested, config.max_redirects)
        timeout_ms = min(options.timeout or config.redirect_timeout_ms, MAX_REDIRECT_TIMEOUT_MS)
        resolver_options: Dict[str, Any] = dict(
            max_redirects=max(0, max_redirects),
            timeout=max(1, timeout_ms) / 1000.0,
            follow_meta_refresh=options.follow_meta_refresh,
            follow_script_redirects=options.follow_javascript_redirects,
            validate_ssl=options.validate_ssl,
            headers=options.headers,
            user_agent=options.user_agent or config.user_agent,
        )
        report_id = request.state.report_id
        logger.info(f"redirect-check:start reportId={report_id} url={url}")
        metrics.increment("redirect_checks_started")

        resolver = resolver_factory(**resolver_options)
        try:
            probe = await asyncio.wait_for(
                resolver.resolve_variants(url), timeout=config.analyze_timeout_seconds
            )
        except asyncio.TimeoutError as e:
            raise AnalysisTimeoutError(
                "Request timeout - the website took too long to respond"
            ) from e

        if probe.chain is None:
            raise error_from_variant(probe.reports[0] if probe.reports else None)

        analysis = analyzer.analyze(probe.chain)
        processing_ms = (time.perf_counter() - start) * 1000
        metrics.increment("redirect_checks_completed")
        metrics.observe("redirect_chain_length", analysis.total_redirects)
        metrics.observe("redirect_check_duration_ms", processing_ms)
        logger.info(
            f"redirect-check:completed reportId={report_id} "
            f"totalRedirects={analysis.total_redirects} "
            f"securityIssues={len(analysis.security_issues)} seoIssues={len(analysis.seo_issues)}"
        )

        summary = analysis.to_dict()
        summary["processingTime"] = round(processing_ms, 1)
        summary["checksPerformed"] = list(REDIRECT_CHECKS_PERFORMED)
        return {
            "reportId": report_id,
            "status": "completed",
            "analyzedUrl": url,
            "analysisTimestamp": _timestamp(),
            "redirectChain": probe.chain.to_list(),
            "flags": list(probe.chain.flags),
            "summary": summary,
            "variantReports": [r.to_dict() for r in probe.reports],
        }

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "timestamp": _timestamp(),
            "uptime": round(metrics.uptime_seconds, 1),
            "version": settings.VERSION,
            "environment": settings.ENVIRONMENT,
            "limits": config.limits(),
        }

    @app.get("/metrics")
    async def get_metrics():
        snapshot = metrics.snapshot()
        snapshot["rateLimiter"] = limiter.get_stats()
        return snapshot

    return app


app = create_app()
