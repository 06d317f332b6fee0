"""Analysis orchestration: crawl, then fan out independent auditors under deadlines.

A run proceeds in three stages:

1. Crawl the site (mandatory; a failure aborts the run).
2. Launch the link checker and the independent auditors concurrently. Each
   has its own timeout and retry budget, and its own status entry.
3. Derive the site depth map from the crawl.

An outer deadline bounds the whole run. Auditors still running when it
elapses are cancelled and marked ``timed_out``; results gathered so far are
kept.
"""

import asyncio
import logging
import time
from datetime import datetime
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import httpx

from siteaudit.config import AuditConfig, TaskPolicy, default_config
from siteaudit.constants import CRAWL_DEADLINE_GRACE_SECONDS, FAST_MODE_SKIPPED_TASKS
from siteaudit.exceptions import CrawlFailedError, InvalidURLError
from siteaudit.http_client import describe_error, error_for_kind
from siteaudit.infrastructure.ssrf_guard import SSRFGuard
from siteaudit.lighthouse_runner import LighthouseRunner
from siteaudit.link_checker import BrokenLinkChecker
from siteaudit.mobile_scanner import MobileScanner
from siteaudit.models import (
    AnalysisMode,
    AnalysisReport,
    AnalysisResults,
    CrawledPage,
    TaskStatus,
)
from siteaudit.site_architecture import build_depth_map
from siteaudit.site_crawler import AsyncSiteCrawler
from siteaudit.sitemap_validator import SitemapValidator
from siteaudit.structured_data import StructuredDataChecker
from siteaudit.utils.urls import is_http_url, normalize_url

logger = logging.getLogger(__name__)

TASK_NAMES = ("crawl", "brokenLinks", "speed", "mobile", "validation", "schema", "architecture")

# An httpx timeout inside an auditor counts as the task timing out
TIMEOUT_ERRORS = (asyncio.TimeoutError, httpx.TimeoutException)

# Task name -> AnalysisResults attribute
RESULT_SLOTS = {
    "crawl": "crawl",
    "brokenLinks": "broken_links",
    "speed": "speed",
    "mobile": "mobile",
    "validation": "validation",
    "schema": "schema",
    "architecture": "architecture",
}


class TaskStatusBoard:
    """Per-run task statuses. Each entry leaves ``pending`` at most once."""

    def __init__(self, names=TASK_NAMES):
        self._status: Dict[str, TaskStatus] = {name: TaskStatus.PENDING for name in names}
        self.view: Mapping[str, TaskStatus] = MappingProxyType(self._status)

    def set(self, name: str, status: TaskStatus) -> bool:
        """Record a terminal status. Returns False if the task was already terminal."""
        if self._status[name].is_terminal:
            logger.debug(f"Ignoring {status.value} for {name}: already {self._status[name].value}")
            return False
        self._status[name] = status
        return True

    def __getitem__(self, name: str) -> TaskStatus:
        return self._status[name]


async def with_retry(
    name: str,
    operation: Callable[[], Awaitable[Any]],
    policy: TaskPolicy,
    backoff_seconds: float,
) -> Any:
    """
    Run ``operation`` under ``policy.timeout``, retrying non-timeout failures.

    Backoff is linear: ``backoff_seconds * attempt``. A timeout is never
    retried.

    Raises:
        asyncio.TimeoutError: If an attempt exceeds the timeout
        httpx.TimeoutException: If the operation itself hit a request timeout
        Exception: The last failure once retries are exhausted
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await asyncio.wait_for(operation(), timeout=policy.timeout)
        except TIMEOUT_ERRORS:
            raise
        except Exception as e:
            if attempt > policy.retries:
                raise
            delay = backoff_seconds * attempt
            logger.info(f"{name} attempt {attempt} failed ({describe_error(e)}), retrying in {delay}s")
            await asyncio.sleep(delay)


class AnalysisOrchestrator:
    """Runs a full technical audit of one site.

    Auditors are built from the configuration unless supplied explicitly.
    """

    def __init__(
        self,
        config: Optional[AuditConfig] = None,
        guard: Optional[SSRFGuard] = None,
        crawler: Optional[AsyncSiteCrawler] = None,
        link_checker: Optional[BrokenLinkChecker] = None,
        speed_auditor: Optional[LighthouseRunner] = None,
        mobile_scanner: Optional[MobileScanner] = None,
        validator: Optional[SitemapValidator] = None,
        schema_checker: Optional[StructuredDataChecker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or default_config
        self.guard = guard or SSRFGuard()
        cfg = self.config
        ua = cfg.user_agent

        self.crawler = crawler or AsyncSiteCrawler(
            max_depth=cfg.crawl_max_depth,
            max_pages=cfg.crawl_max_pages,
            request_timeout=cfg.crawl_request_timeout_seconds,
            overall_timeout=cfg.crawl_timeout_seconds,
            max_concurrent=cfg.crawl_max_concurrent,
            requests_per_second=cfg.crawl_requests_per_second,
            respect_robots=cfg.respect_robots,
            user_agent=ua,
            guard=self.guard,
            transport=transport,
        )
        self.link_checker = link_checker or BrokenLinkChecker(
            per_page_limit=cfg.link_check_per_page,
            total_limit=cfg.link_check_total,
            concurrency=cfg.link_check_concurrency,
            user_agent=ua,
            guard=self.guard,
            transport=transport,
        )
        self.speed_auditor = speed_auditor or LighthouseRunner(guard=self.guard)
        self.mobile_scanner = mobile_scanner or MobileScanner(
            user_agent=ua, guard=self.guard, transport=transport
        )
        self.validator = validator or SitemapValidator(
            user_agent=ua, guard=self.guard, transport=transport
        )
        self.schema_checker = schema_checker or StructuredDataChecker(
            user_agent=ua, guard=self.guard, transport=transport
        )

    async def run(
        self,
        seed_url: str,
        mode: AnalysisMode = AnalysisMode.FULL,
        timeout: Optional[float] = None,
    ) -> AnalysisReport:
        """
        Analyze a site.

        Args:
            seed_url: Site entry point
            mode: FULL runs every auditor; FAST skips speed and schema
            timeout: Outer deadline in seconds (defaults to the configured one)

        Returns:
            AnalysisReport with per-task results and statuses

        Raises:
            InvalidURLError: If the URL is not an absolute http(s) URL
            SSRFBlockedError: If the URL targets a blocked address
            CrawlFailedError: If the mandatory crawl fails or overruns its deadline
            NetworkFailureError: If the seed page itself cannot be fetched
                (unreachable host, TLS or transport failure)
            AnalysisTimeoutError: If the seed page request times out
        """
        seed_url = (seed_url or "").strip()
        if not is_http_url(seed_url):
            raise InvalidURLError("Please provide a valid HTTP or HTTPS URL")
        await self.guard.ensure_allowed(seed_url)

        loop = asyncio.get_running_loop()
        overall = timeout if timeout is not None else self.config.analyze_timeout_seconds
        deadline = loop.time() + overall
        started_at = datetime.now()
        start = time.perf_counter()

        board = TaskStatusBoard()
        results = AnalysisResults()

        logger.info(f"Starting {mode.value} analysis of {seed_url} (deadline {overall}s)")

        pages = await self._run_crawl(seed_url, board, deadline - loop.time())
        results.crawl = pages

        if mode is AnalysisMode.FAST:
            for name in FAST_MODE_SKIPPED_TASKS:
                board.set(name, TaskStatus.SKIPPED)

        operations = self._auditor_operations(seed_url, pages)
        await self._fan_out(
            {name: op for name, op in operations.items() if not board[name].is_terminal},
            board,
            results,
            deadline - loop.time(),
        )

        try:
            results.architecture = build_depth_map(pages)
            board.set("architecture", TaskStatus.COMPLETE)
        except Exception as e:
            logger.warning(f"Architecture analysis failed: {describe_error(e)}")
            board.set("architecture", TaskStatus.FAILED)

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"Analysis completed in {duration_ms:.0f}ms: "
            + ", ".join(f"{name}={status.value}" for name, status in board.view.items())
        )
        return AnalysisReport(
            seed_url=seed_url,
            mode=mode,
            results=results,
            status_by_task=board.view,
            started_at=started_at,
            duration_ms=duration_ms,
        )

    async def _run_crawl(
        self, seed_url: str, board: TaskStatusBoard, remaining: float
    ) -> Dict[str, CrawledPage]:
        policy = self.config.policy_for("crawl")
        budget = max(0.0, min(policy.timeout, remaining))
        # The crawler stops itself at ``budget`` and returns what it has;
        # wait_for only catches a crawler that ignores its deadline
        try:
            pages = await asyncio.wait_for(
                self.crawler.crawl(seed_url, timeout=budget),
                timeout=budget + CRAWL_DEADLINE_GRACE_SECONDS,
            )
        except asyncio.TimeoutError as e:
            board.set("crawl", TaskStatus.TIMED_OUT)
            raise CrawlFailedError(f"Crawl of {seed_url} timed out") from e
        except Exception as e:
            board.set("crawl", TaskStatus.FAILED)
            logger.error(f"Crawl of {seed_url} failed: {describe_error(e)}")
            raise CrawlFailedError(f"Crawl of {seed_url} failed: {describe_error(e)}") from e

        seed_page = pages.get(normalize_url(seed_url))
        if seed_page is not None and seed_page.crawl_error and seed_page.error_kind:
            status = TaskStatus.TIMED_OUT if seed_page.error_kind == "timeout" else TaskStatus.FAILED
            board.set("crawl", status)
            logger.error(f"Seed {seed_url} could not be fetched: {seed_page.error}")
            raise error_for_kind(seed_page.error_kind, seed_page.error or "fetch failed", seed_url)

        board.set("crawl", TaskStatus.COMPLETE)
        return pages

    def _auditor_operations(
        self, seed_url: str, pages: Dict[str, CrawledPage]
    ) -> Dict[str, Callable[[], Awaitable[Any]]]:
        return {
            "brokenLinks": lambda: self.link_checker.check_links(pages),
            "speed": lambda: self.speed_auditor.audit(seed_url),
            "mobile": lambda: self.mobile_scanner.scan(seed_url),
            "validation": lambda: self.validator.validate(seed_url, pages),
            "schema": lambda: self.schema_checker.check(seed_url),
        }

    async def _fan_out(
        self,
        operations: Dict[str, Callable[[], Awaitable[Any]]],
        board: TaskStatusBoard,
        results: AnalysisResults,
        remaining: float,
    ) -> None:
        if not operations:
            return

        tasks = {
            name: asyncio.create_task(self._run_task(name, op, board, results), name=name)
            for name, op in operations.items()
        }
        _, pending = await asyncio.wait(tasks.values(), timeout=max(0.0, remaining))

        if pending:
            for name, task in tasks.items():
                if task in pending:
                    logger.warning(f"{name} still running at the analysis deadline; cancelling")
                    task.cancel()
                    board.set(name, TaskStatus.TIMED_OUT)
            await asyncio.gather(*pending, return_exceptions=True)

    async def _run_task(
        self,
        name: str,
        operation: Callable[[], Awaitable[Any]],
        board: TaskStatusBoard,
        results: AnalysisResults,
    ) -> None:
        policy = self.config.policy_for(name)
        try:
            value = await with_retry(name, operation, policy, self.config.retry_backoff_seconds)
        except TIMEOUT_ERRORS as e:
            logger.warning(f"{name} timed out: {describe_error(e)}")
            board.set(name, TaskStatus.TIMED_OUT)
            return
        except Exception as e:
            # Contained: one auditor failing never fails the run
            logger.warning(f"{name} failed: {describe_error(e)}")
            board.set(name, TaskStatus.FAILED)
            return

        setattr(results, RESULT_SLOTS[name], value)
        board.set(name, TaskStatus.COMPLETE)
