"""
Lighthouse Performance Auditor

Runs Google Lighthouse via CLI in a subprocess to collect the performance
score and headline Core Web Vitals for a single URL.
"""

import asyncio
import json
import logging
import shutil
import time
from typing import Any, Dict, List, Optional

from siteaudit.constants import LIGHTHOUSE_CHROME_FLAGS
from siteaudit.exceptions import SiteAuditError
from siteaudit.infrastructure.ssrf_guard import SSRFGuard
from siteaudit.models import SpeedResult

logger = logging.getLogger(__name__)


class LighthouseError(SiteAuditError):
    code = "LIGHTHOUSE_ERROR"


class LighthouseRunner:
    """Runs Lighthouse audits and parses results."""

    def __init__(
        self,
        chrome_flags: Optional[List[str]] = None,
        binary: str = "lighthouse",
        form_factor: str = "mobile",
        guard: Optional[SSRFGuard] = None,
    ):
        """
        Initialize the Lighthouse runner.

        Args:
            chrome_flags: Chrome flags passed through to Lighthouse
            binary: Lighthouse executable name or path
            form_factor: 'mobile' or 'desktop' emulation
            guard: SSRF guard consulted before the audit starts
        """
        self.chrome_flags = chrome_flags or list(LIGHTHOUSE_CHROME_FLAGS)
        self.binary = binary
        self.form_factor = form_factor
        self.guard = guard or SSRFGuard()

    def build_command(self, url: str) -> List[str]:
        cmd = [
            self.binary,
            url,
            "--output=json",
            "--output-path=stdout",
            "--quiet",
            "--only-categories=performance",
            f"--form-factor={self.form_factor}",
            "--chrome-flags=" + " ".join(self.chrome_flags),
        ]
        if self.form_factor == "desktop":
            cmd.append("--preset=desktop")
        return cmd

    async def audit(self, url: str) -> SpeedResult:
        """
        Run Lighthouse on a URL.

        The subprocess is killed if the calling task is cancelled, so a
        deadline imposed by the caller never leaves Chrome running.

        Args:
            url: The URL to audit

        Returns:
            SpeedResult with score and display values

        Raises:
            LighthouseError: If Lighthouse is missing, fails or emits bad JSON
        """
        await self.guard.ensure_allowed(url)

        if shutil.which(self.binary) is None:
            raise LighthouseError(
                f"Lighthouse executable '{self.binary}' not found",
                suggestion="Install it with: npm install -g lighthouse",
            )

        logger.info(f"Running Lighthouse on {url}")
        start = time.perf_counter()

        process = await asyncio.create_subprocess_exec(
            *self.build_command(url),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            await self._kill(process)
            raise

        duration_ms = (time.perf_counter() - start) * 1000

        if process.returncode != 0:
            message = stderr.decode(errors="replace").strip()[-500:]
            logger.error(f"Lighthouse failed for {url}: {message}")
            raise LighthouseError(f"Lighthouse exited with code {process.returncode}: {message}")

        try:
            lhr = json.loads(stdout.decode(errors="replace"))
        except json.JSONDecodeError as e:
            raise LighthouseError(f"Could not parse Lighthouse output: {e}") from e

        logger.info(f"Lighthouse completed for {url} in {duration_ms:.0f}ms")
        return self.parse_results(lhr, duration_ms)

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        logger.warning("Killing Lighthouse process after cancellation")
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()

    def parse_results(self, lhr: Dict[str, Any], duration_ms: float = 0.0) -> SpeedResult:
        """
        Extract score and metrics from a Lighthouse report.

        Args:
            lhr: Lighthouse report JSON (lhr = Lighthouse Result)
            duration_ms: Wall-clock duration of the audit

        Returns:
            SpeedResult
        """
        categories = lhr.get("categories", {})
        audits = lhr.get("audits", {})
        performance = categories.get("performance") or {}

        return SpeedResult(
            performance_score=performance.get("score") or 0.0,
            first_contentful_paint=self._display_value(audits.get("first-contentful-paint")),
            largest_contentful_paint=self._display_value(audits.get("largest-contentful-paint")),
            cumulative_layout_shift=self._display_value(audits.get("cumulative-layout-shift")),
            total_blocking_time=self._display_value(audits.get("total-blocking-time")),
            audit_duration_ms=duration_ms,
        )

    def _display_value(self, audit: Optional[Dict]) -> str:
        if not audit:
            return "N/A"
        return audit.get("displayValue") or "N/A"
