from dotenv import load_dotenv
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from pathlib import Path
import json
import os

from siteaudit.constants import (
    DEFAULT_ANALYZE_TIMEOUT_MS,
    DEFAULT_CRAWL_MAX_CONCURRENT,
    DEFAULT_CRAWL_MAX_DEPTH,
    DEFAULT_CRAWL_MAX_PAGES,
    DEFAULT_CRAWL_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_CRAWL_REQUESTS_PER_SECOND,
    DEFAULT_CRAWL_TIMEOUT_SECONDS,
    DEFAULT_LINK_CHECK_CONCURRENCY,
    DEFAULT_LINK_CHECK_PER_PAGE,
    DEFAULT_LINK_CHECK_TOTAL,
    DEFAULT_MAX_REDIRECTS,
    DEFAULT_RATE_LIMIT_MAX_REQUESTS,
    DEFAULT_RATE_LIMIT_WINDOW_SECONDS,
    DEFAULT_REDIRECT_TIMEOUT_MS,
    DEFAULT_RETRY_BACKOFF_SECONDS,
    DEFAULT_TASK_POLICIES,
    DEFAULT_USER_AGENT,
)

load_dotenv()  # Loads variables from .env file


class Settings:
    """
    Manages process-level settings loaded from environment variables.
    """
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE = os.getenv("LOG_FILE")
    HOST = os.getenv("HOST", "127.0.0.1")
    PORT = int(os.getenv("PORT", "8000"))
    VERSION = os.getenv("APP_VERSION", "0.1.0")


settings = Settings()


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


@dataclass
class TaskPolicy:
    """Timeout and retry budget for one orchestrated sub-analysis."""
    timeout: float
    retries: int = 0


def _default_task_policies() -> Dict[str, TaskPolicy]:
    return {
        name: TaskPolicy(timeout=timeout, retries=retries)
        for name, (timeout, retries) in DEFAULT_TASK_POLICIES.items()
    }


@dataclass
class AuditConfig:
    """Runtime tuning for crawling, link checking, redirects and rate limits."""

    # Request boundary
    analyze_timeout_ms: int = DEFAULT_ANALYZE_TIMEOUT_MS
    rate_limit_window_seconds: float = DEFAULT_RATE_LIMIT_WINDOW_SECONDS
    rate_limit_max_requests: int = DEFAULT_RATE_LIMIT_MAX_REQUESTS

    # Crawler
    crawl_max_depth: int = DEFAULT_CRAWL_MAX_DEPTH
    crawl_max_pages: int = DEFAULT_CRAWL_MAX_PAGES
    crawl_timeout_seconds: float = DEFAULT_CRAWL_TIMEOUT_SECONDS
    crawl_request_timeout_seconds: float = DEFAULT_CRAWL_REQUEST_TIMEOUT_SECONDS
    crawl_max_concurrent: int = DEFAULT_CRAWL_MAX_CONCURRENT
    crawl_requests_per_second: float = DEFAULT_CRAWL_REQUESTS_PER_SECOND
    respect_robots: bool = True

    # Link checker
    link_check_per_page: int = DEFAULT_LINK_CHECK_PER_PAGE
    link_check_total: int = DEFAULT_LINK_CHECK_TOTAL
    link_check_concurrency: int = DEFAULT_LINK_CHECK_CONCURRENCY

    # Redirects
    max_redirects: int = DEFAULT_MAX_REDIRECTS
    redirect_timeout_ms: int = DEFAULT_REDIRECT_TIMEOUT_MS

    # Orchestrator
    task_policies: Dict[str, TaskPolicy] = field(default_factory=_default_task_policies)
    retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS

    user_agent: str = DEFAULT_USER_AGENT
    suspicious_domains: List[str] = field(default_factory=list)

    @classmethod
    def from_env(cls) -> "AuditConfig":
        """Load configuration from environment variables.

        Per-task budgets are read from TASK_TIMEOUT_<TASK> and
        TASK_RETRIES_<TASK>, e.g. TASK_TIMEOUT_SPEED=90.

        Returns:
            AuditConfig: Configuration instance with values from environment
        """
        policies = _default_task_policies()
        for name, policy in policies.items():
            key = name.upper()
            policy.timeout = _env_float(f"TASK_TIMEOUT_{key}", policy.timeout)
            policy.retries = _env_int(f"TASK_RETRIES_{key}", policy.retries)

        suspicious = os.getenv("SUSPICIOUS_DOMAINS", "")

        return cls(
            analyze_timeout_ms=_env_int("ANALYZE_TIMEOUT_MS", DEFAULT_ANALYZE_TIMEOUT_MS),
            rate_limit_window_seconds=_env_float(
                "RATE_LIMIT_WINDOW_SECONDS", DEFAULT_RATE_LIMIT_WINDOW_SECONDS
            ),
            rate_limit_max_requests=_env_int(
                "RATE_LIMIT_MAX_REQUESTS", DEFAULT_RATE_LIMIT_MAX_REQUESTS
            ),
            crawl_max_depth=_env_int("CRAWL_MAX_DEPTH", DEFAULT_CRAWL_MAX_DEPTH),
            crawl_max_pages=_env_int("CRAWL_MAX_PAGES", DEFAULT_CRAWL_MAX_PAGES),
            crawl_timeout_seconds=_env_float(
                "CRAWL_TIMEOUT_SECONDS", DEFAULT_CRAWL_TIMEOUT_SECONDS
            ),
            crawl_request_timeout_seconds=_env_float(
                "CRAWL_REQUEST_TIMEOUT_SECONDS", DEFAULT_CRAWL_REQUEST_TIMEOUT_SECONDS
            ),
            crawl_max_concurrent=_env_int("CRAWL_MAX_CONCURRENT", DEFAULT_CRAWL_MAX_CONCURRENT),
            crawl_requests_per_second=_env_float(
                "CRAWL_REQUESTS_PER_SECOND", DEFAULT_CRAWL_REQUESTS_PER_SECOND
            ),
            respect_robots=os.getenv("CRAWL_RESPECT_ROBOTS", "true").lower() != "false",
            link_check_per_page=_env_int("LINK_CHECK_PER_PAGE", DEFAULT_LINK_CHECK_PER_PAGE),
            link_check_total=_env_int("LINK_CHECK_TOTAL", DEFAULT_LINK_CHECK_TOTAL),
            link_check_concurrency=_env_int(
                "LINK_CHECK_CONCURRENCY", DEFAULT_LINK_CHECK_CONCURRENCY
            ),
            max_redirects=_env_int("MAX_REDIRECTS", DEFAULT_MAX_REDIRECTS),
            redirect_timeout_ms=_env_int("REDIRECT_TIMEOUT_MS", DEFAULT_REDIRECT_TIMEOUT_MS),
            task_policies=policies,
            retry_backoff_seconds=_env_float(
                "RETRY_BACKOFF_SECONDS", DEFAULT_RETRY_BACKOFF_SECONDS
            ),
            user_agent=os.getenv("USER_AGENT", DEFAULT_USER_AGENT),
            suspicious_domains=[d.strip() for d in suspicious.split(",") if d.strip()],
        )

    @classmethod
    def from_file(cls, path: str) -> "AuditConfig":
        """Load configuration from a JSON file.

        Unknown keys are ignored. A missing file yields the defaults.

        Args:
            path: Path to JSON configuration file

        Returns:
            AuditConfig with values from file
        """
        config = cls()
        file_path = Path(path)

        if not file_path.exists():
            return config

        with open(file_path, 'r') as f:
            data = json.load(f)

        data = data.get('audit', data)

        for field_name in config.__dataclass_fields__:
            if field_name not in data:
                continue
            if field_name == 'task_policies':
                for name, policy in data['task_policies'].items():
                    config.task_policies[name] = TaskPolicy(
                        timeout=float(policy.get('timeout', 10.0)),
                        retries=int(policy.get('retries', 0)),
                    )
            else:
                setattr(config, field_name, data[field_name])

        return config

    def policy_for(self, task: str) -> TaskPolicy:
        """Return the policy for a task, falling back to a 10s no-retry budget."""
        return self.task_policies.get(task, TaskPolicy(timeout=10.0))

    @property
    def analyze_timeout_seconds(self) -> float:
        return self.analyze_timeout_ms / 1000.0

    @property
    def redirect_timeout_seconds(self) -> float:
        return self.redirect_timeout_ms / 1000.0

    def limits(self) -> Dict[str, object]:
        """Limits surfaced by the health endpoint."""
        return {
            'maxRedirects': self.max_redirects,
            'timeoutMs': self.analyze_timeout_ms,
            'rateLimitWindowSeconds': self.rate_limit_window_seconds,
            'rateLimitMaxRequests': self.rate_limit_max_requests,
            'crawlMaxDepth': self.crawl_max_depth,
            'crawlMaxPages': self.crawl_max_pages,
        }

    def to_dict(self) -> dict:
        """Convert configuration to dictionary.

        Returns:
            Dictionary of all configuration values
        """
        data = {
            field_name: getattr(self, field_name)
            for field_name in self.__dataclass_fields__
        }
        data['task_policies'] = {
            name: {'timeout': p.timeout, 'retries': p.retries}
            for name, p in self.task_policies.items()
        }
        return data


# Global default configuration instance
default_config = AuditConfig()
