"""
Infrastructure Package.

Request-boundary safety and bookkeeping shared by every network-facing
component: the SSRF guard, rate limiters and the metrics registry.
"""

from .metrics import MetricsCollector, metrics
from .rate_limiter import (
    RateLimitConfig,
    SlidingWindowRateLimiter,
    TokenBucketLimiter,
)
from .ssrf_guard import SSRFGuard, is_blocked_address, system_resolver

__all__ = [
    # Metrics
    "MetricsCollector",
    "metrics",
    # Rate Limiting
    "RateLimitConfig",
    "SlidingWindowRateLimiter",
    "TokenBucketLimiter",
    # SSRF
    "SSRFGuard",
    "is_blocked_address",
    "system_resolver",
]
