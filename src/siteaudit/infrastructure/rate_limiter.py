"""
Rate limiting.

Two limiters live here:
- SlidingWindowRateLimiter bounds how many analysis requests one caller
  identity may start within a trailing time window.
- TokenBucketLimiter paces the crawler's outbound requests so a
  single audit does not overwhelm the target site.

The sliding window keeps its state in process memory and assumes a
single-process deployment; the ``check_limit`` contract is what a shared
store backend would have to honour.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, Dict

from siteaudit.constants import (
    DEFAULT_RATE_LIMIT_MAX_REQUESTS,
    DEFAULT_RATE_LIMIT_WINDOW_SECONDS,
    RATE_LIMIT_SWEEP_INTERVAL_SECONDS,
)
from siteaudit.models import RateLimitDecision

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    """Configuration for the sliding window limiter."""
    # Length of the trailing window (seconds)
    window_seconds: float = DEFAULT_RATE_LIMIT_WINDOW_SECONDS

    # Requests admitted per identity within one window
    max_requests: int = DEFAULT_RATE_LIMIT_MAX_REQUESTS

    # Minimum seconds between bulk sweeps of idle identities
    sweep_interval: float = RATE_LIMIT_SWEEP_INTERVAL_SECONDS


class SlidingWindowRateLimiter:
    """
    Per-identity sliding window limiter.

    Features:
    - Exact sliding window over recorded request timestamps
    - Per-identity lock so concurrent checks cannot both pass the boundary
    - Lazy purge on every check plus periodic bulk sweep of idle identities
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize rate limiter.

        Args:
            config: Rate limit configuration
            clock: Returns the current time in epoch seconds
        """
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._windows: Dict[str, Deque[float]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._last_sweep = clock()

        # Statistics
        self._total_allowed = 0
        self._total_denied = 0

    @property
    def limit(self) -> int:
        return self.config.max_requests

    async def check_limit(self, identity: str) -> RateLimitDecision:
        """
        Decide whether ``identity`` may start another request now.

        Args:
            identity: Caller key, usually the client IP

        Returns:
            RateLimitDecision with remaining budget and reset time
        """
        self._maybe_sweep()

        lock = self._locks.get(identity)
        if lock is None:
            lock = self._locks[identity] = asyncio.Lock()

        async with lock:
            now = self._clock()
            window = self._windows.get(identity)
            if window is None:
                window = self._windows[identity] = deque()

            self._purge(window, now)

            if len(window) >= self.config.max_requests:
                self._total_denied += 1
                logger.debug(f"Rate limit exceeded for {identity}")
                return RateLimitDecision(
                    allowed=False,
                    remaining=0,
                    reset_time=window[0] + self.config.window_seconds,
                    limit=self.config.max_requests,
                )

            window.append(now)
            self._total_allowed += 1
            return RateLimitDecision(
                allowed=True,
                remaining=self.config.max_requests - len(window),
                reset_time=window[0] + self.config.window_seconds,
                limit=self.config.max_requests,
            )

    def _purge(self, window: Deque[float], now: float) -> None:
        cutoff = now - self.config.window_seconds
        while window and window[0] <= cutoff:
            window.popleft()

    def _maybe_sweep(self) -> None:
        if self._clock() - self._last_sweep >= self.config.sweep_interval:
            self.sweep()

    def sweep(self) -> int:
        """
        Drop identities with no requests inside the current window.

        Returns:
            Number of identities removed
        """
        now = self._clock()
        self._last_sweep = now
        removed = 0
        for identity in list(self._windows):
            window = self._windows[identity]
            self._purge(window, now)
            lock = self._locks.get(identity)
            if not window and (lock is None or not lock.locked()):
                del self._windows[identity]
                self._locks.pop(identity, None)
                removed += 1
        if removed:
            logger.debug(f"Rate limiter swept {removed} idle identities")
        return removed

    async def run_sweeper(self) -> None:
        """Sweep forever at the configured interval. Cancel the task to stop it."""
        while True:
            await asyncio.sleep(self.config.sweep_interval)
            self.sweep()

    @property
    def tracked_identities(self) -> int:
        return len(self._windows)

    def get_stats(self) -> Dict[str, int]:
        return {
            "tracked_identities": self.tracked_identities,
            "total_allowed": self._total_allowed,
            "total_denied": self._total_denied,
        }

    def reset(self) -> None:
        """Reset rate limiter to initial state."""
        self._windows.clear()
        self._locks.clear()
        self._total_allowed = 0
        self._total_denied = 0
        self._last_sweep = self._clock()


class TokenBucketLimiter:
    """
    Paces outbound crawl requests for one audit.

    The bucket is tracked as a theoretical arrival time (GCRA) rather than a
    token count: each ``acquire`` reserves the next free send slot and then
    sleeps until it. Reservation happens without awaiting, so concurrent
    fetchers never claim the same slot and no lock is held while sleeping.

    Up to ``capacity`` requests go out back to back; after that one request
    is released every ``1 / rate`` seconds.
    """

    def __init__(
        self,
        rate: float,
        capacity: int = 1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the pacer.

        Args:
            rate: Sustained requests per second
            capacity: Requests allowed back to back before pacing starts
            clock: Monotonic time source
            sleep: Coroutine used to wait for a slot
        """
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.rate = rate
        self.capacity = max(1, capacity)
        self.interval = 1.0 / rate
        self._clock = clock
        self._sleep = sleep
        self._next_slot = clock()

        # Statistics
        self._granted = 0
        self._delayed = 0
        self._total_wait = 0.0

    def _reserve(self) -> float:
        now = self._clock()
        slot = max(self._next_slot, now)
        wait = max(0.0, slot - (self.capacity - 1) * self.interval - now)
        self._next_slot = slot + self.interval
        return wait

    async def acquire(self) -> float:
        """
        Wait for the next send slot.

        Returns:
            Seconds waited
        """
        wait = self._reserve()
        self._granted += 1
        if wait > 0:
            self._delayed += 1
            self._total_wait += wait
            await self._sleep(wait)
        return wait

    @property
    def available_tokens(self) -> float:
        """Requests that could be sent right now without waiting."""
        now = self._clock()
        backlog = (max(self._next_slot, now) - now) / self.interval
        return max(0.0, self.capacity - backlog)

    def get_stats(self) -> Dict[str, float]:
        return {
            "granted": self._granted,
            "delayed": self._delayed,
            "total_wait": round(self._total_wait, 3),
        }
