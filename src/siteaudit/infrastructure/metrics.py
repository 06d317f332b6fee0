"""
Process-wide metrics collection.

Counters, gauges and bounded-sample histograms used by the HTTP API to report
request volume, error rates and latency percentiles on ``GET /metrics``.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional

from siteaudit.constants import HISTOGRAM_MAX_SAMPLES

logger = logging.getLogger(__name__)

PERCENTILES = (50, 90, 95, 99)


def _metric_key(name: str, labels: Optional[Dict[str, str]]) -> str:
    if not labels:
        return name
    rendered = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
    return f"{name}{{{rendered}}}"


def percentile(sorted_values: List[float], pct: float) -> float:
    """Nearest-rank percentile of an already sorted list."""
    if not sorted_values:
        return 0.0
    rank = int(round(pct / 100.0 * (len(sorted_values) - 1)))
    return sorted_values[min(max(rank, 0), len(sorted_values) - 1)]


@dataclass
class Histogram:
    """Keeps the most recent samples of one measurement."""
    max_samples: int = HISTOGRAM_MAX_SAMPLES
    samples: Deque[float] = field(default_factory=deque)

    def observe(self, value: float) -> None:
        self.samples.append(value)
        while len(self.samples) > self.max_samples:
            self.samples.popleft()

    def summary(self) -> Dict[str, float]:
        values = sorted(self.samples)
        if not values:
            return {"count": 0}
        data = {
            "count": len(values),
            "min": values[0],
            "max": values[-1],
            "avg": round(sum(values) / len(values), 2),
        }
        for pct in PERCENTILES:
            data[f"p{pct}"] = percentile(values, pct)
        return data


class MetricsCollector:
    """
    Thread-safe in-memory metrics registry.

    Features:
    - Monotonic counters and last-value gauges, optionally labelled
    - Histograms capped at a fixed number of samples
    - Uptime since construction
    """

    def __init__(self, max_samples: int = HISTOGRAM_MAX_SAMPLES):
        self.max_samples = max_samples
        self._counters: Dict[str, float] = {}
        self._gauges: Dict[str, float] = {}
        self._histograms: Dict[str, Histogram] = {}
        self._lock = threading.Lock()
        self._started = time.monotonic()

    def increment(self, name: str, value: float = 1, labels: Optional[Dict[str, str]] = None) -> None:
        key = _metric_key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + value

    def set_gauge(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        key = _metric_key(name, labels)
        with self._lock:
            self._gauges[key] = value

    def observe(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        key = _metric_key(name, labels)
        with self._lock:
            histogram = self._histograms.get(key)
            if histogram is None:
                histogram = self._histograms[key] = Histogram(max_samples=self.max_samples)
            histogram.observe(value)

    def record_request(self, route: str, status_code: int, duration_ms: float) -> None:
        """Record one finished HTTP request."""
        self.increment("http_requests_total", labels={"route": route, "status": str(status_code)})
        if status_code >= 400:
            self.increment("http_errors_total", labels={"route": route})
        self.observe("http_request_duration_ms", duration_ms, labels={"route": route})

    def counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        with self._lock:
            return self._counters.get(_metric_key(name, labels), 0)

    def gauge(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        with self._lock:
            return self._gauges.get(_metric_key(name, labels))

    @property
    def uptime_seconds(self) -> float:
        return time.monotonic() - self._started

    def snapshot(self) -> Dict[str, Any]:
        """Return all metrics as a JSON-serializable dict."""
        with self._lock:
            return {
                "uptimeSeconds": round(self.uptime_seconds, 1),
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "histograms": {
                    key: histogram.summary()
                    for key, histogram in self._histograms.items()
                },
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._started = time.monotonic()


# Shared by the API process
metrics = MetricsCollector()
