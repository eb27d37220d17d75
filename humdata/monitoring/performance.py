"""
In-process performance sampling for fetches.

Every terminal fetch outcome that reached the transport is recorded as a
sample. Metrics are computed on demand over a trailing time window.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestSample:
    source_id: str
    endpoint: str
    recorded_at: float
    latency_seconds: float
    success: bool
    status_code: int | None = None
    error: str | None = None


@dataclass(frozen=True)
class PerformanceMetrics:
    """Aggregates for one source over a time window."""

    source_id: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    avg_latency: float = 0.0
    min_latency: float = 0.0
    max_latency: float = 0.0
    p50_latency: float = 0.0
    p95_latency: float = 0.0
    p99_latency: float = 0.0
    last_error: str | None = None

    @property
    def success_rate(self) -> float:
        """Fraction of successful requests (1.0 when there were none)."""
        if self.total_requests == 0:
            return 1.0
        return self.successful_requests / self.total_requests

    @property
    def error_rate(self) -> float:
        return 1.0 - self.success_rate


class PerformanceMonitor:
    """
    Bounded store of request samples.

    Args:
        max_samples: Oldest samples are dropped beyond this count
        window_seconds: Default trailing window for metrics
        clock: Monotonic seconds (injectable for tests)
    """

    def __init__(
        self,
        max_samples: int = 10_000,
        window_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._samples: deque[RequestSample] = deque(maxlen=max_samples)
        self._window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()

    def record(
        self,
        source_id: str,
        endpoint: str,
        latency_seconds: float,
        success: bool,
        status_code: int | None = None,
        error: str | None = None,
    ) -> None:
        sample = RequestSample(
            source_id=source_id,
            endpoint=endpoint,
            recorded_at=self._clock(),
            latency_seconds=latency_seconds,
            success=success,
            status_code=status_code,
            error=error,
        )
        with self._lock:
            self._samples.append(sample)

    def samples(
        self, source_id: str | None = None, window_seconds: float | None = None
    ) -> list[RequestSample]:
        """Samples inside the window, optionally for one source."""
        cutoff = self._clock() - (window_seconds or self._window_seconds)
        with self._lock:
            return [
                s
                for s in self._samples
                if s.recorded_at > cutoff
                and (source_id is None or s.source_id == source_id)
            ]

    def source_metrics(
        self, source_id: str, window_seconds: float | None = None
    ) -> PerformanceMetrics:
        """Latency percentiles and success counts for one source."""
        samples = self.samples(source_id, window_seconds)
        if not samples:
            return PerformanceMetrics(source_id=source_id)

        latencies = np.array([s.latency_seconds for s in samples], dtype=float)
        p50, p95, p99 = np.percentile(latencies, [50, 95, 99])
        successes = sum(1 for s in samples if s.success)
        failures = [s for s in samples if not s.success]

        return PerformanceMetrics(
            source_id=source_id,
            total_requests=len(samples),
            successful_requests=successes,
            failed_requests=len(failures),
            avg_latency=float(latencies.mean()),
            min_latency=float(latencies.min()),
            max_latency=float(latencies.max()),
            p50_latency=float(p50),
            p95_latency=float(p95),
            p99_latency=float(p99),
            last_error=failures[-1].error if failures else None,
        )

    def summary(self, window_seconds: float | None = None) -> dict[str, PerformanceMetrics]:
        """Metrics for every source with samples in the window."""
        source_ids = sorted({s.source_id for s in self.samples(None, window_seconds)})
        return {sid: self.source_metrics(sid, window_seconds) for sid in source_ids}

    def clear(self) -> None:
        with self._lock:
            self._samples.clear()

    def __len__(self) -> int:
        return len(self._samples)
