"""
Prometheus metrics for monitoring the orchestration layer.

Defines and exposes metrics for:
- Fetch outcomes per source
- Transport latency
- Cache hit rates
- Rate limiting and retries
- Normalization failures
- Per-source quality state

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from humdata.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for latency histograms (in seconds)
LATENCY_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)

QUALITY_STATES = ("fresh", "recent", "stale", "outdated", "unavailable")


class MetricsCollector:
    """
    Prometheus metrics collector for the orchestrator.

    Usage:
        metrics = get_metrics()
        metrics.start_server()

        metrics.record_fetch("world_bank", "success")
        metrics.observe_latency("world_bank", 0.42)
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        self.fetches = Counter(
            "humdata_fetches_total",
            "Logical fetches by terminal outcome",
            ["source_id", "outcome"],  # success, cache_hit, disabled, rate_limited, error
        )

        self.transport_attempts = Counter(
            "humdata_transport_attempts_total",
            "Transport calls issued, including retries",
            ["source_id"],
        )

        self.retries = Counter(
            "humdata_retries_total",
            "Retries scheduled after transient failures",
            ["source_id"],
        )

        self.rate_limited = Counter(
            "humdata_rate_limited_total",
            "Requests rejected by the per-source rate limiter",
            ["source_id"],
        )

        self.transport_latency = Histogram(
            "humdata_transport_latency_seconds",
            "Latency of successful fetches including retries",
            ["source_id"],
            buckets=LATENCY_BUCKETS,
        )

        self.cache_hits = Counter(
            "humdata_cache_hits_total",
            "Fetches served from the cache store",
            ["source_id"],
        )

        self.cache_misses = Counter(
            "humdata_cache_misses_total",
            "Fetches that missed the cache store",
            ["source_id"],
        )

        self.cache_size = Gauge(
            "humdata_cache_size",
            "Number of entries held by the cache store",
        )

        self.normalization_errors = Counter(
            "humdata_normalization_errors_total",
            "Payloads that failed normalization",
            ["source_id"],
        )

        self.normalization_warnings = Counter(
            "humdata_normalization_warnings_total",
            "Non-fatal row warnings raised during normalization",
            ["source_id"],
        )

        self.quality_state = Gauge(
            "humdata_quality_state",
            "Current quality state per source (1 for the active state)",
            ["source_id", "state"],
        )

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to listen on (defaults to settings.metrics_port)
        """
        port = port or get_settings().metrics_port
        start_http_server(port)
        logger.info(f"Metrics server started on port {port}")

    def record_fetch(self, source_id: str, outcome: str) -> None:
        """Record a terminal fetch outcome."""
        self.fetches.labels(source_id=source_id, outcome=outcome).inc()

    def record_attempt(self, source_id: str) -> None:
        self.transport_attempts.labels(source_id=source_id).inc()

    def record_retry(self, source_id: str) -> None:
        self.retries.labels(source_id=source_id).inc()

    def record_rate_limited(self, source_id: str) -> None:
        self.rate_limited.labels(source_id=source_id).inc()

    def observe_latency(self, source_id: str, seconds: float) -> None:
        self.transport_latency.labels(source_id=source_id).observe(seconds)

    def record_cache_lookup(self, source_id: str, hit: bool) -> None:
        """
        Record a cache lookup.

        Args:
            source_id: Source the lookup was made for
            hit: Whether a valid entry was found
        """
        if hit:
            self.cache_hits.labels(source_id=source_id).inc()
        else:
            self.cache_misses.labels(source_id=source_id).inc()

    def set_cache_size(self, size: int) -> None:
        self.cache_size.set(size)

    def record_normalization(
        self,
        source_id: str,
        failed: bool,
        warnings: int = 0,
    ) -> None:
        """
        Record a normalization outcome.

        Args:
            source_id: Source the payload came from
            failed: Whether normalization produced an error
            warnings: Number of non-fatal warnings
        """
        if failed:
            self.normalization_errors.labels(source_id=source_id).inc()
        if warnings:
            self.normalization_warnings.labels(source_id=source_id).inc(warnings)

    def set_quality_state(self, source_id: str, state: str) -> None:
        """
        Set the active quality state for a source.

        Args:
            source_id: Source identifier
            state: One of QUALITY_STATES
        """
        for candidate in QUALITY_STATES:
            self.quality_state.labels(source_id=source_id, state=candidate).set(
                1 if candidate == state else 0
            )


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
