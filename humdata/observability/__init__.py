"""Observability: structured logging and Prometheus metrics."""

from humdata.observability.logging import (
    bind_context,
    clear_context,
    get_logger,
    setup_logging,
)
from humdata.observability.metrics import MetricsCollector, get_metrics

__all__ = [
    "MetricsCollector",
    "bind_context",
    "clear_context",
    "get_logger",
    "get_metrics",
    "setup_logging",
]
