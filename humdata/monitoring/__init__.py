"""Monitoring: per-source latency and success sampling."""

from humdata.monitoring.performance import (
    PerformanceMetrics,
    PerformanceMonitor,
    RequestSample,
)

__all__ = ["PerformanceMetrics", "PerformanceMonitor", "RequestSample"]
