"""Tests for logging setup and the metrics collector."""

import logging

import structlog
from prometheus_client import REGISTRY

from humdata.observability.logging import (
    APP_NAME,
    _app_context,
    bind_context,
    clear_context,
    get_logger,
    setup_logging,
    source_context,
)
from humdata.observability.metrics import get_metrics


class TestLogging:
    """Tests for structlog configuration."""

    def test_setup_logging_level_override(self):
        setup_logging("DEBUG")
        logger = get_logger("humdata.test")

        logger.info("Configured", source_id="alpha")
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_context_binding(self):
        bind_context(view="overview")
        try:
            assert structlog.contextvars.get_contextvars() == {"view": "overview"}
        finally:
            clear_context()
        assert structlog.contextvars.get_contextvars() == {}

    def test_source_context_restores_outer_bindings(self):
        bind_context(view="overview")
        try:
            with source_context("alpha", attempt=1):
                assert structlog.contextvars.get_contextvars() == {
                    "view": "overview",
                    "source_id": "alpha",
                    "attempt": 1,
                }
            assert structlog.contextvars.get_contextvars() == {"view": "overview"}
        finally:
            clear_context()

    def test_app_context_processor(self):
        processor = _app_context("staging")

        event = processor(None, "info", {"event": "Fetched", "environment": "custom"})

        assert event["app"] == APP_NAME
        assert event["environment"] == "custom"
        assert processor(None, "info", {"event": "x"})["environment"] == "staging"


class TestMetrics:
    """Tests for MetricsCollector recording."""

    def test_singleton(self):
        assert get_metrics() is get_metrics()

    def test_fetch_counter(self):
        metrics = get_metrics()
        labels = {"source_id": "metrics_test", "outcome": "success"}
        before = REGISTRY.get_sample_value("humdata_fetches_total", labels) or 0.0

        metrics.record_fetch("metrics_test", "success")

        assert REGISTRY.get_sample_value("humdata_fetches_total", labels) == before + 1

    def test_quality_state_is_one_hot(self):
        metrics = get_metrics()
        metrics.set_quality_state("metrics_test", "stale")

        def value(state):
            return REGISTRY.get_sample_value(
                "humdata_quality_state", {"source_id": "metrics_test", "state": state}
            )

        assert value("stale") == 1
        assert value("fresh") == 0

    def test_cache_lookup(self):
        metrics = get_metrics()
        labels = {"source_id": "metrics_test"}
        before = REGISTRY.get_sample_value("humdata_cache_hits_total", labels) or 0.0

        metrics.record_cache_lookup("metrics_test", hit=True)
        metrics.record_cache_lookup("metrics_test", hit=False)

        assert REGISTRY.get_sample_value("humdata_cache_hits_total", labels) == before + 1
