"""Pytest fixtures for humdata tests."""

import asyncio
import json
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Sequence
from unittest.mock import MagicMock

import pytest

from humdata.config.settings import Settings
from humdata.errors import TransientTransportError
from humdata.fetching.cache import CacheStore
from humdata.fetching.rate_limit import RateLimiter
from humdata.fetching.retry import RetryPolicy
from humdata.fetching.transport import TransportResponse
from humdata.monitoring.performance import PerformanceMonitor
from humdata.observability.metrics import MetricsCollector
from humdata.sources.registry import SourceRegistry
from humdata.sources.schemas import (
    PayloadKind,
    RateLimitSpec,
    ReliabilityTier,
    SourceDescriptor,
)


class FakeClock:
    """Manually advanced clock returning float seconds."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDateClock:
    """Manually advanced clock returning UTC datetimes."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


class SleepRecorder:
    """Stand-in for asyncio.sleep that records delays without waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class FakeTransport:
    """
    Scripted transport keyed by URL.

    Each URL holds a list of outcomes consumed in order; the last one
    repeats. An outcome is bytes/str (200 response), a TransportResponse,
    or an exception instance to raise. `delays` maps URLs to real
    awaited seconds before answering.
    """

    def __init__(self):
        self.scripts: dict[str, list[Any]] = {}
        self.delays: dict[str, float] = {}
        self.calls: list[tuple[str, list, dict]] = []
        self.call_counts: dict[str, int] = defaultdict(int)

    def script(self, url: str, *outcomes: Any, delay: float = 0.0) -> None:
        self.scripts[url] = list(outcomes)
        self.delays[url] = delay

    async def fetch(
        self,
        url: str,
        params: Sequence[tuple[str, str]] | None = None,
        headers: dict[str, str] | None = None,
    ) -> TransportResponse:
        self.calls.append((url, list(params or []), dict(headers or {})))
        index = self.call_counts[url]
        self.call_counts[url] += 1

        if self.delays.get(url):
            await asyncio.sleep(self.delays[url])

        outcomes = self.scripts.get(url)
        if not outcomes:
            raise TransientTransportError(f"No script for {url}")
        outcome = outcomes[min(index, len(outcomes) - 1)]

        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, TransportResponse):
            return outcome
        if isinstance(outcome, str):
            outcome = outcome.encode("utf-8")
        return TransportResponse(status_code=200, content=outcome, url=url)


def make_descriptor(source_id: str, **overrides: Any) -> SourceDescriptor:
    """Descriptor with test-friendly defaults."""
    values: dict[str, Any] = {
        "id": source_id,
        "base_address": f"https://{source_id}.example.org",
        "endpoint_path": "/data",
        "cache_ttl_seconds": 300.0,
        "max_retries": 2,
        "rate_limit": RateLimitSpec(limit=100, window_seconds=60.0),
        "reliability": ReliabilityTier.HIGH,
        "payload_kind": PayloadKind.TREE,
    }
    values.update(overrides)
    return SourceDescriptor(**values)


def source_url(source_id: str, path: str = "/data") -> str:
    return f"https://{source_id}.example.org{path}"


def json_body(data: Any) -> bytes:
    return json.dumps(data).encode("utf-8")


@pytest.fixture
def test_settings() -> Settings:
    """Settings configured for testing."""
    return Settings(
        environment="development",
        log_level="DEBUG",
        request_timeout_seconds=5.0,
        retry_base_delay_seconds=1.0,
        retry_max_delay_seconds=8.0,
        retry_jitter_factor=0.0,
        retry_budget_seconds=60.0,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def date_clock() -> FakeDateClock:
    return FakeDateClock()


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def metrics() -> MagicMock:
    return MagicMock(spec=MetricsCollector)


@pytest.fixture
def registry() -> SourceRegistry:
    return SourceRegistry.from_descriptors(
        make_descriptor("alpha", priority=1),
        make_descriptor("beta", priority=2, reliability=ReliabilityTier.MEDIUM),
        make_descriptor("gamma", priority=3, reliability=ReliabilityTier.LOW),
    )


@pytest.fixture
def cache(clock) -> CacheStore:
    return CacheStore(max_entries=16, clock=clock)


@pytest.fixture
def no_jitter_policy() -> RetryPolicy:
    return RetryPolicy(
        max_retries=3,
        base_delay=1.0,
        max_delay=8.0,
        jitter_factor=0.0,
        budget_seconds=60.0,
    )


@pytest.fixture
def make_executor(registry, transport, cache, clock, sleep, metrics, no_jitter_policy, test_settings):
    """Factory for FetchExecutor wired to the fakes above."""
    from humdata.fetching.executor import FetchExecutor

    def _make(**overrides: Any) -> FetchExecutor:
        values: dict[str, Any] = {
            "registry": registry,
            "transport": transport,
            "cache": cache,
            "rate_limiter": RateLimiter(overrides.get("registry", registry), clock=clock),
            "retry_policy": no_jitter_policy,
            "performance": PerformanceMonitor(clock=clock),
            "metrics": metrics,
            "timeout": 5.0,
            "sleep": sleep,
            "settings": test_settings,
        }
        values.update(overrides)
        return FetchExecutor(**values)

    return _make
