"""Tests for the fixed-window rate limiter."""

import pytest

from humdata.fetching.rate_limit import Admitted, RateLimiter, Rejected
from humdata.sources.registry import SourceRegistry
from humdata.sources.schemas import RateLimitSpec
from tests.conftest import make_descriptor


@pytest.fixture
def limiter(clock):
    registry = SourceRegistry.from_descriptors(
        make_descriptor("slowapi", rate_limit=RateLimitSpec(limit=3, window_seconds=60.0)),
        make_descriptor("other", rate_limit=RateLimitSpec(limit=1, window_seconds=10.0)),
    )
    return RateLimiter(registry, clock=clock)


class TestRateLimiter:
    """Tests for RateLimiter admission."""

    def test_admits_exactly_limit_per_window(self, limiter):
        """The limit-th call is admitted, the next is rejected."""
        results = [limiter.try_acquire("slowapi") for _ in range(4)]

        assert [bool(r) for r in results] == [True, True, True, False]
        assert isinstance(results[2], Admitted)
        assert results[2].request_count == 3
        assert isinstance(results[3], Rejected)

    def test_rejection_reports_remaining_window(self, limiter, clock):
        for _ in range(3):
            limiter.try_acquire("slowapi")
        clock.advance(20)

        rejected = limiter.try_acquire("slowapi")

        assert not rejected
        assert rejected.retry_after_seconds == pytest.approx(40.0)

    def test_window_resets_after_elapsed(self, limiter, clock):
        """A new window starts once window_seconds have passed."""
        for _ in range(3):
            limiter.try_acquire("slowapi")
        clock.advance(60)

        admitted = limiter.try_acquire("slowapi")
        assert admitted
        assert admitted.request_count == 1

    def test_sources_are_independent(self, limiter):
        assert limiter.try_acquire("other")
        assert not limiter.try_acquire("other")
        assert limiter.try_acquire("slowapi")

    def test_status(self, limiter, clock):
        limiter.try_acquire("slowapi")
        limiter.try_acquire("slowapi")
        clock.advance(15)

        status = limiter.status("slowapi")

        assert status.request_count == 2
        assert status.limit == 3
        assert status.window_reset_in_seconds == pytest.approx(45.0)

    def test_status_without_window(self, limiter):
        status = limiter.status("slowapi")
        assert status.request_count == 0
        assert status.window_reset_in_seconds == 0.0

    def test_status_does_not_consume(self, limiter):
        for _ in range(5):
            limiter.status("slowapi")
        assert limiter.try_acquire("slowapi").request_count == 1

    def test_configure_overrides_registry(self, limiter):
        limiter.configure("slowapi", RateLimitSpec(limit=1, window_seconds=60.0))

        assert limiter.try_acquire("slowapi")
        assert not limiter.try_acquire("slowapi")

    def test_reset(self, limiter):
        for _ in range(3):
            limiter.try_acquire("slowapi")
        limiter.reset("slowapi")
        assert limiter.try_acquire("slowapi")

        limiter.try_acquire("other")
        limiter.reset()
        assert limiter.try_acquire("other")

    def test_unconfigured_without_registry(self, clock):
        with pytest.raises(KeyError):
            RateLimiter(clock=clock).try_acquire("anything")
