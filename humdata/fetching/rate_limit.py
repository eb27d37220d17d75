"""
Per-source fixed-window rate limiter.

Provider quotas in this domain are coarse (per minute or per hour), so a
fixed window counter is enough: the window resets once its length has
elapsed, and at most `limit` requests are admitted inside it.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from humdata.sources.registry import SourceRegistry
from humdata.sources.schemas import RateLimitSpec

logger = logging.getLogger(__name__)


@dataclass
class RateLimitWindow:
    """Counter state for one source. Mutated only by RateLimiter."""

    window_start: float
    request_count: int
    limit: int
    window_seconds: float


@dataclass(frozen=True)
class Admitted:
    """The request may proceed."""

    request_count: int

    def __bool__(self) -> bool:
        return True


@dataclass(frozen=True)
class Rejected:
    """Quota exhausted until the current window ends."""

    retry_after_seconds: float

    def __bool__(self) -> bool:
        return False


@dataclass(frozen=True)
class RateLimitStatus:
    request_count: int
    limit: int
    window_reset_in_seconds: float


class RateLimiter:
    """
    Request-admission gate keyed by source id.

    Limits are taken from the registry's descriptors the first time a
    source is seen. try_acquire() never waits; callers decide what to do
    with a rejection.

    Args:
        registry: Source registry providing each source's RateLimitSpec
        clock: Monotonic seconds (injectable for tests)
    """

    def __init__(
        self,
        registry: SourceRegistry | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry = registry
        self._clock = clock
        self._specs: dict[str, RateLimitSpec] = {}
        self._windows: dict[str, RateLimitWindow] = {}
        self._lock = threading.Lock()

    def configure(self, source_id: str, spec: RateLimitSpec) -> None:
        """Set or replace the quota for a source and restart its window."""
        with self._lock:
            self._specs[source_id] = spec
            self._windows.pop(source_id, None)

    def _spec_for(self, source_id: str) -> RateLimitSpec:
        spec = self._specs.get(source_id)
        if spec is None:
            if self._registry is None:
                raise KeyError(f"No rate limit configured for {source_id}")
            spec = self._registry.get(source_id).rate_limit
            self._specs[source_id] = spec
        return spec

    def _window_for(self, source_id: str, now: float) -> RateLimitWindow:
        spec = self._spec_for(source_id)
        window = self._windows.get(source_id)
        if window is None:
            window = RateLimitWindow(
                window_start=now,
                request_count=0,
                limit=spec.limit,
                window_seconds=spec.window_seconds,
            )
            self._windows[source_id] = window
        elif now - window.window_start >= window.window_seconds:
            window.window_start = now
            window.request_count = 0
        return window

    def try_acquire(self, source_id: str) -> Admitted | Rejected:
        """
        Admit a request if the source's window still has capacity.

        Returns:
            Admitted (truthy) or Rejected (falsy, with retry_after_seconds)
        """
        with self._lock:
            now = self._clock()
            window = self._window_for(source_id, now)

            if window.request_count < window.limit:
                window.request_count += 1
                return Admitted(request_count=window.request_count)

            retry_after = max(
                0.0, window.window_seconds - (now - window.window_start)
            )

        logger.debug(f"Rate limited {source_id}, window resets in {retry_after:.2f}s")
        return Rejected(retry_after_seconds=retry_after)

    def status(self, source_id: str) -> RateLimitStatus:
        """Read-only view of a source's current window."""
        with self._lock:
            now = self._clock()
            spec = self._spec_for(source_id)
            window = self._windows.get(source_id)
            if window is None or now - window.window_start >= window.window_seconds:
                return RateLimitStatus(
                    request_count=0,
                    limit=spec.limit,
                    window_reset_in_seconds=0.0,
                )
            return RateLimitStatus(
                request_count=window.request_count,
                limit=window.limit,
                window_reset_in_seconds=window.window_seconds
                - (now - window.window_start),
            )

    def reset(self, source_id: str | None = None) -> None:
        """Forget window state for one source, or for all of them."""
        with self._lock:
            if source_id is None:
                self._windows.clear()
            else:
                self._windows.pop(source_id, None)
