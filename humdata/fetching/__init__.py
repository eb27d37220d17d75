"""Fetching: cache, rate limiting, retrying transport calls, fan-out."""

from humdata.fetching.cache import CacheEntry, CacheStats, CacheStore
from humdata.fetching.coordinator import ParallelFetchCoordinator
from humdata.fetching.executor import FetchExecutor
from humdata.fetching.rate_limit import (
    Admitted,
    RateLimiter,
    RateLimitStatus,
    RateLimitWindow,
    Rejected,
)
from humdata.fetching.retry import (
    RetryDecision,
    RetryPolicy,
    RetrySequence,
    RetryState,
    TerminalReason,
)
from humdata.fetching.schemas import FetchRequest, FetchResult, RawPayload
from humdata.fetching.transport import (
    APIKeyRotator,
    HttpTransport,
    Transport,
    TransportResponse,
)

__all__ = [
    "APIKeyRotator",
    "Admitted",
    "CacheEntry",
    "CacheStats",
    "CacheStore",
    "FetchExecutor",
    "FetchRequest",
    "FetchResult",
    "HttpTransport",
    "ParallelFetchCoordinator",
    "RateLimitStatus",
    "RateLimitWindow",
    "RateLimiter",
    "RawPayload",
    "Rejected",
    "RetryDecision",
    "RetryPolicy",
    "RetrySequence",
    "RetryState",
    "TerminalReason",
    "Transport",
    "TransportResponse",
]
