"""
Fetch executor - one logical fetch for one (source, endpoint, params).

Order of operations:
1. Resolve the source; disabled sources fail fast
2. Serve from cache unless bypassed (no network, no quota consumed)
3. Ask the rate limiter for admission
4. Call the transport, retrying transient failures with backoff
5. Cache the raw payload and record a latency sample

execute() never raises for fetch problems: every outcome is a FetchResult.
"""

import asyncio
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Awaitable, Callable

import structlog

from humdata.config.settings import Settings, get_settings
from humdata.errors import (
    OrchestratorError,
    PermanentTransportError,
    RateLimitedError,
    RetriesExhaustedError,
    SourceDisabledError,
    TransientTransportError,
    TransportError,
    UnknownSourceError,
)
from humdata.fetching.cache import CacheStore
from humdata.fetching.rate_limit import RateLimiter
from humdata.fetching.retry import RetryPolicy, TerminalReason
from humdata.fetching.schemas import FetchRequest, FetchResult, RawPayload
from humdata.fetching.transport import APIKeyRotator, Transport, build_url
from humdata.monitoring.performance import PerformanceMonitor
from humdata.observability.logging import source_context
from humdata.observability.metrics import MetricsCollector, get_metrics
from humdata.sources.registry import SourceRegistry
from humdata.sources.schemas import SourceDescriptor

logger = structlog.get_logger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class FetchExecutor:
    """
    Performs single logical fetches against registered sources.

    All collaborators are injected so tests can substitute fakes; the
    only state this class mutates is the cache, the rate limiter and the
    performance samples.

    Usage:
        executor = FetchExecutor(registry, transport, cache, limiter)
        result = await executor.execute(FetchRequest("world_bank", "/indicator"))
        if result.ok:
            handle(result.payload.content)
    """

    def __init__(
        self,
        registry: SourceRegistry,
        transport: Transport,
        cache: CacheStore | None = None,
        rate_limiter: RateLimiter | None = None,
        retry_policy: RetryPolicy | None = None,
        performance: PerformanceMonitor | None = None,
        metrics: MetricsCollector | None = None,
        timeout: float | None = None,
        sleep: SleepFn = asyncio.sleep,
        settings: Settings | None = None,
    ):
        """
        Initialize the executor.

        Args:
            registry: Source descriptors
            transport: Performs one request per call
            cache: Cache store (created from settings if None)
            rate_limiter: Rate limiter (created over registry if None)
            retry_policy: Backoff parameters; max_retries is overridden
                per source from its descriptor
            performance: Latency sample sink
            metrics: Prometheus collector
            timeout: Per-transport-call timeout in seconds
            sleep: Coroutine used for backoff delays
            settings: Settings used for defaults
        """
        settings = settings or get_settings()

        self._registry = registry
        self._transport = transport
        self._cache = (
            cache if cache is not None else CacheStore(max_entries=settings.cache_max_entries)
        )
        self._rate_limiter = (
            rate_limiter if rate_limiter is not None else RateLimiter(registry)
        )
        self._retry_policy = retry_policy or RetryPolicy(
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
            jitter_factor=settings.retry_jitter_factor,
            budget_seconds=settings.retry_budget_seconds,
        )
        if performance is None:
            performance = PerformanceMonitor(
                max_samples=settings.performance_max_samples,
                window_seconds=settings.performance_window_seconds,
            )
        self._performance = performance
        self._metrics = metrics or get_metrics()
        self._timeout = timeout if timeout is not None else settings.request_timeout_seconds
        self._sleep = sleep
        self._key_rotators: dict[str, APIKeyRotator | None] = {}

    @property
    def registry(self) -> SourceRegistry:
        return self._registry

    @property
    def cache(self) -> CacheStore:
        return self._cache

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    def performance(self) -> PerformanceMonitor:
        return self._performance

    async def execute(self, request: FetchRequest) -> FetchResult:
        """
        Run one logical fetch.

        Returns:
            FetchResult holding either the raw payload or a terminal error
        """
        with source_context(request.source_id):
            return await self._execute(request)

    async def _execute(self, request: FetchRequest) -> FetchResult:
        source_id = request.source_id

        try:
            descriptor = self._registry.get(source_id)
        except UnknownSourceError as e:
            logger.warning("Unknown source requested", source_id=source_id)
            return FetchResult(request=request, error=e)

        if not descriptor.enabled:
            self._metrics.record_fetch(source_id, "disabled")
            return FetchResult(
                request=request,
                error=SourceDisabledError(
                    f"Data source {source_id} is disabled", source_id=source_id
                ),
            )

        if not request.bypass_cache:
            entry = self._cache.get(request.cache_key)
            self._metrics.record_cache_lookup(source_id, hit=entry is not None)
            if entry is not None:
                self._metrics.record_fetch(source_id, "cache_hit")
                logger.debug("Cache hit", source_id=source_id, key=entry.key)
                return FetchResult(request=request, payload=entry.payload, from_cache=True)

        admission = self._rate_limiter.try_acquire(source_id)
        if not admission:
            self._metrics.record_rate_limited(source_id)
            self._metrics.record_fetch(source_id, "rate_limited")
            logger.warning(
                "Rate limited",
                source_id=source_id,
                retry_after=round(admission.retry_after_seconds, 3),
            )
            return FetchResult(
                request=request,
                error=RateLimitedError(
                    f"Rate limit exceeded for {source_id}",
                    source_id=source_id,
                    retry_after_seconds=admission.retry_after_seconds,
                ),
            )

        return await self._fetch_with_retry(descriptor, request)

    async def _fetch_with_retry(
        self, descriptor: SourceDescriptor, request: FetchRequest
    ) -> FetchResult:
        source_id = descriptor.id
        url = build_url(descriptor.base_address, request.endpoint_path)
        sequence = replace(self._retry_policy, max_retries=descriptor.max_retries).start()
        started = time.monotonic()

        while True:
            params, headers = await self._with_credentials(descriptor, request.query_params)
            self._metrics.record_attempt(source_id)

            try:
                response = await self._call_transport(url, params, headers)
            except asyncio.TimeoutError as e:
                error: OrchestratorError = TransientTransportError(
                    f"Timed out after {self._timeout}s fetching {url}",
                    source_id=source_id,
                    cause=e,
                )
            except TransportError as e:
                if e.source_id is None:
                    e.source_id = source_id
                error = e
            except Exception as e:
                # A transport that raises outside the taxonomy is treated as broken
                error = PermanentTransportError(
                    f"Unexpected transport failure for {url}: {e}",
                    source_id=source_id,
                    cause=e,
                )
            else:
                sequence.on_success()
                payload = RawPayload(
                    source_id=source_id,
                    url=response.url,
                    content=response.content,
                    content_type=response.content_type,
                    status_code=response.status_code,
                    fetched_at=datetime.now(timezone.utc),
                )
                self._cache.put(request.cache_key, payload, descriptor.cache_ttl_seconds)
                self._metrics.set_cache_size(len(self._cache))

                latency = time.monotonic() - started
                self._record_sample(request, latency, True, response.status_code)
                self._metrics.observe_latency(source_id, latency)
                self._metrics.record_fetch(source_id, "success")

                logger.info(
                    "Fetched source",
                    source_id=source_id,
                    attempts=sequence.attempts,
                    bytes=payload.size_bytes,
                    latency=round(latency, 3),
                )
                return FetchResult(
                    request=request,
                    payload=payload,
                    attempts=sequence.attempts,
                    delays=list(sequence.delays),
                )

            decision = sequence.on_failure(error)
            if decision.retry:
                self._metrics.record_retry(source_id)
                logger.warning(
                    "Retryable fetch failure",
                    source_id=source_id,
                    attempt=sequence.attempts,
                    max_attempts=descriptor.max_retries + 1,
                    backoff=round(decision.delay, 3),
                    error=str(error),
                )
                await self._sleep(decision.delay)
                continue

            if decision.reason != TerminalReason.PERMANENT:
                error = RetriesExhaustedError(
                    f"Request to {source_id} failed after {sequence.attempts} attempts: {error}",
                    source_id=source_id,
                    status_code=getattr(error, "status_code", None),
                    cause=error,
                    attempts=sequence.attempts,
                )

            latency = time.monotonic() - started
            self._record_sample(
                request,
                latency,
                False,
                getattr(error, "status_code", None),
                str(error),
            )
            self._metrics.record_fetch(source_id, "error")
            logger.error(
                "Fetch failed",
                source_id=source_id,
                attempts=sequence.attempts,
                reason=decision.reason.value if decision.reason else None,
                error=str(error),
            )
            return FetchResult(
                request=request,
                error=error,
                attempts=sequence.attempts,
                delays=list(sequence.delays),
            )

    async def _call_transport(self, url, params, headers):
        call = self._transport.fetch(url, params, headers)
        if not self._timeout:
            return await call
        return await asyncio.wait_for(call, timeout=self._timeout)

    async def _with_credentials(
        self,
        descriptor: SourceDescriptor,
        query_params: tuple[tuple[str, str], ...],
    ) -> tuple[list[tuple[str, str]], dict[str, str]]:
        """Attach the next rotated API key, if the source declares one."""
        params = list(query_params)
        headers: dict[str, str] = {}

        if descriptor.id not in self._key_rotators:
            self._key_rotators[descriptor.id] = APIKeyRotator.from_environment(
                descriptor.api_key_env
            )
        rotator = self._key_rotators[descriptor.id]

        if rotator is not None:
            key = await rotator.get_key()
            if descriptor.api_key_header:
                headers[descriptor.api_key_header] = f"{descriptor.api_key_prefix}{key}"
            elif descriptor.api_key_param:
                params.append((descriptor.api_key_param, key))

        return params, headers

    def _record_sample(
        self,
        request: FetchRequest,
        latency: float,
        success: bool,
        status_code: int | None = None,
        error: str | None = None,
    ) -> None:
        self._performance.record(
            source_id=request.source_id,
            endpoint=request.endpoint_path,
            latency_seconds=latency,
            success=success,
            status_code=status_code,
            error=error,
        )
