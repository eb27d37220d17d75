"""
Consolidation service - the facade views call.

One call fetches a set of sources concurrently, normalizes what came
back, and attaches freshness metadata. Per-source problems never
propagate: each source degrades to its last-known-good cached data, or
to `unavailable`, with the error attached.

Features:
- Settle-all fan-out through the parallel coordinator
- Stale fallback from expired cache entries
- Optional normalized-record caching per schema
- Retry of the sources that failed last time
- Primary/fallback source chains
- Periodic background refresh
"""

from datetime import datetime
from typing import Iterable, Sequence

import structlog

from humdata.config.settings import Settings, get_settings
from humdata.consolidation.refresh import RefreshScheduler
from humdata.consolidation.schemas import (
    ConsolidatedResult,
    ConsolidationOptions,
    SourceOutcome,
)
from humdata.errors import (
    OrchestratorError,
    SourceDisabledError,
    UnknownSourceError,
)
from humdata.fetching.cache import CacheEntry, CacheStats, CacheStore
from humdata.fetching.coordinator import ParallelFetchCoordinator
from humdata.fetching.executor import FetchExecutor
from humdata.fetching.schemas import FetchRequest, FetchResult, RawPayload
from humdata.fetching.transport import HttpTransport, Transport
from humdata.normalization.normalizer import PayloadNormalizer
from humdata.normalization.schemas import NormalizedRecord
from humdata.observability.metrics import MetricsCollector, get_metrics
from humdata.quality.classifier import QualityClassifier, QualityState
from humdata.sources.loader import load_catalogue
from humdata.sources.registry import SourceRegistry

logger = structlog.get_logger(__name__)

RECORD_KEY_PREFIX = "record:"

# Errors that mean "do not show this source at all" rather than "show old data"
_NO_FALLBACK = (SourceDisabledError, UnknownSourceError)


def record_cache_key(request: FetchRequest) -> str:
    """Cache key for the normalized record of a request."""
    return f"{RECORD_KEY_PREFIX}{request.cache_key}"


class ConsolidationService:
    """
    Fetches, normalizes and classifies many sources in one call.

    Usage:
        service = ConsolidationService.build()
        result = await service.fetch_consolidated(["tech4palestine", "un_ocha"])
        for outcome in result:
            print(outcome.source_id, outcome.quality)
    """

    def __init__(
        self,
        registry: SourceRegistry,
        coordinator: ParallelFetchCoordinator,
        normalizer: PayloadNormalizer,
        classifier: QualityClassifier | None = None,
        cache: CacheStore | None = None,
        metrics: MetricsCollector | None = None,
        transport: Transport | None = None,
        refresh_interval_seconds: float = 300.0,
    ):
        """
        Initialize the service.

        Args:
            registry: Source descriptors
            coordinator: Parallel fetch coordinator
            normalizer: Payload normalizer holding the source schemas
            classifier: Quality classifier (created over registry if None)
            cache: Cache store; defaults to the executor's cache so
                fallback lookups see what the executor stored
            metrics: Prometheus collector
            transport: Transport to close in aclose(), when owned
            refresh_interval_seconds: Delay between automatic refreshes
        """
        self._registry = registry
        self._coordinator = coordinator
        self._normalizer = normalizer
        self._classifier = (
            classifier if classifier is not None else QualityClassifier(registry)
        )
        self._cache = cache if cache is not None else coordinator.executor.cache
        self._metrics = metrics or get_metrics()
        self._transport = transport
        self._last_failed: list[str] = []
        self._refresher = RefreshScheduler(self, interval_seconds=refresh_interval_seconds)

    @classmethod
    def build(
        cls,
        settings: Settings | None = None,
        transport: Transport | None = None,
    ) -> "ConsolidationService":
        """
        Wire a service from the configured catalogue.

        Args:
            settings: Settings (get_settings() if None)
            transport: Transport (an HttpTransport if None)

        Raises:
            CatalogueError: If the source catalogue cannot be loaded
        """
        settings = settings or get_settings()
        registry, schemas = load_catalogue(settings.sources_file)

        transport = transport or HttpTransport(
            timeout=settings.request_timeout_seconds,
            user_agent=settings.user_agent,
        )
        executor = FetchExecutor(registry, transport, settings=settings)
        return cls(
            registry=registry,
            coordinator=ParallelFetchCoordinator(executor),
            normalizer=PayloadNormalizer(schemas),
            transport=transport,
            refresh_interval_seconds=settings.refresh_interval_seconds,
        )

    async def __aenter__(self) -> "ConsolidationService":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Stop auto-refresh and close the owned transport."""
        await self._refresher.stop()
        close = getattr(self._transport, "aclose", None)
        if close is not None:
            await close()

    @property
    def registry(self) -> SourceRegistry:
        return self._registry

    @property
    def executor(self) -> FetchExecutor:
        return self._coordinator.executor

    @property
    def refresher(self) -> RefreshScheduler:
        return self._refresher

    def start_auto_refresh(self) -> RefreshScheduler:
        """Begin refreshing enabled sources in the background."""
        self._refresher.start()
        return self._refresher

    async def stop_auto_refresh(self) -> None:
        await self._refresher.stop()

    @property
    def last_failed(self) -> list[str]:
        """Sources that failed in the most recent consolidated fetch."""
        return list(self._last_failed)

    async def fetch_consolidated(
        self,
        source_ids: Iterable[str],
        options: ConsolidationOptions | None = None,
    ) -> ConsolidatedResult:
        """
        Fetch, normalize and classify each source.

        Duplicate ids are requested once. Never raises for per-source
        problems.

        Returns:
            ConsolidatedResult with one outcome per distinct source id,
            in request order
        """
        options = options or ConsolidationOptions()
        ids = list(dict.fromkeys(source_ids))
        if not ids:
            return ConsolidatedResult()

        requests = [self._request_for(source_id, options.bypass_cache) for source_id in ids]
        # Entries the fetch may overwrite, kept so a bad payload cannot evict them
        previous = {
            request.cache_key: self._cache.peek(request.cache_key) for request in requests
        }
        results = await self._coordinator.execute_many(requests)

        outcomes: dict[str, SourceOutcome] = {}
        for request, fetch_result in zip(requests, results):
            outcome = self._resolve(request, fetch_result, options, previous[request.cache_key])
            self._metrics.set_quality_state(outcome.source_id, outcome.quality.value)
            outcomes[outcome.source_id] = outcome

        result = ConsolidatedResult(outcomes=outcomes)
        self._last_failed = result.failed_ids

        logger.info(
            "Consolidated fetch complete",
            sources=len(ids),
            available=len(result.available),
            failed=self._last_failed,
            bypass_cache=options.bypass_cache,
        )
        return result

    async def force_refresh(self, source_ids: Iterable[str]) -> ConsolidatedResult:
        """Fetch the given sources, bypassing cache reads."""
        return await self.fetch_consolidated(
            source_ids, ConsolidationOptions(bypass_cache=True)
        )

    async def retry_failed(self) -> ConsolidatedResult:
        """Force-refresh the sources that failed in the previous call."""
        failed = self._last_failed
        if not failed:
            logger.debug("No failed sources to retry")
            return ConsolidatedResult()
        logger.info("Retrying failed sources", sources=failed)
        return await self.force_refresh(failed)

    async def fetch_enabled(
        self, options: ConsolidationOptions | None = None
    ) -> ConsolidatedResult:
        """Fetch every enabled source, in priority order."""
        return await self.fetch_consolidated(self._registry.enabled_sources(), options)

    async def fetch_with_fallback(
        self,
        primary: str,
        fallbacks: Sequence[str] = (),
        options: ConsolidationOptions | None = None,
    ) -> SourceOutcome:
        """
        Try sources in order until one yields usable data.

        Returns:
            The first usable outcome, or the primary's outcome when no
            source yields data
        """
        first: SourceOutcome | None = None
        for source_id in dict.fromkeys([primary, *fallbacks]):
            result = await self.fetch_consolidated([source_id], options)
            outcome = result[source_id]
            if outcome.usable:
                if source_id != primary:
                    logger.info(
                        "Using fallback source",
                        primary=primary,
                        fallback=source_id,
                    )
                return outcome
            if first is None:
                first = outcome
        return first

    def cache_stats(self) -> CacheStats:
        return self._cache.stats()

    def _request_for(self, source_id: str, bypass_cache: bool) -> FetchRequest:
        if source_id in self._registry:
            return FetchRequest.for_source(self._registry.get(source_id), bypass_cache)
        # The executor reports the unknown id as a failed result
        return FetchRequest(source_id=source_id, bypass_cache=bypass_cache)

    def _priority(self, source_id: str) -> int | None:
        if source_id in self._registry:
            return self._registry.get(source_id).priority
        return None

    def _resolve(
        self,
        request: FetchRequest,
        fetch_result: FetchResult,
        options: ConsolidationOptions,
        previous: CacheEntry | None = None,
    ) -> SourceOutcome:
        source_id = request.source_id

        if fetch_result.ok:
            record, error = self._normalize(request, fetch_result)
            if record is not None:
                return self._outcome(
                    source_id,
                    record=record,
                    fetched_at=record.fetched_at,
                    from_cache=fetch_result.from_cache,
                )
            self._discard_payload(request, fetch_result, previous)
        else:
            error = fetch_result.error

        if options.allow_stale_fallback and not isinstance(error, _NO_FALLBACK):
            fallback = self._last_known_good(request)
            if fallback is not None:
                logger.warning(
                    "Serving stale data",
                    source_id=source_id,
                    fetched_at=fallback.fetched_at.isoformat(),
                    error=str(error),
                )
                return self._outcome(
                    source_id,
                    record=fallback,
                    error=error,
                    fetched_at=fallback.fetched_at,
                    from_cache=True,
                    stale_fallback=True,
                )

        return self._outcome(source_id, error=error)

    def _discard_payload(
        self,
        request: FetchRequest,
        fetch_result: FetchResult,
        previous: CacheEntry | None,
    ) -> None:
        """Drop a payload that cannot be normalized, keeping the last good one."""
        if previous is not None and previous.payload is not fetch_result.payload:
            self._cache.restore(previous)
            logger.debug("Restored previous cache entry", source_id=request.source_id)
        else:
            self._cache.invalidate(request.cache_key)

    def _normalize(
        self, request: FetchRequest, fetch_result: FetchResult
    ) -> tuple[NormalizedRecord | None, OrchestratorError | None]:
        source_id = request.source_id
        schema = self._normalizer.schema_for(source_id)
        caches_records = schema is not None and schema.cache_records
        record_key = record_cache_key(request)

        if caches_records and fetch_result.from_cache:
            entry = self._cache.get(record_key)
            if entry is not None and entry.payload.fetched_at == fetch_result.payload.fetched_at:
                return entry.payload, None

        normalized = self._normalizer.normalize(source_id, fetch_result.payload)
        if not normalized.ok:
            return None, normalized.error

        if caches_records:
            ttl = self._registry.get(source_id).cache_ttl_seconds
            self._cache.put(record_key, normalized.record, ttl)
        return normalized.record, None

    def _last_known_good(self, request: FetchRequest) -> NormalizedRecord | None:
        """Most recent cached data for a request, even if expired."""
        entry = self._cache.peek(record_cache_key(request))
        if entry is not None and isinstance(entry.payload, NormalizedRecord):
            return entry.payload

        entry = self._cache.peek(request.cache_key)
        if entry is None or not isinstance(entry.payload, RawPayload):
            return None
        normalized = self._normalizer.normalize(request.source_id, entry.payload)
        return normalized.record

    def _outcome(
        self,
        source_id: str,
        record: NormalizedRecord | None = None,
        error: OrchestratorError | None = None,
        fetched_at: datetime | None = None,
        from_cache: bool = False,
        stale_fallback: bool = False,
    ) -> SourceOutcome:
        assessment = self._classifier.assess(source_id, fetched_at)
        quality = assessment.state if record is not None else QualityState.UNAVAILABLE
        return SourceOutcome(
            source_id=source_id,
            quality=quality,
            record=record,
            error=error,
            assessment=assessment,
            fetched_at=fetched_at,
            age_seconds=assessment.age_seconds,
            from_cache=from_cache,
            stale_fallback=stale_fallback,
            priority=self._priority(source_id),
        )
