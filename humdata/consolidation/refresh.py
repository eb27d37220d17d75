"""
Background refresh of consolidated data.

RefreshScheduler force-refreshes sources through the consolidation
service, either on demand or every `interval_seconds` while auto-refresh
is running. Only one refresh runs at a time; a request that arrives
while another is in flight is skipped. Subscribers receive the new
RefreshStatus after every change.
"""

import asyncio
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Awaitable, Callable, Iterable

import structlog

from humdata.consolidation.schemas import ConsolidatedResult
from humdata.errors import RateLimitedError, TransientTransportError

if TYPE_CHECKING:
    from humdata.consolidation.service import ConsolidationService

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RefreshError:
    """A source that failed during a refresh."""

    source_id: str
    message: str
    error_type: str
    timestamp: datetime
    retryable: bool


@dataclass(frozen=True)
class RefreshStatus:
    """Snapshot of the scheduler state handed to subscribers."""

    is_refreshing: bool = False
    auto_refresh: bool = False
    last_refresh: datetime | None = None
    next_refresh: datetime | None = None
    refresh_count: int = 0
    errors: tuple[RefreshError, ...] = ()


StatusListener = Callable[[RefreshStatus], None]


class RefreshScheduler:
    """
    Periodic and manual refresh with an overlap guard.

    Args:
        service: Consolidation service to refresh through
        interval_seconds: Delay between automatic refreshes
        clock: Returns the current UTC datetime
        sleep: Coroutine used to wait between refreshes
    """

    def __init__(
        self,
        service: "ConsolidationService",
        interval_seconds: float = 300.0,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if interval_seconds <= 0:
            raise ValueError("Refresh interval must be positive")
        self._service = service
        self._interval = interval_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep
        self._status = RefreshStatus()
        self._listeners: list[StatusListener] = []
        self._task: asyncio.Task | None = None
        self._refreshing = False

    @property
    def status(self) -> RefreshStatus:
        return self._status

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        """Whether auto-refresh is active."""
        return self._task is not None and not self._task.done()

    def on_status_change(self, listener: StatusListener) -> Callable[[], None]:
        """
        Subscribe to status changes.

        Returns:
            A callable that removes the subscription
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def refresh(self, source_ids: Iterable[str] | None = None) -> ConsolidatedResult | None:
        """
        Force-refresh sources (every enabled source if None).

        Returns:
            The consolidated result, or None when a refresh was already
            in progress
        """
        if self._refreshing:
            logger.warning("Refresh already in progress, skipping")
            return None

        self._refreshing = True
        self._update(is_refreshing=True, errors=())
        try:
            if source_ids is None:
                ids = self._service.registry.enabled_sources()
            else:
                ids = list(source_ids)
            result = await self._service.force_refresh(ids)
        except BaseException:
            self._refreshing = False
            self._update(is_refreshing=False)
            raise
        self._refreshing = False

        now = self._clock()
        errors = tuple(
            RefreshError(
                source_id=outcome.source_id,
                message=str(outcome.error),
                error_type=type(outcome.error).__name__,
                timestamp=now,
                retryable=isinstance(outcome.error, (TransientTransportError, RateLimitedError)),
            )
            for outcome in result
            if outcome.failed
        )
        self._update(
            is_refreshing=False,
            last_refresh=now,
            next_refresh=now + timedelta(seconds=self._interval) if self.is_running else None,
            refresh_count=self._status.refresh_count + 1,
            errors=errors,
        )
        logger.info(
            "Refresh complete",
            sources=len(result),
            failed=[e.source_id for e in errors],
        )
        return result

    def start(self) -> None:
        """Start auto-refresh. Must be called from a running event loop."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="auto_refresh")
        self._update(
            auto_refresh=True,
            next_refresh=self._clock() + timedelta(seconds=self._interval),
        )
        logger.info("Auto-refresh started", interval_seconds=self._interval)

    async def stop(self) -> None:
        """Stop auto-refresh and wait for the loop to exit."""
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            logger.info("Auto-refresh stopped")
        if self._status.auto_refresh:
            self._update(auto_refresh=False, next_refresh=None)

    async def _run(self) -> None:
        while True:
            await self._sleep(self._interval)
            try:
                await self.refresh()
            except Exception as e:
                logger.error("Scheduled refresh failed", error=str(e))

    def _update(self, **changes) -> None:
        self._status = replace(self._status, **changes)
        for listener in list(self._listeners):
            try:
                listener(self._status)
            except Exception:
                logger.exception("Refresh status listener failed")
