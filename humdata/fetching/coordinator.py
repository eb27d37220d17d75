"""
Parallel fetch coordinator with settle-all semantics.

execute_many() dispatches every request before awaiting any of them and
returns one FetchResult per request, in input order, once all of them
have finished. A failure in one slot never affects another slot.

In-flight fetches are shielded from caller cancellation: a view that is
abandoned mid-refresh still lets its retry sequences finish and populate
the cache for the next caller.
"""

import asyncio
from typing import Sequence

import structlog

from humdata.errors import OrchestratorError
from humdata.fetching.executor import FetchExecutor
from humdata.fetching.schemas import FetchRequest, FetchResult

logger = structlog.get_logger(__name__)


class ParallelFetchCoordinator:
    """Fans out independent fetches and collects every outcome."""

    def __init__(self, executor: FetchExecutor):
        self._executor = executor
        self._inflight: set[asyncio.Task] = set()

    @property
    def executor(self) -> FetchExecutor:
        return self._executor

    @property
    def inflight(self) -> int:
        """Number of fetch tasks still running (including abandoned ones)."""
        return len(self._inflight)

    async def execute_many(self, requests: Sequence[FetchRequest]) -> list[FetchResult]:
        """
        Execute all requests concurrently.

        Returns:
            One result per request, in the same order as `requests`
        """
        if not requests:
            return []

        tasks = []
        for request in requests:
            task = asyncio.create_task(
                self._executor.execute(request),
                name=f"fetch_{request.source_id}",
            )
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            tasks.append(task)

        outcomes = await asyncio.shield(asyncio.gather(*tasks, return_exceptions=True))

        results: list[FetchResult] = []
        for request, outcome in zip(requests, outcomes):
            if isinstance(outcome, FetchResult):
                results.append(outcome)
                continue
            # execute() does not raise by contract; contain anything that does
            logger.error(
                "Fetch task raised",
                source_id=request.source_id,
                error=repr(outcome),
            )
            results.append(
                FetchResult(
                    request=request,
                    error=OrchestratorError(
                        f"Unexpected failure fetching {request.source_id}: {outcome!r}",
                        source_id=request.source_id,
                        cause=outcome if isinstance(outcome, BaseException) else None,
                    ),
                )
            )

        failed = sum(1 for r in results if not r.ok)
        logger.info(
            "Fetch batch settled",
            requested=len(requests),
            failed=failed,
            from_cache=sum(1 for r in results if r.from_cache),
        )
        return results
