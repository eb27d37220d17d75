"""Consolidation facade: many sources in, one result out."""

from humdata.consolidation.refresh import RefreshError, RefreshScheduler, RefreshStatus
from humdata.consolidation.schemas import (
    ConsolidatedResult,
    ConsolidationOptions,
    SourceOutcome,
)
from humdata.consolidation.service import ConsolidationService, record_cache_key

__all__ = [
    "ConsolidatedResult",
    "ConsolidationOptions",
    "ConsolidationService",
    "RefreshError",
    "RefreshScheduler",
    "RefreshStatus",
    "SourceOutcome",
    "record_cache_key",
]
