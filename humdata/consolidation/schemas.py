"""Result types returned by the consolidation facade."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterator

from humdata.errors import OrchestratorError
from humdata.normalization.schemas import NormalizedRecord
from humdata.quality.classifier import QualityAssessment, QualityState


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ConsolidationOptions:
    """Per-call options for ConsolidationService.fetch_consolidated()."""

    # Skip cache reads; fresh results still overwrite the cache
    bypass_cache: bool = False

    # Serve the last-known-good cached payload when a fetch fails
    allow_stale_fallback: bool = True


@dataclass
class SourceOutcome:
    """
    What one source contributed to a consolidated fetch.

    `record` is set whenever usable data exists, including stale fallback
    data; `error` is set whenever the current fetch or normalization
    failed. Both may be set at once (stale_fallback=True).
    """

    source_id: str
    quality: QualityState
    record: NormalizedRecord | None = None
    error: OrchestratorError | None = None
    assessment: QualityAssessment | None = None
    fetched_at: datetime | None = None
    age_seconds: float | None = None
    from_cache: bool = False
    stale_fallback: bool = False
    priority: int | None = None

    @property
    def usable(self) -> bool:
        return self.record is not None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict:
        """JSON-friendly summary (rows omitted)."""
        return {
            "source_id": self.source_id,
            "quality": self.quality.value,
            "rows": self.record.row_count if self.record else 0,
            "warnings": len(self.record.warnings) if self.record else 0,
            "error": str(self.error) if self.error else None,
            "error_type": type(self.error).__name__ if self.error else None,
            "fetched_at": self.fetched_at.isoformat() if self.fetched_at else None,
            "age_seconds": round(self.age_seconds, 1) if self.age_seconds is not None else None,
            "from_cache": self.from_cache,
            "stale_fallback": self.stale_fallback,
            "badge": self.assessment.badge.value if self.assessment else None,
            "confidence": self.assessment.confidence if self.assessment else None,
        }


@dataclass
class ConsolidatedResult:
    """Per-source outcomes of one facade call, keyed in request order."""

    outcomes: dict[str, SourceOutcome] = field(default_factory=dict)
    completed_at: datetime = field(default_factory=_utc_now)

    def __getitem__(self, source_id: str) -> SourceOutcome:
        return self.outcomes[source_id]

    def __contains__(self, source_id: object) -> bool:
        return source_id in self.outcomes

    def __iter__(self) -> Iterator[SourceOutcome]:
        return iter(self.outcomes.values())

    def __len__(self) -> int:
        return len(self.outcomes)

    @property
    def source_ids(self) -> list[str]:
        return list(self.outcomes)

    @property
    def available(self) -> list[SourceOutcome]:
        """Outcomes carrying usable data, in request order."""
        return [o for o in self.outcomes.values() if o.usable]

    @property
    def failed_ids(self) -> list[str]:
        """Sources whose current fetch or normalization failed."""
        return [o.source_id for o in self.outcomes.values() if o.failed]

    def preferred(self) -> SourceOutcome | None:
        """
        The usable outcome from the most preferred source.

        Lower priority numbers win; fresh data beats stale fallback data
        at equal priority; request order breaks remaining ties.
        """
        candidates = [
            (o.priority if o.priority is not None else float("inf"), o.stale_fallback, i, o)
            for i, o in enumerate(self.outcomes.values())
            if o.usable
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda c: c[:3])[3]

    def to_dict(self) -> dict:
        return {
            "completed_at": self.completed_at.isoformat(),
            "sources": [o.to_dict() for o in self.outcomes.values()],
            "failed": self.failed_ids,
        }
