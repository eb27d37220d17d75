"""
Freshness and quality classification.

Quality is always derived from the age of the data at classification
time; it is never stored.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from humdata.sources.registry import SourceRegistry
from humdata.sources.schemas import ReliabilityTier

HOUR_SECONDS = 3600
DAY_SECONDS = 24 * HOUR_SECONDS
WEEK_SECONDS = 7 * DAY_SECONDS


class QualityState(str, Enum):
    """Freshness of a source's data."""

    FRESH = "fresh"
    RECENT = "recent"
    STALE = "stale"
    OUTDATED = "outdated"
    UNAVAILABLE = "unavailable"


class QualityBadge(str, Enum):
    """Trust badge combining reliability tier and freshness."""

    VERIFIED = "verified"
    RELIABLE = "reliable"
    ESTIMATED = "estimated"
    UNVERIFIED = "unverified"


FRESHNESS_SCORES = {
    QualityState.FRESH: 100,
    QualityState.RECENT: 85,
    QualityState.STALE: 60,
    QualityState.OUTDATED: 40,
    QualityState.UNAVAILABLE: 0,
}


@dataclass(frozen=True)
class QualityAssessment:
    """Quality metadata attached to one source outcome."""

    state: QualityState
    badge: QualityBadge
    show_warning: bool
    confidence: int
    age_seconds: float | None = None


def classify_age(age_seconds: float | None) -> QualityState:
    """
    Map an age to a quality state.

    Bounds are exclusive: exactly one hour old is recent, exactly one
    day old is stale, exactly one week old is outdated.
    """
    if age_seconds is None:
        return QualityState.UNAVAILABLE
    age_seconds = max(age_seconds, 0.0)
    if age_seconds < HOUR_SECONDS:
        return QualityState.FRESH
    if age_seconds < DAY_SECONDS:
        return QualityState.RECENT
    if age_seconds < WEEK_SECONDS:
        return QualityState.STALE
    return QualityState.OUTDATED


def _badge(tier: ReliabilityTier, age_seconds: float | None) -> tuple[QualityBadge, bool]:
    if age_seconds is None:
        return QualityBadge.UNVERIFIED, True
    within_day = age_seconds < DAY_SECONDS
    within_week = age_seconds < WEEK_SECONDS

    if tier == ReliabilityTier.HIGH:
        if within_day:
            return QualityBadge.VERIFIED, False
        return QualityBadge.RELIABLE, not within_week
    if tier == ReliabilityTier.MEDIUM:
        if within_day:
            return QualityBadge.RELIABLE, False
        return QualityBadge.ESTIMATED, not within_week
    return QualityBadge.UNVERIFIED, True


class QualityClassifier:
    """
    Classifies fetched data by age and source reliability.

    Args:
        registry: Source descriptors (reliability tier, credibility)
        clock: Returns the current UTC datetime
    """

    def __init__(
        self,
        registry: SourceRegistry | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._registry = registry
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def age_seconds(self, fetched_at: datetime | None) -> float | None:
        """Age of data fetched at `fetched_at`, clamped at zero."""
        if fetched_at is None:
            return None
        if fetched_at.tzinfo is None:
            fetched_at = fetched_at.replace(tzinfo=timezone.utc)
        return max((self._clock() - fetched_at).total_seconds(), 0.0)

    def classify(self, source_id: str, fetched_at: datetime | None) -> QualityState:
        """Quality state for data from `source_id` fetched at `fetched_at`."""
        return classify_age(self.age_seconds(fetched_at))

    def assess(self, source_id: str, fetched_at: datetime | None) -> QualityAssessment:
        """
        Full quality metadata: state, badge, warning flag and confidence.

        Unknown sources are assessed as low reliability.
        """
        age = self.age_seconds(fetched_at)
        state = classify_age(age)

        tier = ReliabilityTier.LOW
        credibility = 0
        if self._registry is not None and source_id in self._registry:
            descriptor = self._registry.get(source_id)
            tier = descriptor.reliability
            credibility = descriptor.credibility

        badge, show_warning = _badge(tier, age)

        return QualityAssessment(
            state=state,
            badge=badge,
            show_warning=show_warning,
            confidence=round((credibility + FRESHNESS_SCORES[state]) / 2),
            age_seconds=age,
        )
