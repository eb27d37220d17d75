"""Tests for freshness and quality classification."""

from datetime import timedelta

import pytest

from humdata.quality.classifier import (
    QualityBadge,
    QualityClassifier,
    QualityState,
    classify_age,
)


@pytest.fixture
def classifier(registry, date_clock):
    return QualityClassifier(registry, clock=date_clock)


def _ago(date_clock, **delta):
    return date_clock.now - timedelta(**delta)


class TestClassify:
    """Tests for QualityClassifier.classify()."""

    @pytest.mark.parametrize(
        "delta,expected",
        [
            (timedelta(minutes=59), QualityState.FRESH),
            (timedelta(minutes=61), QualityState.RECENT),
            (timedelta(hours=25), QualityState.STALE),
            (timedelta(days=8), QualityState.OUTDATED),
        ],
    )
    def test_age_bands(self, classifier, date_clock, delta, expected):
        assert classifier.classify("alpha", date_clock.now - delta) == expected

    def test_none_is_unavailable(self, classifier):
        assert classifier.classify("alpha", None) == QualityState.UNAVAILABLE

    def test_boundaries_are_exclusive(self):
        """Exactly 1h is recent, exactly 24h stale, exactly 7d outdated."""
        assert classify_age(3599.999) == QualityState.FRESH
        assert classify_age(3600) == QualityState.RECENT
        assert classify_age(86400) == QualityState.STALE
        assert classify_age(7 * 86400) == QualityState.OUTDATED

    def test_future_timestamp_clamped(self, classifier, date_clock):
        """Clock skew should never produce a negative age."""
        future = date_clock.now + timedelta(minutes=5)

        assert classifier.classify("alpha", future) == QualityState.FRESH
        assert classifier.age_seconds(future) == 0.0

    def test_naive_timestamp_treated_as_utc(self, classifier, date_clock):
        naive = (date_clock.now - timedelta(hours=2)).replace(tzinfo=None)
        assert classifier.classify("alpha", naive) == QualityState.RECENT

    def test_unknown_source_still_classified(self, classifier, date_clock):
        assert classifier.classify("nobody", _ago(date_clock, minutes=1)) == QualityState.FRESH


class TestAssess:
    """Tests for QualityClassifier.assess()."""

    def test_high_tier_fresh_is_verified(self, classifier, date_clock):
        assessment = classifier.assess("alpha", _ago(date_clock, minutes=10))

        assert assessment.state == QualityState.FRESH
        assert assessment.badge == QualityBadge.VERIFIED
        assert assessment.show_warning is False
        assert assessment.confidence == 95  # (90 + 100) / 2
        assert assessment.age_seconds == 600

    def test_high_tier_old_is_reliable_with_warning(self, classifier, date_clock):
        assessment = classifier.assess("alpha", _ago(date_clock, days=10))

        assert assessment.badge == QualityBadge.RELIABLE
        assert assessment.show_warning is True
        assert assessment.confidence == 65  # (90 + 40) / 2

    def test_medium_tier(self, classifier, date_clock):
        assert classifier.assess("beta", _ago(date_clock, hours=2)).badge == QualityBadge.RELIABLE

        stale = classifier.assess("beta", _ago(date_clock, days=2))
        assert stale.badge == QualityBadge.ESTIMATED
        assert stale.show_warning is False

        outdated = classifier.assess("beta", _ago(date_clock, days=9))
        assert outdated.show_warning is True

    def test_low_tier_unverified(self, classifier, date_clock):
        assessment = classifier.assess("gamma", _ago(date_clock, minutes=5))

        assert assessment.badge == QualityBadge.UNVERIFIED
        assert assessment.show_warning is True
        assert assessment.confidence == 75  # (50 + 100) / 2

    def test_unavailable(self, classifier):
        assessment = classifier.assess("alpha", None)

        assert assessment.state == QualityState.UNAVAILABLE
        assert assessment.badge == QualityBadge.UNVERIFIED
        assert assessment.show_warning is True
        assert assessment.confidence == 45
        assert assessment.age_seconds is None

    def test_without_registry(self, date_clock):
        assessment = QualityClassifier(clock=date_clock).assess("x", date_clock.now)

        assert assessment.badge == QualityBadge.UNVERIFIED
        assert assessment.confidence == 50
