"""Freshness and quality classification."""

from humdata.quality.classifier import (
    FRESHNESS_SCORES,
    QualityAssessment,
    QualityBadge,
    QualityClassifier,
    QualityState,
    classify_age,
)

__all__ = [
    "FRESHNESS_SCORES",
    "QualityAssessment",
    "QualityBadge",
    "QualityClassifier",
    "QualityState",
    "classify_age",
]
