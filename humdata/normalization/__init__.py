"""Normalization: raw payloads into canonical records."""

from humdata.normalization.schemas import (
    FieldSpec,
    FieldType,
    NormalizationSchema,
    NormalizedRecord,
)
from humdata.normalization.coercion import CoercionError, coerce
from humdata.normalization.normalizer import NormalizationResult, PayloadNormalizer
from humdata.normalization.strategies import (
    NormalizationStrategy,
    get_strategy,
    register_strategy,
    resolve_path,
)

__all__ = [
    "CoercionError",
    "FieldSpec",
    "FieldType",
    "NormalizationResult",
    "NormalizationSchema",
    "NormalizationStrategy",
    "NormalizedRecord",
    "PayloadNormalizer",
    "coerce",
    "get_strategy",
    "register_strategy",
    "resolve_path",
]
