"""Sources: provider descriptors and the registry.

The catalogue loader lives in humdata.sources.loader; it depends on the
normalization schemas and is imported from there directly.
"""

from humdata.sources.registry import SourceRegistry
from humdata.sources.schemas import (
    DEFAULT_CREDIBILITY,
    PayloadKind,
    RateLimitSpec,
    ReliabilityTier,
    SourceDescriptor,
    UpdateFrequency,
)

__all__ = [
    "DEFAULT_CREDIBILITY",
    "PayloadKind",
    "RateLimitSpec",
    "ReliabilityTier",
    "SourceDescriptor",
    "SourceRegistry",
    "UpdateFrequency",
]
