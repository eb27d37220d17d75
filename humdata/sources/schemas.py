"""Data models for the sources module."""

from dataclasses import dataclass, field
from enum import Enum


class ReliabilityTier(str, Enum):
    """Declared trustworthiness of a provider, independent of freshness."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class UpdateFrequency(str, Enum):
    """How often a provider publishes new data."""

    REALTIME = "realtime"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    IRREGULAR = "irregular"


class PayloadKind(str, Enum):
    """Transport shape of a provider's payload, used to pick a normalizer."""

    TABULAR_TEXT = "tabular_text"
    TREE = "tree"
    SPREADSHEET = "spreadsheet"


# Default credibility when a catalogue entry does not declare one
DEFAULT_CREDIBILITY = {
    ReliabilityTier.HIGH: 90,
    ReliabilityTier.MEDIUM: 70,
    ReliabilityTier.LOW: 50,
}


@dataclass(frozen=True)
class RateLimitSpec:
    """Fixed-window quota: at most `limit` requests per `window_seconds`."""

    limit: int = 60
    window_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError("Rate limit must admit at least one request")
        if self.window_seconds <= 0:
            raise ValueError("Rate limit window must be positive")


@dataclass(frozen=True)
class SourceDescriptor:
    """Immutable configuration for one external data provider.

    Only `enabled` changes at runtime, and only through
    SourceRegistry.set_enabled(), which swaps in a replaced copy.
    """

    id: str
    base_address: str
    enabled: bool = True
    priority: int = 10
    cache_ttl_seconds: float = 300.0
    max_retries: int = 2
    rate_limit: RateLimitSpec = field(default_factory=RateLimitSpec)
    reliability: ReliabilityTier = ReliabilityTier.MEDIUM
    update_frequency: UpdateFrequency = UpdateFrequency.DAILY
    payload_kind: PayloadKind = PayloadKind.TREE

    # Default dataset request used by the consolidation facade
    endpoint_path: str = ""
    query_params: tuple[tuple[str, str], ...] = ()

    # Attribution
    name: str = ""
    description: str = ""
    url: str = ""
    credibility_score: int | None = None

    # Optional credential injection (comma-separated keys in api_key_env)
    api_key_env: str | None = None
    api_key_param: str | None = None
    api_key_header: str | None = None
    api_key_prefix: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Source id must not be empty")
        if self.cache_ttl_seconds < 0:
            raise ValueError("cache_ttl_seconds must be >= 0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def credibility(self) -> int:
        """Credibility score (0-100), falling back to the tier default."""
        if self.credibility_score is not None:
            return self.credibility_score
        return DEFAULT_CREDIBILITY[self.reliability]
