"""Value objects passed through the fetch pipeline."""

import hashlib
import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Mapping

from humdata.errors import OrchestratorError
from humdata.sources.schemas import SourceDescriptor


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def stable_hash(value: str) -> str:
    """
    Generate a stable, deterministic hash from a string.

    SHA256 truncated to 16 hex characters. Unlike Python's built-in
    hash(), this is deterministic across process restarts.
    """
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class FetchRequest:
    """One logical fetch: (source, endpoint, params), optionally uncached."""

    source_id: str
    endpoint_path: str = ""
    query_params: tuple[tuple[str, str], ...] = ()
    bypass_cache: bool = False

    @classmethod
    def build(
        cls,
        source_id: str,
        endpoint_path: str = "",
        params: Mapping[str, Any] | None = None,
        bypass_cache: bool = False,
    ) -> "FetchRequest":
        """Build a request from a mapping of params, keeping insertion order."""
        query = tuple((str(k), str(v)) for k, v in (params or {}).items())
        return cls(source_id, endpoint_path, query, bypass_cache)

    @classmethod
    def for_source(
        cls, descriptor: SourceDescriptor, bypass_cache: bool = False
    ) -> "FetchRequest":
        """The default dataset request declared by a source descriptor."""
        return cls(
            source_id=descriptor.id,
            endpoint_path=descriptor.endpoint_path,
            query_params=descriptor.query_params,
            bypass_cache=bypass_cache,
        )

    def with_bypass(self, bypass_cache: bool = True) -> "FetchRequest":
        return replace(self, bypass_cache=bypass_cache)

    @property
    def cache_key(self) -> str:
        """Deterministic key over source, endpoint and ordered params.

        bypass_cache is deliberately excluded: a forced refresh writes the
        same key a normal fetch reads.
        """
        material = json.dumps(
            [self.source_id, self.endpoint_path, [list(p) for p in self.query_params]],
            separators=(",", ":"),
        )
        return f"{self.source_id}:{stable_hash(material)}"


@dataclass(frozen=True)
class RawPayload:
    """Opaque response body of a successful transport call."""

    source_id: str
    url: str
    content: bytes
    content_type: str | None = None
    status_code: int = 200
    fetched_at: datetime = field(default_factory=_utc_now)

    @property
    def size_bytes(self) -> int:
        return len(self.content)


@dataclass
class FetchResult:
    """Outcome of FetchExecutor.execute(): a payload or an error, never both."""

    request: FetchRequest
    payload: RawPayload | None = None
    error: OrchestratorError | None = None
    from_cache: bool = False
    attempts: int = 0
    delays: list[float] = field(default_factory=list)

    def __post_init__(self) -> None:
        if (self.payload is None) == (self.error is None):
            raise ValueError("FetchResult needs exactly one of payload or error")

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def source_id(self) -> str:
        return self.request.source_id

    def unwrap(self) -> RawPayload:
        """Return the payload or raise the stored error."""
        if self.error is not None:
            raise self.error
        return self.payload
