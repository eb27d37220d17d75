"""
Payload normalizer.

Turns raw fetched bytes into a NormalizedRecord according to the schema
registered for the source. normalize() never raises: every outcome is a
NormalizationResult holding either the record or a NormalizationError.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Mapping

from humdata.errors import NormalizationError
from humdata.fetching.schemas import RawPayload
from humdata.normalization.schemas import NormalizationSchema, NormalizedRecord
from humdata.normalization.strategies import build_rows, get_strategy
from humdata.observability.metrics import MetricsCollector, get_metrics

logger = logging.getLogger(__name__)


@dataclass
class NormalizationResult:
    """Outcome of normalizing one payload."""

    source_id: str
    record: NormalizedRecord | None = None
    error: NormalizationError | None = None

    def __post_init__(self) -> None:
        if (self.record is None) == (self.error is None):
            raise ValueError("NormalizationResult needs exactly one of record or error")

    @property
    def ok(self) -> bool:
        return self.record is not None

    def unwrap(self) -> NormalizedRecord:
        """Return the record or raise the stored error."""
        if self.error is not None:
            raise self.error
        return self.record


class PayloadNormalizer:
    """
    Applies per-source normalization schemas.

    Usage:
        normalizer = PayloadNormalizer(schemas)
        result = normalizer.normalize("un_ocha", payload)
        if result.ok:
            rows = result.record.data
    """

    def __init__(
        self,
        schemas: Mapping[str, NormalizationSchema] | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self._schemas: dict[str, NormalizationSchema] = dict(schemas or {})
        self._metrics = metrics or get_metrics()

    def register(self, source_id: str, schema: NormalizationSchema) -> None:
        """Register (or replace) the schema for a source."""
        self._schemas[source_id] = schema

    def schema_for(self, source_id: str) -> NormalizationSchema | None:
        return self._schemas.get(source_id)

    def normalize(
        self,
        source_id: str,
        raw: RawPayload | bytes | str,
        fetched_at: datetime | None = None,
    ) -> NormalizationResult:
        """
        Normalize one payload.

        Args:
            source_id: Source the payload belongs to
            raw: Fetched payload, or its body as bytes/str
            fetched_at: Fetch timestamp; taken from the payload when it is
                a RawPayload, otherwise defaults to now

        Returns:
            NormalizationResult with the record or a NormalizationError
        """
        if isinstance(raw, RawPayload):
            content = raw.content
            fetched_at = fetched_at or raw.fetched_at
        elif isinstance(raw, str):
            content = raw.encode("utf-8")
        else:
            content = raw
        fetched_at = fetched_at or datetime.now(timezone.utc)

        try:
            record = self._normalize(source_id, content, fetched_at)
        except NormalizationError as e:
            e.source_id = e.source_id or source_id
            return self._failed(source_id, e)
        except Exception as e:
            # Anything a strategy did not anticipate is still a payload problem
            logger.exception(f"Unexpected error normalizing {source_id}")
            return self._failed(
                source_id,
                NormalizationError(
                    f"Unexpected error normalizing {source_id}: {e}",
                    source_id=source_id,
                    cause=e,
                ),
            )

        self._metrics.record_normalization(
            source_id, failed=False, warnings=len(record.warnings)
        )
        if record.warnings:
            logger.info(
                f"Normalized {source_id}: {record.row_count} rows, "
                f"{len(record.warnings)} warnings"
            )
        return NormalizationResult(source_id=source_id, record=record)

    def _normalize(
        self, source_id: str, content: bytes, fetched_at: datetime
    ) -> NormalizedRecord:
        schema = self._schemas.get(source_id)
        if schema is None:
            raise NormalizationError(
                f"No normalization schema registered for {source_id}",
                source_id=source_id,
            )

        strategy = get_strategy(schema.kind)
        raw_rows = strategy.iter_rows(content, schema)
        rows, warnings = build_rows(raw_rows, schema, strategy)

        if not rows:
            raise NormalizationError(
                f"Payload from {source_id} yielded no usable rows "
                f"({len(raw_rows)} read, {len(warnings)} warnings)",
                source_id=source_id,
                warnings=warnings,
            )

        return NormalizedRecord(
            source_id=source_id,
            fetched_at=fetched_at,
            schema_name=schema.name,
            data=rows,
            warnings=warnings,
        )

    def _failed(self, source_id: str, error: NormalizationError) -> NormalizationResult:
        self._metrics.record_normalization(
            source_id, failed=True, warnings=len(error.warnings)
        )
        logger.warning(f"Normalization failed for {source_id}: {error}")
        return NormalizationResult(source_id=source_id, error=error)
