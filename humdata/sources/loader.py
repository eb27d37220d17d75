"""Load the static source catalogue (descriptors + normalization schemas)."""

import json
import logging
from pathlib import Path
from typing import Any

from humdata.errors import CatalogueError
from humdata.normalization.schemas import FieldSpec, FieldType, NormalizationSchema
from humdata.sources.registry import SourceRegistry
from humdata.sources.schemas import (
    PayloadKind,
    RateLimitSpec,
    ReliabilityTier,
    SourceDescriptor,
    UpdateFrequency,
)

logger = logging.getLogger(__name__)

SEED_FILE = Path(__file__).parent / "data" / "seed_sources.json"


def _parse_query_params(raw: Any) -> tuple[tuple[str, str], ...]:
    """Accept either a list of [key, value] pairs or a mapping."""
    if not raw:
        return ()
    if isinstance(raw, dict):
        return tuple((str(k), str(v)) for k, v in raw.items())
    return tuple((str(k), str(v)) for k, v in raw)


def _parse_descriptor(entry: dict) -> SourceDescriptor:
    """Convert a JSON catalogue entry to a SourceDescriptor."""
    rate_limit = entry.get("rate_limit") or {}
    return SourceDescriptor(
        id=entry["id"],
        base_address=entry["base_address"],
        enabled=entry.get("enabled", True),
        priority=int(entry.get("priority", 10)),
        cache_ttl_seconds=float(entry.get("cache_ttl_seconds", 300)),
        max_retries=int(entry.get("max_retries", 2)),
        rate_limit=RateLimitSpec(
            limit=int(rate_limit.get("limit", 60)),
            window_seconds=float(rate_limit.get("window_seconds", 60)),
        ),
        reliability=ReliabilityTier(entry.get("reliability", "medium")),
        update_frequency=UpdateFrequency(entry.get("update_frequency", "daily")),
        payload_kind=PayloadKind(entry.get("payload_kind", "tree")),
        endpoint_path=entry.get("endpoint_path", ""),
        query_params=_parse_query_params(entry.get("query_params")),
        name=entry.get("name", ""),
        description=entry.get("description", ""),
        url=entry.get("url", ""),
        credibility_score=entry.get("credibility_score"),
        api_key_env=entry.get("api_key_env"),
        api_key_param=entry.get("api_key_param"),
        api_key_header=entry.get("api_key_header"),
        api_key_prefix=entry.get("api_key_prefix", ""),
    )


def _parse_schema(source: SourceDescriptor, raw: dict) -> NormalizationSchema:
    """Convert the `schema` block of a catalogue entry."""
    fields = tuple(
        FieldSpec(
            name=f["name"],
            type=FieldType(f.get("type", "string")),
            required=f.get("required", False),
            source=f.get("source"),
        )
        for f in raw["fields"]
    )
    return NormalizationSchema(
        name=raw.get("name", source.id),
        kind=source.payload_kind,
        fields=fields,
        records_path=raw.get("records_path", ""),
        delimiter=raw.get("delimiter", ","),
        encoding=raw.get("encoding", "utf-8"),
        header_row=int(raw.get("header_row", 1)),
        sheets=tuple(raw.get("sheets", ())),
        cache_records=raw.get("cache_records", False),
    )


def parse_catalogue(
    entries: list[dict],
) -> tuple[SourceRegistry, dict[str, NormalizationSchema]]:
    """
    Build a registry and schema table from decoded catalogue entries.

    Raises:
        CatalogueError: If an entry is missing keys or holds invalid values
    """
    if not isinstance(entries, list):
        raise CatalogueError("Source catalogue must be a JSON list")

    registry = SourceRegistry()
    schemas: dict[str, NormalizationSchema] = {}

    for index, entry in enumerate(entries):
        source_id = entry.get("id") if isinstance(entry, dict) else None
        try:
            descriptor = _parse_descriptor(entry)
            registry.register(descriptor)
            if entry.get("schema"):
                schemas[descriptor.id] = _parse_schema(descriptor, entry["schema"])
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise CatalogueError(
                f"Invalid catalogue entry #{index} ({source_id or 'unnamed'}): {e}",
                source_id=source_id,
                cause=e,
            ) from e

    logger.info(f"Loaded {len(registry)} sources ({len(schemas)} with schemas)")
    return registry, schemas


def load_catalogue(
    path: Path | None = None,
) -> tuple[SourceRegistry, dict[str, NormalizationSchema]]:
    """
    Load sources and schemas from a JSON catalogue file.

    Args:
        path: Catalogue file; the bundled seed catalogue when None

    Raises:
        CatalogueError: If the file is unreadable, not JSON, or malformed
    """
    catalogue_path = path or SEED_FILE
    try:
        with open(catalogue_path, encoding="utf-8") as f:
            entries = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise CatalogueError(
            f"Cannot read source catalogue {catalogue_path}: {e}", cause=e
        ) from e

    return parse_catalogue(entries)
