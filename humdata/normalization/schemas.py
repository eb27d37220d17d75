"""
Canonical record schema and per-source normalization descriptors.

A NormalizationSchema declares how one source's payload is turned into
typed rows. NormalizedRecord is what every downstream consumer sees;
its `data` rows always conform to the schema that produced them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from humdata.sources.schemas import PayloadKind


def _utc_now() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


class FieldType(str, Enum):
    """Types a payload value can be coerced into."""

    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"


@dataclass(frozen=True)
class FieldSpec:
    """One output field.

    `source` is the column header (tabular, spreadsheet) or dotted path
    (tree) the value is read from; defaults to `name`.
    """

    name: str
    type: FieldType = FieldType.STRING
    required: bool = False
    source: str | None = None

    @property
    def source_key(self) -> str:
        return self.source or self.name


@dataclass(frozen=True)
class NormalizationSchema:
    """Declarative transform for one source's payload."""

    name: str
    kind: PayloadKind
    fields: tuple[FieldSpec, ...]

    # tree payloads: dotted path to the record list ("" = document root)
    records_path: str = ""

    # tabular text payloads
    delimiter: str = ","
    encoding: str = "utf-8"

    # tabular and spreadsheet payloads: 1-based header row
    header_row: int = 1

    # spreadsheet payloads: sheet titles to read (empty = active sheet)
    sheets: tuple[str, ...] = ()

    # Cache the normalized record alongside the raw payload
    cache_records: bool = False

    def __post_init__(self) -> None:
        if not self.fields:
            raise ValueError(f"Schema {self.name} declares no fields")
        if self.header_row < 1:
            raise ValueError("header_row is 1-based")
        names = [f.name for f in self.fields]
        if len(names) != len(set(names)):
            raise ValueError(f"Schema {self.name} declares duplicate fields")

    @property
    def required_fields(self) -> list[FieldSpec]:
        return [f for f in self.fields if f.required]


class NormalizedRecord(BaseModel):
    """
    CANONICAL RECORD SCHEMA

    One normalized payload from one source. Every entry in `data` holds
    exactly the fields declared by the schema named in `schema_name`.
    """

    source_id: str = Field(..., description="Source the payload was fetched from")
    fetched_at: datetime = Field(
        default_factory=_utc_now,
        description="UTC timestamp of the successful transport call",
    )
    schema_name: str = Field(..., description="Normalization schema applied")
    data: list[dict[str, Any]] = Field(
        ...,
        min_length=1,
        description="Typed rows conforming to the schema",
    )
    warnings: list[str] = Field(
        default_factory=list,
        description="Non-fatal parse issues (skipped rows, bad optional values)",
    )

    @property
    def row_count(self) -> int:
        return len(self.data)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)
