"""
Normalization strategies, one per payload kind.

Each strategy turns raw bytes into (label, row mapping) pairs and knows
how to look a field up in one of its rows. Structural problems raise
NormalizationError; per-row problems are left to build_rows(), which
turns them into warnings.
"""

import csv
import io
import json
import logging
import zipfile
from abc import ABC, abstractmethod
from typing import Any, Iterable, Iterator, Mapping

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from humdata.errors import NormalizationError
from humdata.normalization.coercion import CoercionError, coerce, is_missing
from humdata.normalization.schemas import NormalizationSchema
from humdata.sources.schemas import PayloadKind

logger = logging.getLogger(__name__)

RawRow = tuple[str, Any]


class NormalizationStrategy(ABC):
    """Base class for payload-kind specific parsing."""

    kind: PayloadKind

    @abstractmethod
    def iter_rows(self, content: bytes, schema: NormalizationSchema) -> list[RawRow]:
        """
        Parse the payload into labelled raw rows.

        Raises:
            NormalizationError: If the payload is structurally invalid
        """
        ...

    @abstractmethod
    def lookup(self, row: Any, key: str) -> Any:
        """Read one field from a raw row; None when absent."""
        ...


_STRATEGIES: dict[PayloadKind, NormalizationStrategy] = {}


def register_strategy(cls: type[NormalizationStrategy]) -> type[NormalizationStrategy]:
    """Class decorator registering a strategy instance under its kind."""
    _STRATEGIES[cls.kind] = cls()
    return cls


def get_strategy(kind: PayloadKind) -> NormalizationStrategy:
    try:
        return _STRATEGIES[kind]
    except KeyError:
        raise NormalizationError(f"No normalization strategy for {kind.value}") from None


def _decode(content: bytes, encoding: str) -> str:
    # Tolerate a UTF-8 byte order mark from spreadsheet exports
    if encoding.lower().replace("_", "-") in ("utf-8", "utf8"):
        encoding = "utf-8-sig"
    try:
        return content.decode(encoding)
    except (UnicodeDecodeError, LookupError) as e:
        raise NormalizationError(f"Payload is not valid {encoding} text: {e}", cause=e) from e


def _header_index(
    rows: Iterator[Iterable[Any]], header_row: int, where: str
) -> list[str]:
    for number, cells in enumerate(rows, start=1):
        if number == header_row:
            header = ["" if c is None else str(c).strip() for c in cells]
            if not any(header):
                break
            return header
    raise NormalizationError(f"No header found at row {header_row} of {where}")


def _check_required_columns(header: list[str], schema: NormalizationSchema, where: str) -> None:
    present = set(header)
    missing = [f.source_key for f in schema.required_fields if f.source_key not in present]
    if missing:
        raise NormalizationError(
            f"Required column(s) {', '.join(missing)} missing from {where}"
        )


def _table_rows(
    rows: Iterator[Iterable[Any]],
    schema: NormalizationSchema,
    where: str,
) -> list[RawRow]:
    """Shared header + data row handling for tabular and spreadsheet payloads."""
    header = _header_index(rows, schema.header_row, where)
    _check_required_columns(header, schema, where)

    result: list[RawRow] = []
    for offset, cells in enumerate(rows, start=schema.header_row + 1):
        cells = list(cells)
        if all(is_missing(c) for c in cells):
            continue
        mapping = {name: cells[i] if i < len(cells) else None for i, name in enumerate(header) if name}
        result.append((f"{where} row {offset}", mapping))
    return result


@register_strategy
class TabularTextStrategy(NormalizationStrategy):
    """Delimited text (CSV, TSV) with a header row."""

    kind = PayloadKind.TABULAR_TEXT

    def iter_rows(self, content: bytes, schema: NormalizationSchema) -> list[RawRow]:
        text = _decode(content, schema.encoding)
        try:
            reader = csv.reader(io.StringIO(text, newline=""), delimiter=schema.delimiter)
            return _table_rows(iter(reader), schema, "table")
        except csv.Error as e:
            raise NormalizationError(f"Malformed delimited text: {e}", cause=e) from e

    def lookup(self, row: Mapping[str, Any], key: str) -> Any:
        return row.get(key)


def resolve_path(document: Any, path: str) -> Any:
    """
    Follow a dotted path through nested mappings and lists.

    Numeric segments index into lists. Returns None when any segment is
    absent.
    """
    current = document
    if not path:
        return current
    for part in path.split("."):
        if isinstance(current, Mapping):
            if part not in current:
                return None
            current = current[part]
        elif isinstance(current, list) and part.lstrip("-").isdigit():
            index = int(part)
            if not -len(current) <= index < len(current):
                return None
            current = current[index]
        else:
            return None
    return current


@register_strategy
class TreeStrategy(NormalizationStrategy):
    """JSON documents; records are found at schema.records_path."""

    kind = PayloadKind.TREE

    def iter_rows(self, content: bytes, schema: NormalizationSchema) -> list[RawRow]:
        text = _decode(content, schema.encoding)
        try:
            document = json.loads(text)
        except json.JSONDecodeError as e:
            raise NormalizationError(f"Payload is not valid JSON: {e}", cause=e) from e

        records = resolve_path(document, schema.records_path)
        if records is None:
            raise NormalizationError(
                f"Records path '{schema.records_path}' not found in payload"
            )
        if isinstance(records, Mapping):
            records = [records]
        if not isinstance(records, list):
            raise NormalizationError(
                f"Records path '{schema.records_path}' holds {type(records).__name__}, "
                "expected a list or object"
            )
        return [(f"record {i}", item) for i, item in enumerate(records)]

    def lookup(self, row: Any, key: str) -> Any:
        if not isinstance(row, Mapping):
            return None
        return resolve_path(row, key)


@register_strategy
class SpreadsheetStrategy(NormalizationStrategy):
    """Excel workbooks (xlsx); the declared sheets are read as tables."""

    kind = PayloadKind.SPREADSHEET

    def iter_rows(self, content: bytes, schema: NormalizationSchema) -> list[RawRow]:
        try:
            workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as e:
            raise NormalizationError(f"Payload is not a readable workbook: {e}", cause=e) from e

        try:
            if schema.sheets:
                missing = [s for s in schema.sheets if s not in workbook.sheetnames]
                if missing:
                    raise NormalizationError(
                        f"Sheet(s) {', '.join(missing)} not found in workbook "
                        f"(available: {', '.join(workbook.sheetnames)})"
                    )
                sheets = [workbook[s] for s in schema.sheets]
            else:
                sheets = [workbook.active]

            rows: list[RawRow] = []
            for sheet in sheets:
                rows.extend(
                    _table_rows(
                        sheet.iter_rows(values_only=True),
                        schema,
                        f"sheet '{sheet.title}'",
                    )
                )
            return rows
        finally:
            workbook.close()

    def lookup(self, row: Mapping[str, Any], key: str) -> Any:
        return row.get(key)


def build_rows(
    raw_rows: list[RawRow],
    schema: NormalizationSchema,
    strategy: NormalizationStrategy,
) -> tuple[list[dict[str, Any]], list[str]]:
    """
    Extract and coerce declared fields from raw rows.

    A row missing a required field, or whose required field cannot be
    coerced, is skipped with one warning. Optional fields that cannot be
    coerced become None with a warning; absent optional fields become
    None silently. Required fields are never defaulted.

    Returns:
        (typed rows, warnings)
    """
    rows: list[dict[str, Any]] = []
    warnings: list[str] = []

    for label, raw in raw_rows:
        if not isinstance(raw, Mapping):
            warnings.append(f"{label}: skipped, expected an object")
            continue

        row: dict[str, Any] = {}
        row_warnings: list[str] = []
        skip_reason: str | None = None

        for spec in schema.fields:
            value = strategy.lookup(raw, spec.source_key)
            if is_missing(value):
                if spec.required:
                    skip_reason = f"missing required field '{spec.name}'"
                    break
                row[spec.name] = None
                continue
            try:
                row[spec.name] = coerce(value, spec.type)
            except CoercionError as e:
                if spec.required:
                    skip_reason = f"invalid required field '{spec.name}': {e}"
                    break
                row[spec.name] = None
                row_warnings.append(f"{label}: invalid optional field '{spec.name}': {e}")

        if skip_reason is not None:
            warnings.append(f"{label}: skipped, {skip_reason}")
            logger.debug(f"Skipped {label} of {schema.name}: {skip_reason}")
            continue

        warnings.extend(row_warnings)
        rows.append(row)

    return rows, warnings
