"""Value coercion from loosely-typed payload cells to declared field types."""

import math
from datetime import date, datetime, timezone
from typing import Any

from humdata.normalization.schemas import FieldType

_TRUE = {"true", "t", "yes", "y", "1"}
_FALSE = {"false", "f", "no", "n", "0"}

# Day-first formats seen in NGO spreadsheets and CSV exports
_DATE_FORMATS = ("%d/%m/%Y", "%Y/%m/%d", "%d-%m-%Y", "%d.%m.%Y", "%Y%m%d")


class CoercionError(ValueError):
    """Raised when a value cannot be converted to its declared type."""


def is_missing(value: Any) -> bool:
    """None and blank strings count as missing; zero and False do not."""
    if value is None:
        return True
    return isinstance(value, str) and value.strip() == ""


def _clean_number(value: str) -> str:
    # Thousands separators and stray whitespace, e.g. " 1,234 "
    return value.strip().replace(",", "").replace("_", "").replace(" ", "")


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise CoercionError(f"boolean {value!r} is not an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise CoercionError(f"{value!r} is not a whole number")
        return int(value)
    text = _clean_number(str(value))
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        raise CoercionError(f"{value!r} is not an integer") from None
    if not math.isfinite(number) or not number.is_integer():
        raise CoercionError(f"{value!r} is not a whole number")
    return int(number)


def _to_float(value: Any) -> float:
    if isinstance(value, bool):
        raise CoercionError(f"boolean {value!r} is not a number")
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        try:
            number = float(_clean_number(str(value)))
        except ValueError:
            raise CoercionError(f"{value!r} is not a number") from None
    if not math.isfinite(number):
        raise CoercionError(f"{value!r} is not a finite number")
    return number


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise CoercionError(f"{value!r} is not a boolean")


def _parse_iso(text: str) -> datetime:
    # fromisoformat() only accepts a trailing Z from Python 3.11
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        try:
            parsed = _parse_iso(text)
        except ValueError:
            parsed = None
            for fmt in _DATE_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
            if parsed is None:
                raise CoercionError(f"{value!r} is not a date/time") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return _to_datetime(value).date()


def _to_str(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        # Spreadsheets store codes like 970 as 970.0
        return str(int(value))
    return str(value).strip()


_CONVERTERS = {
    FieldType.STRING: _to_str,
    FieldType.INTEGER: _to_int,
    FieldType.FLOAT: _to_float,
    FieldType.BOOLEAN: _to_bool,
    FieldType.DATE: _to_date,
    FieldType.DATETIME: _to_datetime,
}


def coerce(value: Any, field_type: FieldType) -> Any:
    """
    Convert a non-missing payload value to the declared type.

    Raises:
        CoercionError: If the value cannot be represented as field_type
    """
    return _CONVERTERS[field_type](value)
