from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

_TRUE_LITERALS = {"1", "true", "yes", "y", "on"}
_FALSE_LITERALS = {"0", "false", "no", "n", "off"}


class ValueCoercionError(ValueError):
    def __init__(self, kind: str, value: Any):
        super().__init__(f"invalid {kind} value")
        self.kind = kind
        self.value = value


def coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value in (0, 1):
            return bool(value)
        raise ValueCoercionError("boolean", value)
    text = str(value or "").strip().lower()
    if text in _TRUE_LITERALS:
        return True
    if text in _FALSE_LITERALS:
        return False
    raise ValueCoercionError("boolean", value)


def coerce_number(value: Any, python_type: type, kind: str = "number"):
    if isinstance(value, bool):
        raise ValueCoercionError(kind, value)
    if python_type in {int, float} and isinstance(value, (int, float)):
        if python_type is int and isinstance(value, float) and not value.is_integer():
            raise ValueCoercionError(kind, value)
        return python_type(value)
    if python_type is Decimal and isinstance(value, (Decimal, int)):
        return Decimal(value)
    text = str(value if value is not None else "").strip()
    if not text:
        raise ValueCoercionError(kind, value)
    normalized = text.replace(",", ".")
    try:
        if python_type is int:
            return int(normalized)
        if python_type is float:
            return float(normalized)
        if python_type is Decimal:
            parsed = Decimal(normalized)
            if not parsed.is_finite():
                raise ValueCoercionError(kind, value)
            return parsed
        return python_type(normalized)
    except (ValueError, TypeError, InvalidOperation):
        raise ValueCoercionError(kind, value)


def coerce_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value or "").strip()
    if not text:
        raise ValueCoercionError("date", value)
    try:
        # Accept either YYYY-MM-DD or full ISO datetime and take its date part.
        if "T" in text or " " in text:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        return date.fromisoformat(text)
    except ValueError:
        raise ValueCoercionError("date", value)


def coerce_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, datetime.min.time())
    else:
        text = str(value or "").strip()
        if not text:
            raise ValueCoercionError("datetime", value)
        try:
            if "T" not in text and " " not in text and len(text) == 10:
                # Date-only filter value for timestamp columns -> start of the day.
                parsed = datetime.combine(date.fromisoformat(text), datetime.min.time())
            else:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            raise ValueCoercionError("datetime", value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def coerce_uuid(value: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value or "").strip())
    except ValueError:
        raise ValueCoercionError("uuid", value)


def coerce_enum(value: Any, options: Iterable[str]) -> str:
    text = str(value if value is not None else "").strip()
    if text not in set(options):
        raise ValueCoercionError("enum", value)
    return text


def coerce_for_kind(kind: str, value: Any, *, options: Iterable[str] | None = None):
    """Convert a raw request value into the Python type of a field kind.

    Raises ``ValueCoercionError`` so callers can record the failure instead of aborting.
    """
    if kind == "boolean":
        return coerce_bool(value)
    if kind == "integer":
        return coerce_number(value, int, "integer")
    if kind == "float":
        return coerce_number(value, float)
    if kind == "decimal":
        return coerce_number(value, Decimal)
    if kind == "date":
        return coerce_date(value)
    if kind == "datetime":
        return coerce_datetime(value)
    if kind == "uuid":
        return coerce_uuid(value)
    if kind == "enum":
        return coerce_enum(value, options or ())
    if isinstance(value, (dict, list, tuple)):
        raise ValueCoercionError("text", value)
    return str(value)
