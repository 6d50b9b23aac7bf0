from __future__ import annotations

import hashlib
import uuid
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Sequence

from jose import jwt
from jose.exceptions import JOSEError

from query_engine.core.config import settings
from query_engine.schemas.query import SortCriterion

_VERSION = "c1"


class CursorError(ValueError):
    pass


def _secret(secret: str | None) -> str:
    return (secret or "").strip() or settings.CURSOR_SECRET


def sort_signature(sort: Sequence[SortCriterion]) -> str:
    text = "|".join(f"{item.field}:{item.direction}" for item in sort)
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


def _tag(value: Any) -> list:
    if value is None:
        return ["n", None]
    if isinstance(value, bool):
        return ["b", value]
    if isinstance(value, int):
        return ["i", value]
    if isinstance(value, float):
        return ["f", value]
    if isinstance(value, Decimal):
        return ["d", str(value)]
    if isinstance(value, datetime):
        return ["dt", value.isoformat()]
    if isinstance(value, date):
        return ["da", value.isoformat()]
    if isinstance(value, uuid.UUID):
        return ["u", str(value)]
    return ["s", str(value)]


def _untag(item: Any) -> Any:
    if not isinstance(item, list) or len(item) != 2:
        raise CursorError("invalid cursor")
    tag, raw = item
    try:
        if tag == "n":
            return None
        if tag in {"b", "i", "f", "s"}:
            return raw
        if tag == "d":
            return Decimal(raw)
        if tag == "dt":
            return datetime.fromisoformat(raw)
        if tag == "da":
            return date.fromisoformat(raw)
        if tag == "u":
            return uuid.UUID(raw)
    except (TypeError, ValueError, InvalidOperation):
        raise CursorError("invalid cursor")
    raise CursorError("invalid cursor")


def encode_cursor(values: Sequence[Any], sort: Sequence[SortCriterion], *, secret: str | None = None) -> str:
    """Opaque, signed token for the sort-key tuple of a row under the given ordering."""
    claims = {"v": _VERSION, "s": sort_signature(sort), "k": [_tag(value) for value in values]}
    return jwt.encode(claims, _secret(secret), algorithm="HS256")


def decode_cursor(token: str, sort: Sequence[SortCriterion], *, secret: str | None = None) -> tuple[Any, ...]:
    text = str(token or "").strip()
    if not text:
        raise CursorError("invalid cursor")
    try:
        data = jwt.decode(text, _secret(secret), algorithms=["HS256"])
    except JOSEError:
        raise CursorError("invalid cursor")
    if not isinstance(data, dict) or data.get("v") != _VERSION:
        raise CursorError("invalid cursor")
    if data.get("s") != sort_signature(sort):
        raise CursorError("cursor does not match sort")
    keys = data.get("k")
    if not isinstance(keys, list) or len(keys) != len(sort):
        raise CursorError("invalid cursor")
    return tuple(_untag(item) for item in keys)
