from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from query_engine.core.config import settings
from query_engine.core.errors import QueryValidationError
from query_engine.schemas.query import (
    DIRECTIONS,
    LIST_OPERATORS,
    OPERATORS,
    TEXT_OPERATORS,
    VALUELESS_OPERATORS,
    CursorPagination,
    FilterCriterion,
    OffsetPagination,
    QuerySpecification,
    SearchSpec,
    SortCriterion,
    WindowPagination,
)
from query_engine.services.cursor_tokens import CursorError, decode_cursor
from query_engine.services.metadata import ModelMetadataProvider, resolve_sort
from query_engine.services.request_parsing import DraftFilter, DraftPagination, DraftQuery, DraftSearch, DraftSort
from query_engine.services.value_coercion import ValueCoercionError, coerce_bool, coerce_for_kind

_LOG = logging.getLogger("query_engine.validation")

REASON_NOT_FILTERABLE = "field not filterable"
REASON_NOT_SORTABLE = "field not sortable"
REASON_NOT_SEARCHABLE = "field not searchable"
WHITELIST_REASONS = frozenset({REASON_NOT_FILTERABLE, REASON_NOT_SORTABLE, REASON_NOT_SEARCHABLE})


@dataclass
class ValidationResult:
    """Mutable collector for one validation pass. Not an exception."""

    errors: list[dict[str, Any]] = field(default_factory=list)

    def add_error(self, field_name: str, reason: str, rejected_value: Any = None) -> None:
        self.errors.append({"field": field_name, "reason": reason, "rejectedValue": _jsonable(rejected_value)})

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


@dataclass(frozen=True)
class ValidationOutcome:
    spec: Optional[QuerySpecification]
    violations: tuple[dict[str, Any], ...] = ()
    dropped: tuple[dict[str, Any], ...] = ()

    @property
    def ok(self) -> bool:
        return self.spec is not None


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    return str(value)


def _parse_int(raw: Any) -> int:
    if isinstance(raw, bool):
        raise ValueError(raw)
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    return int(str(raw).strip())


class ParameterValidator:
    def __init__(
        self,
        metadata: ModelMetadataProvider,
        *,
        max_page_size: int | None = None,
        strict: bool | None = None,
        cursor_secret: str | None = None,
    ):
        self.metadata = metadata
        defaults = metadata.pagination_defaults()
        self.max_page_size = max_page_size or defaults.max_page_size
        self.default_page_size = min(defaults.page_size, self.max_page_size)
        self.strict = settings.STRICT_FIELD_VALIDATION if strict is None else strict
        self.cursor_secret = cursor_secret

    def validate(self, draft: DraftQuery) -> ValidationOutcome:
        result = ValidationResult()
        filters = tuple(self._filters(draft.filters, result))
        sort = tuple(self._sort(draft.sort, result))
        search = self._search(draft.search, result)
        include_deleted = self._include_deleted(draft.include_deleted, result)
        pagination = self._pagination(draft.pagination, sort, result)

        violations = result.errors
        dropped: list[dict[str, Any]] = []
        if not self.strict:
            dropped = [item for item in violations if item["reason"] in WHITELIST_REASONS]
            violations = [item for item in violations if item["reason"] not in WHITELIST_REASONS]
            for item in dropped:
                _LOG.info(
                    "query parameter dropped model=%s field=%s reason=%s",
                    self.metadata.model_name,
                    item["field"],
                    item["reason"],
                )

        if violations:
            _LOG.info(
                "query validation failed model=%s violations=%s fields=%s",
                self.metadata.model_name,
                len(violations),
                ",".join(sorted({str(item["field"]) for item in violations})),
            )
            return ValidationOutcome(spec=None, violations=tuple(violations), dropped=tuple(dropped))

        spec = QuerySpecification(
            filters=filters,
            sort=sort,
            pagination=pagination,
            search=search,
            include_deleted=include_deleted,
        )
        return ValidationOutcome(spec=spec, dropped=tuple(dropped))

    def validate_or_raise(self, draft: DraftQuery) -> QuerySpecification:
        outcome = self.validate(draft)
        if outcome.spec is None:
            raise QueryValidationError(list(outcome.violations))
        return outcome.spec

    def _filters(self, drafts: list[DraftFilter], result: ValidationResult):
        for draft in drafts:
            name = draft.field
            if not self.metadata.is_field_filterable(name):
                result.add_error(name, REASON_NOT_FILTERABLE, name)
                continue
            operator = draft.operator
            if operator not in OPERATORS:
                result.add_error(name, "operator not supported", operator)
                continue
            if not self.metadata.supports_operator(name, operator):
                result.add_error(name, "operator not supported for field", operator)
                continue
            criterion = self._criterion(name, operator, draft.value, result)
            if criterion is not None:
                yield criterion

    def _criterion(self, name: str, operator: str, raw: Any, result: ValidationResult) -> FilterCriterion | None:
        kind = self.metadata.field_kind(name)
        case_sensitive = self.metadata.is_field_case_sensitive(name)

        def build(value: Any) -> FilterCriterion:
            return FilterCriterion(
                field=name,
                operator=operator,
                value=value,
                value_type=kind,
                case_sensitive=case_sensitive,
            )

        if operator in VALUELESS_OPERATORS:
            return build(None)
        if operator == "custom":
            if raw is None or raw == "":
                result.add_error(name, "value required", raw)
                return None
            return build(raw)

        if operator == "between":
            values = list(raw) if isinstance(raw, (list, tuple)) else [raw]
            values = [item for item in values if item is not None and item != ""]
            if len(values) != 2:
                result.add_error(name, "between requires exactly two values", raw)
                return None
            low, high = (self._coerce(name, kind, item, result) for item in values)
            if low is None or high is None:
                return None
            try:
                # Descending pairs are swapped, not rejected.
                if high < low:
                    low, high = high, low
            except TypeError:
                result.add_error(name, f"invalid {kind} value", raw)
                return None
            return build((low, high))

        if operator in LIST_OPERATORS:
            values = list(raw) if isinstance(raw, (list, tuple)) else [raw]
            values = [item for item in values if item is not None and item != ""]
            if not values:
                result.add_error(name, f"{operator} requires at least one value", raw)
                return None
            coerced = []
            for item in values:
                value = self._coerce(name, kind, item, result)
                if value is None:
                    return None
                if value not in coerced:
                    coerced.append(value)
            return build(tuple(coerced))

        if isinstance(raw, (list, tuple, dict)):
            result.add_error(name, f"{operator} requires a single value", raw)
            return None
        if raw is None or (isinstance(raw, str) and not raw.strip() and kind != "text"):
            result.add_error(name, "value required", raw)
            return None
        if operator == "regex":
            try:
                re.compile(str(raw))
            except re.error:
                result.add_error(name, "invalid regular expression", raw)
                return None
            return build(str(raw))
        if operator in TEXT_OPERATORS:
            text = str(raw)
            if not text:
                result.add_error(name, "value required", raw)
                return None
            return build(text)
        value = self._coerce(name, kind, raw, result)
        if value is None:
            return None
        return build(value)

    def _coerce(self, name: str, kind: str, raw: Any, result: ValidationResult):
        try:
            return coerce_for_kind(kind, raw, options=self.metadata.field_options(name))
        except ValueCoercionError as exc:
            result.add_error(name, str(exc), raw)
            return None

    def _sort(self, drafts: list[DraftSort], result: ValidationResult):
        seen: set[str] = set()
        for draft in drafts:
            if not self.metadata.is_field_sortable(draft.field):
                result.add_error(draft.field, REASON_NOT_SORTABLE, draft.field)
                continue
            direction = str(draft.direction or "asc").strip().lower()
            if direction not in DIRECTIONS:
                result.add_error(draft.field, "invalid sort direction", draft.direction)
                continue
            if draft.field in seen:
                continue
            seen.add(draft.field)
            yield SortCriterion(field=draft.field, direction=direction)

    def _search(self, draft: DraftSearch, result: ValidationResult) -> SearchSpec | None:
        term = str(draft.term or "").strip()
        if not term:
            return None
        if draft.fields:
            fields = []
            for name in draft.fields:
                if not self.metadata.is_field_searchable(name):
                    result.add_error(name, REASON_NOT_SEARCHABLE, name)
                    continue
                if name not in fields:
                    fields.append(name)
        else:
            fields = list(self.metadata.list_searchable_fields())
            if not fields:
                result.add_error("search", "model has no searchable fields", term)
        if not fields:
            return None
        return SearchSpec(term=term, fields=tuple(fields))

    def _include_deleted(self, raw: Any, result: ValidationResult) -> bool:
        if raw is None or raw == "":
            return False
        try:
            return coerce_bool(raw)
        except ValueCoercionError:
            result.add_error("includeDeleted", "invalid boolean value", raw)
            return False

    def _page_size(self, raw: Any, field_name: str, result: ValidationResult) -> int:
        if raw is None or raw == "":
            return self.default_page_size
        try:
            size = _parse_int(raw)
        except (TypeError, ValueError):
            result.add_error(field_name, "must be an integer", raw)
            return self.default_page_size
        if size <= 0:
            return self.default_page_size
        if size > self.max_page_size:
            _LOG.warning(
                "page size exceeds maximum, clamping model=%s requested=%s max=%s",
                self.metadata.model_name,
                size,
                self.max_page_size,
            )
            return self.max_page_size
        return size

    def _non_negative(self, raw: Any, field_name: str, default: int, result: ValidationResult) -> int | None:
        if raw is None or raw == "":
            return default
        try:
            number = _parse_int(raw)
        except (TypeError, ValueError):
            result.add_error(field_name, "must be an integer", raw)
            return None
        if number < 0:
            result.add_error(field_name, "must not be negative", raw)
            return None
        return number

    def _pagination(self, draft: DraftPagination, sort: tuple[SortCriterion, ...], result: ValidationResult):
        if draft.kind == "window":
            start = self._non_negative(draft.start_row, "startRow", 0, result)
            end_default = (start or 0) + self.default_page_size
            end = self._non_negative(draft.end_row, "endRow", end_default, result)
            if start is None or end is None:
                return WindowPagination()
            if end <= start:
                result.add_error("endRow", "endRow must be greater than startRow", draft.end_row)
                return WindowPagination()
            if end - start > self.max_page_size:
                _LOG.warning(
                    "row window exceeds maximum, clamping model=%s requested=%s max=%s",
                    self.metadata.model_name,
                    end - start,
                    self.max_page_size,
                )
                end = start + self.max_page_size
            return WindowPagination(start_row=start, end_row=end)

        page_size = self._page_size(draft.page_size, "pageSize", result)

        if draft.kind == "cursor":
            token = str(draft.cursor or "").strip() or None
            position = None
            if token is not None:
                try:
                    position = decode_cursor(
                        token,
                        resolve_sort(sort, self.metadata),
                        secret=self.cursor_secret,
                    )
                except CursorError as exc:
                    result.add_error("cursor", str(exc), token)
                    token = None
            return CursorPagination(token=token, page_size=page_size, position=position)

        page = self._non_negative(draft.page, "page", 1, result)
        # Page numbers are 1-based; page=0 is read as the first page.
        return OffsetPagination(page=max(page or 1, 1), page_size=page_size)
