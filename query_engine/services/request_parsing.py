"""Inbound parameter grammars.

Each grammar is a pure ``raw params -> DraftQuery`` function. Nothing here checks
field whitelists or value types; the validator owns that so every grammar shares
one error-reporting path.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from query_engine.core.errors import MalformedRequestError

_LOG = logging.getLogger("query_engine.parsing")

_FIELD_NAME_RE = re.compile(r"[^A-Za-z0-9_.]")
_BRACKET_KEY_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)((?:\[[^\[\]]*\])+)$")
_BRACKET_PART_RE = re.compile(r"\[([^\[\]]*)\]")

FORMAT_ROW_WINDOW = "row-window"
FORMAT_DATA_TABLE = "data-table"
FORMAT_SIMPLE = "simple"

MULTI_VALUE_OPERATORS = {"in", "notIn", "between"}

# Grid and shorthand operator names -> canonical vocabulary. Unknown names pass
# through untouched so the validator can report them.
OPERATOR_ALIASES = {
    "equals": "equals",
    "eq": "equals",
    "=": "equals",
    "==": "equals",
    "is": "equals",
    "notEquals": "notEquals",
    "notEqual": "notEquals",
    "ne": "notEquals",
    "neq": "notEquals",
    "!=": "notEquals",
    "not": "notEquals",
    "contains": "contains",
    "startsWith": "startsWith",
    "endsWith": "endsWith",
    "gt": "gt",
    ">": "gt",
    "greaterThan": "gt",
    "after": "gt",
    "gte": "gte",
    ">=": "gte",
    "greaterThanOrEqual": "gte",
    "onOrAfter": "gte",
    "lt": "lt",
    "<": "lt",
    "lessThan": "lt",
    "before": "lt",
    "lte": "lte",
    "<=": "lte",
    "lessThanOrEqual": "lte",
    "onOrBefore": "lte",
    "in": "in",
    "isAnyOf": "in",
    "notIn": "notIn",
    "isNoneOf": "notIn",
    "isNull": "isNull",
    "isEmpty": "isNull",
    "empty": "isNull",
    "blank": "isNull",
    "isNotNull": "isNotNull",
    "isNotEmpty": "isNotNull",
    "notEmpty": "isNotNull",
    "notBlank": "isNotNull",
    "between": "between",
    "inRange": "between",
    "regex": "regex",
    "matches": "regex",
    "custom": "custom",
}

_SIMPLE_KEYS = (
    "page",
    "pageSize",
    "per_page",
    "search",
    "q",
    "sortBy",
    "sortDir",
    "sortOrder",
    "sort",
    "cursor",
    "after",
)


@dataclass
class DraftFilter:
    field: str
    operator: str
    value: Any = None


@dataclass
class DraftSort:
    field: str
    direction: Any = "asc"


@dataclass
class DraftPagination:
    kind: str = "offset"
    page: Any = None
    page_size: Any = None
    start_row: Any = None
    end_row: Any = None
    cursor: str | None = None


@dataclass
class DraftSearch:
    term: str = ""
    fields: list[str] = field(default_factory=list)


@dataclass
class DraftQuery:
    source_format: str
    filters: list[DraftFilter] = field(default_factory=list)
    sort: list[DraftSort] = field(default_factory=list)
    pagination: DraftPagination = field(default_factory=DraftPagination)
    search: DraftSearch = field(default_factory=DraftSearch)
    include_deleted: Any = None
    include_total: bool = False
    response_format: str | None = None
    param_count: int = 0


def sanitize_field_name(raw: Any) -> str:
    return _FIELD_NAME_RE.sub("", str(raw or "").strip())


def canonical_operator(raw: Any) -> str:
    text = str(raw or "").strip()
    return OPERATOR_ALIASES.get(text, text)


def _last(value: Any) -> Any:
    """Repeated query keys arrive as a list; the last occurrence wins."""
    if isinstance(value, (list, tuple)):
        return value[-1] if value else None
    return value


def _param(params: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in params:
            value = _last(params[name])
            if value is not None and value != "":
                return value
    return None


def _text(value: Any) -> str:
    return str(value if value is not None else "").strip()


def _truthy(value: Any) -> bool:
    return _text(_last(value)).lower() in {"1", "true", "yes", "y", "on"}


def _split_csv(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple)):
        items: list[Any] = []
        for item in value:
            items.extend(_split_csv(item))
        return items
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return [value]


def _load_json(params: Mapping[str, Any], name: str) -> Any:
    raw = _last(params.get(name))
    if raw is None or isinstance(raw, (dict, list)):
        return raw
    text = str(raw).strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        raise MalformedRequestError(f'Parameter "{name}" is not valid JSON', parameter=name)


def _bracket_groups(params: Mapping[str, Any], root: str) -> dict[str, Any]:
    """Collect ``root[a][b]=v`` keys (or an already nested ``root`` mapping) into a tree."""
    tree: dict[str, Any] = {}
    nested = params.get(root)
    if isinstance(nested, Mapping):
        for key, value in nested.items():
            tree[str(key)] = dict(value) if isinstance(value, Mapping) else value
    for key, value in params.items():
        match = _BRACKET_KEY_RE.match(str(key))
        if match is None or match.group(1) != root:
            continue
        parts = _BRACKET_PART_RE.findall(match.group(2))
        node = tree
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value
    return tree


def _shared_fields(draft: DraftQuery, params: Mapping[str, Any]) -> DraftQuery:
    include_deleted = _param(params, "includeDeleted", "include_deleted")
    draft.include_deleted = include_deleted
    draft.include_total = _truthy(_param(params, "includeTotal", "include_total"))
    response_format = _param(params, "responseFormat", "format")
    draft.response_format = _text(response_format) or None
    cursor = _param(params, "cursor", "after")
    if cursor is not None and draft.pagination.cursor is None:
        draft.pagination.cursor = _text(cursor)
    draft.param_count = len(params)
    return draft


def _structured_filters(params: Mapping[str, Any]) -> list[DraftFilter]:
    filters: list[DraftFilter] = []
    for raw_field, spec in _bracket_groups(params, "filter").items():
        field_name = sanitize_field_name(raw_field)
        if not field_name:
            continue
        if isinstance(spec, Mapping):
            for raw_op, value in spec.items():
                operator = canonical_operator(raw_op)
                if operator in MULTI_VALUE_OPERATORS:
                    value = _split_csv(value)
                else:
                    value = _last(value)
                filters.append(DraftFilter(field=field_name, operator=operator, value=value))
            continue
        value = _last(spec)
        if value is None or value == "":
            continue
        filters.append(DraftFilter(field=field_name, operator="equals", value=value))
    return filters


def _simple_sort(params: Mapping[str, Any]) -> list[DraftSort]:
    sorting: list[DraftSort] = []
    sort_by = _param(params, "sortBy")
    if sort_by is not None:
        direction = _param(params, "sortDir", "sortOrder") or "asc"
        sorting.append(DraftSort(field=sanitize_field_name(sort_by), direction=_text(direction).lower()))
    sort_param = _param(params, "sort")
    if isinstance(sort_param, str):
        for pair in sort_param.split(","):
            name, _, direction = pair.strip().partition(":")
            name = sanitize_field_name(name)
            if name:
                sorting.append(DraftSort(field=name, direction=_text(direction or "asc").lower()))
    return sorting


def _search_fields(params: Mapping[str, Any]) -> list[str]:
    raw = params.get("search_fields", params.get("searchFields"))
    if raw is None:
        return []
    return [sanitize_field_name(item) for item in _split_csv(raw) if sanitize_field_name(item)]


def parse_simple(params: Mapping[str, Any]) -> DraftQuery:
    cursor = _param(params, "cursor", "after")
    page_size = _param(params, "pageSize", "per_page", "limit")
    if cursor is not None:
        pagination = DraftPagination(kind="cursor", page_size=page_size, cursor=_text(cursor))
    else:
        pagination = DraftPagination(kind="offset", page=_param(params, "page"), page_size=page_size)
    draft = DraftQuery(
        source_format=FORMAT_SIMPLE,
        filters=_structured_filters(params),
        sort=_simple_sort(params),
        pagination=pagination,
        search=DraftSearch(term=_text(_param(params, "search", "q")), fields=_search_fields(params)),
    )
    return _shared_fields(draft, params)


def _row_window_filter(field_name: str, spec: Mapping[str, Any]) -> list[DraftFilter]:
    conditions = spec.get("conditions")
    if isinstance(conditions, list):
        join = _text(spec.get("operator") or "AND").upper()
        if join != "AND" and len(conditions) > 1:
            raise MalformedRequestError(
                f'OR condition groups are not supported (filterModel.{field_name})',
                parameter="filterModel",
            )
        result: list[DraftFilter] = []
        for condition in conditions:
            if not isinstance(condition, Mapping):
                raise MalformedRequestError("filterModel conditions must be objects", parameter="filterModel")
            result.extend(_row_window_filter(field_name, condition))
        return result

    if _text(spec.get("filterType")) == "set":
        return [DraftFilter(field=field_name, operator="in", value=list(spec.get("values") or []))]

    operator = canonical_operator(spec.get("type") or "equals")
    value = spec.get("filter", spec.get("dateFrom"))
    if operator == "between":
        upper = spec.get("filterTo", spec.get("dateTo"))
        value = [item for item in (value, upper) if item is not None]
    elif operator in {"in", "notIn"}:
        value = _split_csv(value)
    return [DraftFilter(field=field_name, operator=operator, value=value)]


def _row_window_filters(params: Mapping[str, Any]) -> list[DraftFilter]:
    filters: list[DraftFilter] = []
    model = _load_json(params, "filterModel")
    if model is not None and not isinstance(model, Mapping):
        raise MalformedRequestError("filterModel must be a JSON object", parameter="filterModel")
    for raw_field, spec in (model or {}).items():
        field_name = sanitize_field_name(raw_field)
        if not field_name:
            continue
        if not isinstance(spec, Mapping):
            raise MalformedRequestError(f"filterModel.{field_name} must be an object", parameter="filterModel")
        filters.extend(_row_window_filter(field_name, spec))

    # Flattened form: filters[field][type]=...&filters[field][filter]=...
    for raw_field, spec in _bracket_groups(params, "filters").items():
        field_name = sanitize_field_name(raw_field)
        if not field_name or not isinstance(spec, Mapping):
            continue
        flattened = {key: _last(value) for key, value in spec.items()}
        if flattened.get("filter") in (None, "") and canonical_operator(flattened.get("type")) not in {
            "isNull",
            "isNotNull",
        }:
            continue
        filters.extend(_row_window_filter(field_name, flattened))
    return filters


def _sort_model(params: Mapping[str, Any], field_key: str) -> list[DraftSort]:
    model = _load_json(params, "sortModel")
    if model is None:
        return []
    if not isinstance(model, list):
        raise MalformedRequestError("sortModel must be a JSON array", parameter="sortModel")
    sorting: list[DraftSort] = []
    for item in model:
        if not isinstance(item, Mapping):
            raise MalformedRequestError("sortModel entries must be objects", parameter="sortModel")
        name = sanitize_field_name(item.get(field_key) or item.get("field") or item.get("colId"))
        if not name:
            continue
        sorting.append(DraftSort(field=name, direction=_text(item.get("sort") or "asc").lower()))
    return sorting


def _row_window_flat_sort(params: Mapping[str, Any]) -> list[DraftSort]:
    indexed = _bracket_groups(params, "sort")
    sorting: list[tuple[int, DraftSort]] = []
    for index, spec in indexed.items():
        if not isinstance(spec, Mapping) or not str(index).isdigit():
            continue
        name = sanitize_field_name(_last(spec.get("colId")))
        if name:
            direction = _text(_last(spec.get("sort")) or "asc").lower()
            sorting.append((int(index), DraftSort(field=name, direction=direction)))
    return [item for _, item in sorted(sorting, key=lambda pair: pair[0])]


def parse_row_window(params: Mapping[str, Any]) -> DraftQuery:
    draft = DraftQuery(
        source_format=FORMAT_ROW_WINDOW,
        filters=_row_window_filters(params),
        sort=_sort_model(params, "colId") + _row_window_flat_sort(params),
        pagination=DraftPagination(
            kind="window",
            start_row=_param(params, "startRow"),
            end_row=_param(params, "endRow"),
        ),
        search=DraftSearch(
            term=_text(_param(params, "globalFilter", "search")),
            fields=_search_fields(params),
        ),
    )
    return _shared_fields(draft, params)


def _data_table_filters(params: Mapping[str, Any]) -> tuple[list[DraftFilter], list[str]]:
    model = _load_json(params, "filterModel")
    if model is None:
        return [], []
    if not isinstance(model, Mapping):
        raise MalformedRequestError("filterModel must be a JSON object", parameter="filterModel")

    quick = model.get("quickFilterValues")
    quick_terms = [str(item).strip() for item in quick if str(item).strip()] if isinstance(quick, list) else []

    items = model.get("items")
    filters: list[DraftFilter] = []
    if isinstance(items, list):
        logic = _text(model.get("logicOperator") or "and").lower()
        if logic != "and" and len(items) > 1:
            raise MalformedRequestError("OR filter groups are not supported", parameter="filterModel")
        for item in items:
            if not isinstance(item, Mapping):
                raise MalformedRequestError("filterModel.items entries must be objects", parameter="filterModel")
            name = sanitize_field_name(item.get("field") or item.get("columnField"))
            operator = canonical_operator(item.get("operator") or item.get("operatorValue") or "equals")
            value = item.get("value")
            if not name:
                continue
            # MUI sends items with no value while the user is still typing.
            if value in (None, "", []) and operator not in {"isNull", "isNotNull"}:
                continue
            if operator in MULTI_VALUE_OPERATORS:
                value = _split_csv(value)
            filters.append(DraftFilter(field=name, operator=operator, value=value))
        return filters, quick_terms

    for raw_field, value in model.items():
        if raw_field in {"quickFilterValues", "logicOperator", "quickFilterLogicOperator"}:
            continue
        name = sanitize_field_name(raw_field)
        if not name or value in (None, ""):
            continue
        if isinstance(value, Mapping):
            for raw_op, op_value in value.items():
                operator = canonical_operator(raw_op)
                if operator in MULTI_VALUE_OPERATORS:
                    op_value = _split_csv(op_value)
                filters.append(DraftFilter(field=name, operator=operator, value=op_value))
        else:
            filters.append(DraftFilter(field=name, operator="equals", value=value))
    return filters, quick_terms


def _zero_based_page(raw: Any) -> Any:
    if raw is None:
        return None
    try:
        number = int(str(raw).strip())
    except ValueError:
        return raw
    # Negative input stays negative so the validator rejects it.
    return number + 1 if number >= 0 else number


def parse_data_table(params: Mapping[str, Any]) -> DraftQuery:
    filters, quick_terms = _data_table_filters(params)
    term = _text(_param(params, "search", "q")) or " ".join(quick_terms)
    draft = DraftQuery(
        source_format=FORMAT_DATA_TABLE,
        filters=filters,
        sort=_sort_model(params, "field"),
        pagination=DraftPagination(
            kind="offset",
            page=_zero_based_page(_param(params, "page")),
            page_size=_param(params, "pageSize"),
        ),
        search=DraftSearch(term=term, fields=_search_fields(params)),
    )
    return _shared_fields(draft, params)


def _has_row_window_keys(params: Mapping[str, Any]) -> bool:
    return "startRow" in params or "endRow" in params


def _has_json_models(params: Mapping[str, Any]) -> bool:
    return "filterModel" in params or "sortModel" in params


def _has_simple_keys(params: Mapping[str, Any]) -> bool:
    if any(key in params for key in _SIMPLE_KEYS):
        return True
    return "filter" in params or any(str(key).startswith("filter[") for key in params)


@dataclass(frozen=True)
class FormatMatcher:
    name: str
    matches: Callable[[Mapping[str, Any]], bool]
    parse: Callable[[Mapping[str, Any]], DraftQuery]
    response_format: str


# Evaluated top to bottom, first match wins. The last entry always matches.
FORMAT_MATCHERS: tuple[FormatMatcher, ...] = (
    FormatMatcher(FORMAT_ROW_WINDOW, _has_row_window_keys, parse_row_window, "row-model"),
    FormatMatcher(FORMAT_DATA_TABLE, _has_json_models, parse_data_table, "data-table"),
    FormatMatcher(FORMAT_SIMPLE, _has_simple_keys, parse_simple, "standard"),
    FormatMatcher(FORMAT_SIMPLE, lambda params: True, parse_simple, "standard"),
)


def detect_format(params: Mapping[str, Any]) -> FormatMatcher:
    for matcher in FORMAT_MATCHERS:
        if matcher.matches(params):
            return matcher
    return FORMAT_MATCHERS[-1]


def parse_request(params: Mapping[str, Any]) -> DraftQuery:
    matcher = detect_format(params)
    _LOG.debug("request format detected format=%s param_count=%s", matcher.name, len(params))
    draft = matcher.parse(params)
    _LOG.debug(
        "request parsed format=%s filters=%s sorts=%s has_search=%s pagination=%s",
        draft.source_format,
        len(draft.filters),
        len(draft.sort),
        bool(draft.search.term),
        draft.pagination.kind,
    )
    return draft


def natural_response_format(draft: DraftQuery) -> str:
    if draft.pagination.kind == "cursor":
        return "infinite-scroll"
    for matcher in FORMAT_MATCHERS:
        if matcher.name == draft.source_format:
            return matcher.response_format
    return "standard"
