from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Protocol

from sqlalchemy.inspection import inspect as sa_inspect
from sqlalchemy.sql.elements import ColumnElement
from sqlalchemy.sql.sqltypes import Boolean, Date, DateTime, Float, Integer, JSON, Numeric

from query_engine.schemas.query import OPERATORS, SortCriterion

CustomPredicate = Callable[[Any, Any], ColumnElement]

_COMPARABLE = ("equals", "notEquals", "gt", "gte", "lt", "lte", "in", "notIn", "between", "isNull", "isNotNull")
_IDENTITY = ("equals", "notEquals", "in", "notIn", "isNull", "isNotNull")

KIND_OPERATORS: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "text": _COMPARABLE + ("contains", "startsWith", "endsWith", "regex"),
        "integer": _COMPARABLE,
        "float": _COMPARABLE,
        "decimal": _COMPARABLE,
        "date": _COMPARABLE,
        "datetime": _COMPARABLE,
        "boolean": ("equals", "notEquals", "isNull", "isNotNull"),
        "uuid": _IDENTITY,
        "enum": _IDENTITY,
        "json": ("isNull", "isNotNull"),
    }
)


@dataclass(frozen=True)
class PaginationDefaults:
    page_size: int
    max_page_size: int


class ModelMetadataProvider(Protocol):
    """Read-only view of what a model exposes to list queries."""

    model_name: str
    unique_key: str
    soft_delete_field: str | None

    def is_field_filterable(self, field: str) -> bool:
        ...

    def is_field_sortable(self, field: str) -> bool:
        ...

    def is_field_searchable(self, field: str) -> bool:
        ...

    def list_filterable_fields(self) -> tuple[str, ...]:
        ...

    def list_searchable_fields(self) -> tuple[str, ...]:
        ...

    def list_sortable_fields(self) -> tuple[str, ...]:
        ...

    def default_sort(self) -> tuple[SortCriterion, ...]:
        ...

    def pagination_defaults(self) -> PaginationDefaults:
        ...

    def field_kind(self, field: str) -> str:
        ...

    def field_options(self, field: str) -> tuple[str, ...] | None:
        ...

    def is_field_case_sensitive(self, field: str) -> bool:
        ...

    def supports_operator(self, field: str, operator: str) -> bool:
        ...


def column_kind(column: Any) -> str:
    col_type = column.type
    if isinstance(col_type, Boolean):
        return "boolean"
    if isinstance(col_type, Integer):
        return "integer"
    if isinstance(col_type, Float):
        return "float"
    if isinstance(col_type, Numeric):
        return "decimal" if col_type.asdecimal else "float"
    if isinstance(col_type, DateTime):
        return "datetime"
    if isinstance(col_type, Date):
        return "date"
    if isinstance(col_type, JSON):
        return "json"
    try:
        python_type = col_type.python_type
    except Exception:
        python_type = None
    if python_type is uuid.UUID:
        return "uuid"
    return "text"


@dataclass(frozen=True)
class QueryableModel:
    """Declares the list-query surface of one ORM model.

    Field sets are whitelists; anything not named here is unreachable from
    request parameters.
    """

    name: str
    model: type
    filterable: frozenset[str]
    sortable: frozenset[str]
    searchable: tuple[str, ...] = ()
    default_sort: tuple[SortCriterion, ...] = ()
    case_sensitive: frozenset[str] = frozenset()
    enum_options: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    custom_filters: Mapping[str, CustomPredicate] = field(default_factory=dict)
    hidden_fields: frozenset[str] = frozenset()
    relations: Mapping[str, str] = field(default_factory=dict)
    soft_delete_field: str | None = "deleted_at"
    unique_key: str = "id"
    page_size: int = 20


class SQLAlchemyModelMetadata:
    def __init__(self, config: QueryableModel, *, max_page_size: int, default_page_size: int | None = None):
        mapper = sa_inspect(config.model)
        self._columns = {column.key: column for column in mapper.columns}
        declared = set(config.filterable) | set(config.sortable) | set(config.searchable)
        declared |= set(config.relations.values()) | {config.unique_key}
        if config.soft_delete_field:
            declared.add(config.soft_delete_field)
        missing = sorted(name for name in declared if name not in self._columns)
        if missing:
            raise ValueError(f"{config.name}: unknown columns declared queryable: {', '.join(missing)}")

        self.config = config
        self.model = config.model
        self.model_name = config.name
        self.unique_key = config.unique_key
        self.soft_delete_field = config.soft_delete_field
        self._kinds = {key: self._kind_for(key, column) for key, column in self._columns.items()}
        self._pagination = PaginationDefaults(
            page_size=min(default_page_size or config.page_size, max_page_size),
            max_page_size=max_page_size,
        )

    def _kind_for(self, key: str, column: Any) -> str:
        if key in self.config.enum_options:
            return "enum"
        return column_kind(column)

    def is_field_filterable(self, field: str) -> bool:
        return field in self.config.filterable

    def is_field_sortable(self, field: str) -> bool:
        return field in self.config.sortable

    def is_field_searchable(self, field: str) -> bool:
        return field in self.config.searchable

    def list_filterable_fields(self) -> tuple[str, ...]:
        return tuple(sorted(self.config.filterable))

    def list_searchable_fields(self) -> tuple[str, ...]:
        return tuple(self.config.searchable)

    def list_sortable_fields(self) -> tuple[str, ...]:
        return tuple(sorted(self.config.sortable))

    def default_sort(self) -> tuple[SortCriterion, ...]:
        return tuple(self.config.default_sort)

    def pagination_defaults(self) -> PaginationDefaults:
        return self._pagination

    def field_kind(self, field: str) -> str:
        return self._kinds.get(field, "text")

    def field_options(self, field: str) -> tuple[str, ...] | None:
        options = self.config.enum_options.get(field)
        return tuple(options) if options is not None else None

    def is_field_case_sensitive(self, field: str) -> bool:
        return field in self.config.case_sensitive

    def supports_operator(self, field: str, operator: str) -> bool:
        if operator == "custom":
            return field in self.config.custom_filters
        return operator in KIND_OPERATORS.get(self.field_kind(field), ())

    def supported_operators(self, field: str) -> tuple[str, ...]:
        return tuple(op for op in OPERATORS if self.supports_operator(field, op))

    def column(self, field: str):
        if field not in self._columns:
            raise KeyError(field)
        return getattr(self.model, field)

    def custom_predicate(self, field: str) -> CustomPredicate:
        return self.config.custom_filters[field]

    def relation_column(self, relation: str):
        column_key = self.config.relations.get(relation)
        if column_key is None:
            raise KeyError(relation)
        return self.column(column_key), self.field_kind(column_key)

    def visible_record(self, record: Mapping[str, Any]) -> dict[str, Any]:
        return {key: value for key, value in record.items() if key not in self.config.hidden_fields}

    def describe(self) -> dict[str, Any]:
        return {
            "model": self.model_name,
            "filters": {
                name: {"kind": self.field_kind(name), "operators": list(self.supported_operators(name))}
                for name in self.list_filterable_fields()
            },
            "sortable": list(self.list_sortable_fields()),
            "searchable": list(self.list_searchable_fields()),
            "defaultSort": [{"field": s.field, "direction": s.direction} for s in self.default_sort()],
            "pagination": {
                "defaultPageSize": self._pagination.page_size,
                "maxPageSize": self._pagination.max_page_size,
            },
            "relations": sorted(self.config.relations),
        }


def resolve_sort(
    requested: Iterable[SortCriterion],
    metadata: ModelMetadataProvider,
) -> tuple[SortCriterion, ...]:
    """Effective ordering for a query: requested or default sort plus the unique tie-breaker."""
    resolved = list(requested) or list(metadata.default_sort())
    if all(item.field != metadata.unique_key for item in resolved):
        direction = resolved[-1].direction if resolved else "asc"
        resolved.append(SortCriterion(field=metadata.unique_key, direction=direction))
    return tuple(resolved)
