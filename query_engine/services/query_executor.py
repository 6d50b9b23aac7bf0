from __future__ import annotations

import dataclasses
import logging
import time
from datetime import datetime, timezone
from typing import Any, Sequence

from sqlalchemy import and_, asc, desc, false, or_
from sqlalchemy.sql.elements import ColumnElement

from query_engine.core.config import settings
from query_engine.core.errors import ExecutionError
from query_engine.schemas.envelope import ResultEnvelope
from query_engine.schemas.query import FilterCriterion, QuerySpecification, SearchSpec, SortCriterion
from query_engine.services.cursor_tokens import encode_cursor
from query_engine.services.data_store import DataStore, StoreQuery, StoreResult, StoreTimeout
from query_engine.services.metadata import SQLAlchemyModelMetadata, resolve_sort
from query_engine.services.serialization import row_to_dict, serialize_value

_LOG = logging.getLogger("query_engine.executor")


def build_predicate(column, criterion: FilterCriterion) -> ColumnElement:
    op = criterion.operator
    value = criterion.value
    if op == "equals":
        return column == value
    if op == "notEquals":
        return column != value
    if op == "gt":
        return column > value
    if op == "gte":
        return column >= value
    if op == "lt":
        return column < value
    if op == "lte":
        return column <= value
    if op == "in":
        return column.in_(list(value))
    if op == "notIn":
        return column.not_in(list(value))
    if op == "between":
        low, high = value
        return column.between(low, high)
    if op == "isNull":
        return column.is_(None)
    if op == "isNotNull":
        return column.is_not(None)
    if op == "regex":
        return column.regexp_match(value)
    # LIKE wildcards in user input are escaped, never interpreted.
    if op == "contains":
        if criterion.case_sensitive:
            return column.contains(value, autoescape=True)
        return column.icontains(value, autoescape=True)
    if op == "startsWith":
        if criterion.case_sensitive:
            return column.startswith(value, autoescape=True)
        return column.istartswith(value, autoescape=True)
    if op == "endsWith":
        if criterion.case_sensitive:
            return column.endswith(value, autoescape=True)
        return column.iendswith(value, autoescape=True)
    raise ValueError(f"unsupported operator {op}")


def _after(column, value: Any, direction: str) -> ColumnElement:
    # NULL sorts lowest in cursor mode: first for asc, last for desc.
    if direction == "asc":
        return column.is_not(None) if value is None else column > value
    if value is None:
        return false()
    return or_(column < value, column.is_(None))


def _same(column, value: Any) -> ColumnElement:
    return column.is_(None) if value is None else column == value


def keyset_predicate(columns: Sequence[Any], sort: Sequence[SortCriterion], position: Sequence[Any]) -> ColumnElement:
    """Rows strictly after ``position`` under ``sort`` (lexicographic over the sort keys)."""
    branches = []
    for index, item in enumerate(sort):
        prefix = [_same(columns[i], position[i]) for i in range(index)]
        branches.append(and_(*prefix, _after(columns[index], position[index], item.direction)))
    return or_(*branches)


class QueryExecutor:
    def __init__(
        self,
        metadata: SQLAlchemyModelMetadata,
        store: DataStore,
        *,
        timeout_seconds: float | None = None,
        cursor_secret: str | None = None,
    ):
        self.metadata = metadata
        self.store = store
        self.timeout_seconds = settings.QUERY_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        self.cursor_secret = cursor_secret

    def execute(
        self,
        spec: QuerySpecification,
        *,
        needs_total: bool = False,
        scope: Sequence[ColumnElement] = (),
        resource_path: str | None = None,
    ) -> ResultEnvelope:
        started = time.perf_counter()
        generated_at = datetime.now(timezone.utc)
        sort = resolve_sort(spec.sort, self.metadata)
        pagination = spec.pagination

        predicates = [self._filter_predicate(item) for item in spec.filters]
        if spec.search is not None:
            predicates.append(self._search_predicate(spec.search))
        if not spec.include_deleted and self.metadata.soft_delete_field:
            predicates.append(self.metadata.column(self.metadata.soft_delete_field).is_(None))
        # Trusted caller scope, never whitelisted.
        predicates.extend(scope)

        envelope: dict[str, Any] = {}
        if pagination.kind == "cursor":
            result = self._run(
                StoreQuery(
                    spec=spec,
                    predicates=tuple(predicates),
                    after=self._keyset(sort, pagination.position),
                    order_by=self._order_by(sort, nulls_explicit=True),
                    offset=0,
                    limit=pagination.page_size + 1,
                    with_total=needs_total,
                )
            )
            rows = result.rows[: pagination.page_size]
            has_more = len(result.rows) > pagination.page_size
            envelope["has_more"] = has_more
            envelope["total_count"] = result.total_count
            if rows:
                envelope["start_cursor"] = self._cursor(rows[0], sort)
                envelope["end_cursor"] = self._cursor(rows[-1], sort)
                if has_more:
                    envelope["next_cursor"] = envelope["end_cursor"]
        else:
            offset, limit = pagination.offset, pagination.limit
            result = self._run(
                StoreQuery(
                    spec=spec,
                    predicates=tuple(predicates),
                    order_by=self._order_by(sort),
                    offset=offset,
                    limit=limit + 1,
                    with_total=needs_total,
                )
            )
            rows = result.rows[:limit]
            has_more = len(result.rows) > limit
            total = result.total_count
            if total is None and not has_more:
                if rows or offset == 0:
                    total = offset + len(rows)
                elif pagination.kind == "window":
                    # Window past the end: only a count can say where the data stops.
                    total = self._run(
                        StoreQuery(spec=spec, predicates=tuple(predicates), limit=0, with_total=True)
                    ).total_count
            envelope["has_more"] = has_more
            envelope["total_count"] = total

        records = [
            serialize_value(self.metadata.visible_record(row_to_dict(row)))
            for row in rows
        ]
        elapsed_ms = round((time.perf_counter() - started) * 1000, 3)
        _LOG.debug(
            "query executed model=%s pagination=%s rows=%s counted=%s query_time_ms=%s",
            self.metadata.model_name,
            pagination.kind,
            len(records),
            result.total_count is not None,
            elapsed_ms,
        )
        return ResultEnvelope(
            records=records,
            pagination=pagination,
            applied_filters=spec.filters,
            applied_sort=sort,
            applied_search=spec.search,
            available_filter_fields=self.metadata.list_filterable_fields(),
            available_sort_fields=self.metadata.list_sortable_fields(),
            available_search_fields=self.metadata.list_searchable_fields(),
            resource_path=resource_path,
            generated_at=generated_at,
            query_time_ms=elapsed_ms,
            **envelope,
        )

    def _filter_predicate(self, criterion: FilterCriterion) -> ColumnElement:
        column = self.metadata.column(criterion.field)
        if criterion.operator == "custom":
            return self.metadata.custom_predicate(criterion.field)(column, criterion.value)
        return build_predicate(column, criterion)

    def _search_predicate(self, search: SearchSpec) -> ColumnElement:
        return or_(*(self.metadata.column(name).icontains(search.term, autoescape=True) for name in search.fields))

    def _order_by(self, sort: Sequence[SortCriterion], *, nulls_explicit: bool = False) -> tuple[Any, ...]:
        clauses = []
        for item in sort:
            column = self.metadata.column(item.field)
            clause = asc(column) if item.direction == "asc" else desc(column)
            if nulls_explicit:
                clause = clause.nulls_first() if item.direction == "asc" else clause.nulls_last()
            clauses.append(clause)
        return tuple(clauses)

    def _keyset(self, sort: Sequence[SortCriterion], position: tuple | None) -> ColumnElement | None:
        if position is None:
            return None
        columns = [self.metadata.column(item.field) for item in sort]
        return keyset_predicate(columns, sort, position)

    def _cursor(self, row: Any, sort: Sequence[SortCriterion]) -> str:
        return encode_cursor([getattr(row, item.field) for item in sort], sort, secret=self.cursor_secret)

    def _run(self, query: StoreQuery) -> StoreResult:
        timeout = self.timeout_seconds if self.timeout_seconds and self.timeout_seconds > 0 else None
        return self._call_store(dataclasses.replace(query, timeout_seconds=timeout))

    def _call_store(self, query: StoreQuery) -> StoreResult:
        try:
            return self.store.execute(query)
        except ExecutionError:
            raise
        except StoreTimeout as exc:
            _LOG.warning("data store call timed out model=%s timeout=%s", self.metadata.model_name, query.timeout_seconds)
            raise ExecutionError(
                f"data store call exceeded {query.timeout_seconds}s model={self.metadata.model_name}"
            ) from exc
        except Exception as exc:
            _LOG.exception("data store call failed model=%s", self.metadata.model_name)
            raise ExecutionError(f"data store call failed model={self.metadata.model_name}: {exc}") from exc
