"""Wire renderings of a ``ResultEnvelope``.

Every renderer is a pure function of the envelope: no clock, no I/O, no extra
queries. Timestamps come from ``envelope.generated_at``; counts are shown only
when the executor produced them.
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Mapping
from urllib.parse import urlencode

from query_engine.core.errors import FormatterError
from query_engine.schemas.envelope import ResultEnvelope
from query_engine.services.serialization import serialize_value

_LOG = logging.getLogger("query_engine.formatting")

DEFAULT_FORMAT = "standard"

Renderer = Callable[[ResultEnvelope], dict[str, Any]]


@dataclass(frozen=True)
class FormatDescriptor:
    id: str
    aliases: tuple[str, ...]
    needs_total: bool
    pagination: str
    description: str
    render: Renderer


def _page_numbers(envelope: ResultEnvelope) -> tuple[int | None, int, int]:
    """(1-based page or None, page size, row offset) for the envelope's pagination."""
    pagination = envelope.pagination
    if pagination.kind == "offset":
        return pagination.page, pagination.page_size, pagination.offset
    if pagination.kind == "window":
        size = pagination.limit
        return pagination.start_row // size + 1, size, pagination.start_row
    return None, pagination.page_size, 0


def _total_pages(envelope: ResultEnvelope, page_size: int) -> int | None:
    if envelope.total_count is None:
        return None
    return math.ceil(envelope.total_count / page_size) if page_size else 0


def _pagination_block(envelope: ResultEnvelope) -> dict[str, Any]:
    pagination = envelope.pagination
    page, page_size, offset = _page_numbers(envelope)
    block: dict[str, Any] = {"type": pagination.kind, "pageSize": page_size}
    if pagination.kind == "cursor":
        block["cursor"] = pagination.token
        block["nextCursor"] = envelope.next_cursor
    else:
        block.update({"page": page, "offset": offset, "limit": page_size, "hasPreviousPage": offset > 0})
    if pagination.kind == "window":
        block.update({"startRow": pagination.start_row, "endRow": pagination.end_row})
    if envelope.has_more is not None:
        block["hasNextPage"] = envelope.has_more
    if envelope.total_count is not None:
        block["total"] = envelope.total_count
        if pagination.kind != "cursor":
            block["totalPages"] = _total_pages(envelope, page_size)
    return block


def _applied_filters(envelope: ResultEnvelope) -> list[dict[str, Any]]:
    return [
        {"field": item.field, "operator": item.operator, "value": serialize_value(item.value)}
        for item in envelope.applied_filters
    ]


def _applied_sort(envelope: ResultEnvelope) -> list[dict[str, Any]]:
    return [{"field": item.field, "direction": item.direction} for item in envelope.applied_sort]


def _applied_search(envelope: ResultEnvelope) -> dict[str, Any] | None:
    if envelope.applied_search is None:
        return None
    return {"term": envelope.applied_search.term, "fields": list(envelope.applied_search.fields)}


def _comprehensive_meta(envelope: ResultEnvelope) -> dict[str, Any]:
    meta: dict[str, Any] = {
        "pagination": _pagination_block(envelope),
        "filters": {"applied": _applied_filters(envelope), "available": list(envelope.available_filter_fields)},
        "sorting": {"applied": _applied_sort(envelope), "available": list(envelope.available_sort_fields)},
        "search": {"applied": _applied_search(envelope), "availableFields": list(envelope.available_search_fields)},
    }
    if envelope.query_time_ms is not None:
        meta["performance"] = {"queryTimeMs": envelope.query_time_ms, "recordCount": len(envelope.records)}
    return meta


def _link(envelope: ResultEnvelope, **params: Any) -> str:
    return f"{envelope.resource_path or ''}?{urlencode(params)}"


def _links(envelope: ResultEnvelope) -> dict[str, str]:
    pagination = envelope.pagination
    page, page_size, _ = _page_numbers(envelope)
    if pagination.kind == "cursor":
        links = {"self": _link(envelope, pageSize=page_size, **({"cursor": pagination.token} if pagination.token else {}))}
        if envelope.next_cursor:
            links["next"] = _link(envelope, pageSize=page_size, cursor=envelope.next_cursor)
        return links

    links = {"self": _link(envelope, page=page, pageSize=page_size)}
    if page > 1:
        links["first"] = _link(envelope, page=1, pageSize=page_size)
        links["prev"] = _link(envelope, page=page - 1, pageSize=page_size)
    if envelope.has_more:
        links["next"] = _link(envelope, page=page + 1, pageSize=page_size)
    total_pages = _total_pages(envelope, page_size)
    if total_pages and page < total_pages:
        links["last"] = _link(envelope, page=total_pages, pageSize=page_size)
    return links


def cache_key(envelope: ResultEnvelope) -> str:
    state = {
        "resource": envelope.resource_path,
        "pagination": envelope.pagination.model_dump(mode="json", exclude={"position"}),
        "filters": _applied_filters(envelope),
        "sorting": _applied_sort(envelope),
        "search": _applied_search(envelope),
    }
    raw = json.dumps(state, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def render_standard(envelope: ResultEnvelope) -> dict[str, Any]:
    return {"success": True, "data": envelope.records, "meta": _comprehensive_meta(envelope)}


def render_row_model(envelope: ResultEnvelope) -> dict[str, Any]:
    # lastRow null tells the grid more rows may exist.
    return {"success": True, "data": envelope.records, "lastRow": envelope.total_count}


def render_data_table(envelope: ResultEnvelope) -> dict[str, Any]:
    page, page_size, _ = _page_numbers(envelope)
    return {
        "success": True,
        "data": envelope.records,
        "rowCount": envelope.total_count if envelope.total_count is not None else -1,
        "meta": {
            "page": (page or 1) - 1,
            "pageSize": page_size,
            "hasNextPage": bool(envelope.has_more),
        },
    }


def render_query_cache(envelope: ResultEnvelope) -> dict[str, Any]:
    return {
        "success": True,
        "data": envelope.records,
        "meta": _comprehensive_meta(envelope),
        "links": _links(envelope),
        "timestamp": envelope.generated_at.isoformat(),
    }


def render_cache_friendly(envelope: ResultEnvelope) -> dict[str, Any]:
    return {
        "success": True,
        "data": envelope.records,
        "meta": _comprehensive_meta(envelope),
        "cacheKey": cache_key(envelope),
    }


def render_infinite_scroll(envelope: ResultEnvelope) -> dict[str, Any]:
    body: dict[str, Any] = {
        "success": True,
        "data": envelope.records,
        "hasNextPage": bool(envelope.has_more),
        "nextCursor": envelope.next_cursor,
    }
    if envelope.total_count is not None:
        body["total"] = envelope.total_count
    return body


def render_cursor(envelope: ResultEnvelope) -> dict[str, Any]:
    pagination = envelope.pagination
    body: dict[str, Any] = {
        "success": True,
        "data": envelope.records,
        "pageInfo": {
            "hasNextPage": bool(envelope.has_more),
            "hasPreviousPage": pagination.kind == "cursor" and pagination.token is not None,
            "startCursor": envelope.start_cursor,
            "endCursor": envelope.end_cursor,
        },
    }
    if envelope.total_count is not None:
        body["totalCount"] = envelope.total_count
    return body


FORMATS: tuple[FormatDescriptor, ...] = (
    FormatDescriptor(
        "standard", ("advanced", "structured", "simple"), True, "offset",
        "Standard REST format with full pagination, filter, sort and search metadata", render_standard,
    ),
    FormatDescriptor(
        "row-model", ("ag-grid",), False, "window",
        "Server-side row model for windowed grids (lastRow sentinel)", render_row_model,
    ),
    FormatDescriptor(
        "data-table", ("mui", "mui-datagrid"), True, "offset",
        "Server-side data table with rowCount and zero-based page", render_data_table,
    ),
    FormatDescriptor(
        "query-cache", ("tanstack-query", "react-query", "tanstack"), True, "offset",
        "Query-cache friendly format with navigation links and timestamp", render_query_cache,
    ),
    FormatDescriptor(
        "cache-friendly", ("swr",), True, "offset",
        "Format with a stable cache key derived from the applied query", render_cache_friendly,
    ),
    FormatDescriptor(
        "infinite-scroll", (), False, "cursor",
        "Cursor pagination for infinite scrolling lists", render_infinite_scroll,
    ),
    FormatDescriptor(
        "cursor", ("page-info", "relay"), False, "cursor",
        "Cursor pagination with a pageInfo block", render_cursor,
    ),
)

_BY_NAME: Mapping[str, FormatDescriptor] = {
    name: descriptor for descriptor in FORMATS for name in (descriptor.id, *descriptor.aliases)
}


def get_format(requested: str | None) -> FormatDescriptor:
    """Descriptor for a format id or alias; raises ``FormatterError`` when unknown."""
    key = str(requested or "").strip().lower()
    descriptor = _BY_NAME.get(key)
    if descriptor is None:
        raise FormatterError(str(requested))
    return descriptor


def resolve_format(requested: str | None, default: str = DEFAULT_FORMAT) -> FormatDescriptor:
    if requested is None or not str(requested).strip():
        return get_format(default)
    try:
        return get_format(requested)
    except FormatterError as exc:
        _LOG.warning("unknown response format, falling back format=%s fallback=%s", exc.requested_format, default)
        return get_format(default)


def format_response(envelope: ResultEnvelope, format_id: str) -> dict[str, Any]:
    return resolve_format(format_id).render(envelope)


def available_formats() -> list[dict[str, Any]]:
    return [
        {
            "id": descriptor.id,
            "aliases": list(descriptor.aliases),
            "description": descriptor.description,
            "needsTotal": descriptor.needs_total,
            "pagination": descriptor.pagination,
        }
        for descriptor in FORMATS
    ]
