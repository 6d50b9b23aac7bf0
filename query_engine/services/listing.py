from __future__ import annotations

import dataclasses
from typing import Any, Iterable, Mapping, Sequence

from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from query_engine.core.config import settings
from query_engine.services.data_store import DataStore, SQLAlchemyDataStore
from query_engine.services.metadata import SQLAlchemyModelMetadata
from query_engine.services.parameter_validation import ParameterValidator
from query_engine.services.query_executor import QueryExecutor
from query_engine.services.request_parsing import DraftPagination, DraftQuery, natural_response_format, parse_request
from query_engine.services.response_formatting import resolve_format


def params_to_dict(items: Iterable[tuple[str, Any]]) -> dict[str, Any]:
    """Query string pairs -> dict; repeated keys become lists in arrival order."""
    params: dict[str, Any] = {}
    for key, value in items:
        if key not in params:
            params[key] = value
            continue
        existing = params[key]
        params[key] = (existing if isinstance(existing, list) else [existing]) + [value]
    return params


def _window_size(pagination: DraftPagination) -> Any:
    try:
        return int(str(pagination.end_row)) - int(str(pagination.start_row or 0))
    except ValueError:
        return None


def _as_cursor(pagination: DraftPagination) -> DraftPagination:
    page_size = pagination.page_size
    if pagination.kind == "window":
        page_size = _window_size(pagination)
    return DraftPagination(kind="cursor", page_size=page_size, cursor=pagination.cursor)


class ListingPipeline:
    """parse -> validate -> execute -> render, for one model."""

    def __init__(
        self,
        metadata: SQLAlchemyModelMetadata,
        store: DataStore,
        *,
        strict: bool | None = None,
        max_page_size: int | None = None,
        timeout_seconds: float | None = None,
        cursor_secret: str | None = None,
        default_format: str | None = None,
    ):
        self.metadata = metadata
        self.validator = ParameterValidator(
            metadata,
            max_page_size=max_page_size,
            strict=strict,
            cursor_secret=cursor_secret,
        )
        self.executor = QueryExecutor(
            metadata,
            store,
            timeout_seconds=timeout_seconds,
            cursor_secret=cursor_secret,
        )
        self.default_format = default_format or settings.DEFAULT_RESPONSE_FORMAT

    @classmethod
    def for_session(cls, metadata: SQLAlchemyModelMetadata, db: Session) -> "ListingPipeline":
        return cls(metadata, SQLAlchemyDataStore(db, metadata.model))

    def run(
        self,
        params: Mapping[str, Any],
        *,
        scope: Sequence[ColumnElement] = (),
        deleted_only: bool = False,
        resource_path: str | None = None,
    ) -> dict[str, Any]:
        draft: DraftQuery = parse_request(params)
        descriptor = resolve_format(
            draft.response_format or natural_response_format(draft),
            default=self.default_format,
        )
        if descriptor.pagination == "cursor" and draft.pagination.kind != "cursor":
            draft = dataclasses.replace(draft, pagination=_as_cursor(draft.pagination))

        spec = self.validator.validate_or_raise(draft)
        if deleted_only:
            # Soft-deleted rows are selected by the trusted scope; keep them visible.
            spec = spec.model_copy(update={"include_deleted": True})

        envelope = self.executor.execute(
            spec,
            needs_total=descriptor.needs_total or draft.include_total,
            scope=scope,
            resource_path=resource_path,
        )
        return descriptor.render(envelope)
