from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from query_engine.schemas.query import FilterCriterion, PaginationSpec, SearchSpec, SortCriterion


class ResultEnvelope(BaseModel):
    """Executor output for one request, before any wire-format rendering.

    ``total_count``, ``has_more`` and the cursors are only set when the chosen
    pagination/format combination produced them; formatters must not invent them.
    """

    model_config = ConfigDict(frozen=True)

    records: List[Dict[str, Any]]
    pagination: PaginationSpec
    total_count: Optional[int] = None
    has_more: Optional[bool] = None
    next_cursor: Optional[str] = None
    start_cursor: Optional[str] = None
    end_cursor: Optional[str] = None
    applied_filters: Tuple[FilterCriterion, ...] = ()
    applied_sort: Tuple[SortCriterion, ...] = ()
    applied_search: Optional[SearchSpec] = None
    available_filter_fields: Tuple[str, ...] = ()
    available_sort_fields: Tuple[str, ...] = ()
    available_search_fields: Tuple[str, ...] = ()
    resource_path: Optional[str] = None
    generated_at: datetime
    query_time_ms: Optional[float] = None
