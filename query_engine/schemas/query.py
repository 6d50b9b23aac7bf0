from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Tuple, Union, get_args

from pydantic import BaseModel, ConfigDict, Field

Operator = Literal[
    "equals",
    "notEquals",
    "contains",
    "startsWith",
    "endsWith",
    "gt",
    "gte",
    "lt",
    "lte",
    "in",
    "notIn",
    "isNull",
    "isNotNull",
    "between",
    "regex",
    "custom",
]
Dir = Literal["asc", "desc"]

OPERATORS: Tuple[str, ...] = get_args(Operator)
DIRECTIONS: Tuple[str, ...] = get_args(Dir)

TEXT_OPERATORS = frozenset({"contains", "startsWith", "endsWith", "regex"})
LIST_OPERATORS = frozenset({"in", "notIn"})
VALUELESS_OPERATORS = frozenset({"isNull", "isNotNull"})


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class FilterCriterion(_Frozen):
    field: str
    operator: Operator
    value: Any = None
    value_type: str = "text"
    case_sensitive: bool = False


class SortCriterion(_Frozen):
    field: str
    direction: Dir = "asc"


class OffsetPagination(_Frozen):
    kind: Literal["offset"] = "offset"
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int:
        return self.page_size


class WindowPagination(_Frozen):
    kind: Literal["window"] = "window"
    start_row: int = Field(default=0, ge=0)
    end_row: int = Field(default=20, ge=1)

    @property
    def offset(self) -> int:
        return self.start_row

    @property
    def limit(self) -> int:
        return self.end_row - self.start_row


class CursorPagination(_Frozen):
    kind: Literal["cursor"] = "cursor"
    token: Optional[str] = None
    page_size: int = Field(default=20, ge=1)
    # Decoded sort-key tuple of the last row already delivered.
    position: Optional[Tuple[Any, ...]] = None


PaginationSpec = Annotated[
    Union[OffsetPagination, WindowPagination, CursorPagination],
    Field(discriminator="kind"),
]


class SearchSpec(_Frozen):
    term: str
    fields: Tuple[str, ...]


class QuerySpecification(_Frozen):
    filters: Tuple[FilterCriterion, ...] = ()
    sort: Tuple[SortCriterion, ...] = ()
    pagination: PaginationSpec = OffsetPagination()
    search: Optional[SearchSpec] = None
    include_deleted: bool = False
