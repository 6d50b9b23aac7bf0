from __future__ import annotations

from types import MappingProxyType
from typing import Iterable, Mapping

from query_engine.core.config import settings
from query_engine.models.movie import Movie
from query_engine.models.movie_quote import MovieQuote
from query_engine.schemas.query import SortCriterion
from query_engine.services.metadata import QueryableModel, SQLAlchemyModelMetadata

MOVIE_STATUSES = ("draft", "active", "archived")

MOVIES = QueryableModel(
    name="movies",
    model=Movie,
    filterable=frozenset(
        {
            "id",
            "title",
            "genre",
            "status",
            "rating",
            "release_year",
            "release_date",
            "is_featured",
            "imdb_code",
            "created_at",
        }
    ),
    sortable=frozenset({"id", "title", "genre", "rating", "release_year", "release_date", "created_at"}),
    searchable=("title", "genre", "synopsis"),
    default_sort=(SortCriterion(field="title", direction="asc"),),
    case_sensitive=frozenset({"imdb_code"}),
    enum_options={"status": MOVIE_STATUSES},
    hidden_fields=frozenset({"internal_notes"}),
)

MOVIE_QUOTES = QueryableModel(
    name="movie_quotes",
    model=MovieQuote,
    filterable=frozenset({"id", "movie_id", "character", "sort_order", "created_at"}),
    sortable=frozenset({"id", "character", "sort_order", "created_at"}),
    searchable=("quote", "character"),
    default_sort=(SortCriterion(field="sort_order", direction="asc"),),
    relations={"movie": "movie_id"},
)


class ModelRegistry:
    """Process-lifetime, read-only lookup of queryable models by name."""

    def __init__(self, entries: Iterable[SQLAlchemyModelMetadata]):
        self._entries: Mapping[str, SQLAlchemyModelMetadata] = MappingProxyType(
            {entry.model_name: entry for entry in entries}
        )

    def get(self, name: str) -> SQLAlchemyModelMetadata | None:
        return self._entries.get(str(name or "").strip().lower())

    def names(self) -> list[str]:
        return sorted(self._entries)


def build_registry(configs: Iterable[QueryableModel] = (MOVIES, MOVIE_QUOTES)) -> ModelRegistry:
    return ModelRegistry(
        SQLAlchemyModelMetadata(
            config,
            max_page_size=settings.MAX_PAGE_SIZE,
            default_page_size=settings.DEFAULT_PAGE_SIZE,
        )
        for config in configs
    )


_registry: ModelRegistry | None = None


def get_registry() -> ModelRegistry:
    global _registry
    if _registry is None:
        _registry = build_registry()
    return _registry
