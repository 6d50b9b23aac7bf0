from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from query_engine.schemas.query import QuerySpecification

# SQLite VM instructions between deadline checks.
_SQLITE_PROGRESS_STEPS = 1000


class StoreTimeout(Exception):
    pass


@dataclass(frozen=True)
class StoreQuery:
    """One read against the store: the validated spec plus its compiled clauses."""

    spec: QuerySpecification
    predicates: tuple[ColumnElement, ...] = ()
    # Keyset clause for cursor pages; never part of the count.
    after: Optional[ColumnElement] = None
    order_by: tuple[Any, ...] = ()
    offset: int = 0
    limit: int = 20
    with_total: bool = False
    # Enforced by the store itself, on its own connection.
    timeout_seconds: Optional[float] = None


@dataclass
class StoreResult:
    rows: list[Any] = field(default_factory=list)
    total_count: Optional[int] = None


class DataStore(Protocol):
    def execute(self, query: StoreQuery) -> StoreResult:
        ...


class SQLAlchemyDataStore:
    def __init__(self, db: Session, model: type):
        self.db = db
        self.model = model

    def execute(self, query: StoreQuery) -> StoreResult:
        with self._statement_timeout(query.timeout_seconds):
            return self._execute(query)

    def _execute(self, query: StoreQuery) -> StoreResult:
        base = self.db.query(self.model)
        if query.predicates:
            base = base.filter(*query.predicates)
        total = base.order_by(None).count() if query.with_total else None
        if query.limit <= 0:
            return StoreResult(rows=[], total_count=total)

        page = base.filter(query.after) if query.after is not None else base
        rows = page.order_by(*query.order_by).offset(query.offset).limit(query.limit).all()
        return StoreResult(rows=list(rows), total_count=total)

    @contextmanager
    def _statement_timeout(self, timeout_seconds: Optional[float]) -> Iterator[None]:
        if not timeout_seconds:
            yield
            return
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            # Transaction-local; the server cancels the statement and the driver raises.
            self.db.execute(select(func.set_config("statement_timeout", str(int(timeout_seconds * 1000)), True)))
            try:
                yield
            except OperationalError as exc:
                if "statement timeout" in str(exc.orig).lower():
                    raise StoreTimeout(f"statement exceeded {timeout_seconds}s") from exc
                raise
            return
        if dialect == "sqlite":
            raw = self.db.connection().connection.driver_connection
            deadline = time.monotonic() + timeout_seconds
            raw.set_progress_handler(lambda: int(time.monotonic() > deadline), _SQLITE_PROGRESS_STEPS)
            try:
                yield
            except OperationalError as exc:
                if time.monotonic() > deadline:
                    raise StoreTimeout(f"statement exceeded {timeout_seconds}s") from exc
                raise
            finally:
                raw.set_progress_handler(None, _SQLITE_PROGRESS_STEPS)
            return
        yield
