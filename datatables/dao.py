from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, Mapping, Optional, TypeVar

from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from utils import NotFoundError


T = TypeVar("T")


@dataclass
class QueryResult(Generic[T]):
    data: list[T]
    total: int


class GenericDao(Generic[T]):
    """
    Storage operations for one mapped entity type.

    Every method takes the caller's session; the caller owns the transaction.
    """

    def __init__(self, model: type[T]):
        self.model = model

    @property
    def type(self) -> type[T]:
        return self.model

    @property
    def type_name(self) -> str:
        return self.model.__name__

    def find(self, db: Session, entity_id: Any) -> T:
        obj = db.get(self.model, entity_id)
        if obj is None:
            raise NotFoundError(f"{self.type_name} not found: {entity_id}")
        return obj

    def merge(self, db: Session, transient: T) -> T:
        merged = db.merge(transient)
        db.flush()
        return merged

    def remove(self, db: Session, persistent: T) -> None:
        ident = getattr(persistent, "id", None)
        current = db.get(self.model, ident) if ident is not None else None
        if current is None:
            raise NotFoundError(f"{self.type_name} not found: {ident}")
        db.delete(current)
        db.flush()

    def get_count(self, db: Session, stmt: Select, params: Optional[Mapping[str, Any]] = None) -> int:
        count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
        return int(db.execute(count_stmt, dict(params or {})).scalar_one() or 0)

    def query(
        self,
        db: Session,
        stmt: Select,
        params: Optional[Mapping[str, Any]] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> QueryResult[T]:
        # Count first; a concurrent write between count and fetch can make the
        # page disagree with the total. Accepted: offset paging, no snapshot.
        total = self.get_count(db, stmt, params)
        page = stmt.offset(max(0, int(offset or 0)))
        if limit is not None:
            page = page.limit(max(0, int(limit)))
        rows = list(db.execute(page, dict(params or {})).scalars().all())
        return QueryResult(data=rows, total=total)
