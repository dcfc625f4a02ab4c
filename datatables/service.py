"""
Generic server-side datatables service.

Subclass per grid: set `model` and `columns`, override `base_query`,
`get_parameters` or `validate` where a grid needs more than "all rows of the
entity". Retrieval, search, sorting, paging and row editing come for free.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, ContextManager, Mapping, Optional

from sqlalchemy import Boolean, Float, Integer, String, inspect, or_, select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from datatables.columns import Column, ColumnConfiguration
from datatables.dao import GenericDao
from datatables.params import DataTableParams
from db import session_scope
from utils import ConfigurationUnavailable, ValidationFailure, iso_utc_now


_log = logging.getLogger("datatables")

LIKE_ESCAPE = "\\"


def sort_direction(token: Any) -> str:
    """`ASC` only for the exact token "asc"; anything else sorts descending."""
    return "ASC" if token == "asc" else "DESC"


def like_pattern(term: str) -> str:
    escaped = (
        str(term)
        .replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )
    return f"%{escaped}%"


def check_column_value(column, value: Any) -> Optional[str]:
    """Problem with writing `value` into a mapped column, or None when it fits."""
    if value is None:
        return None if column.nullable else "required"
    kind = column.type
    if isinstance(kind, Boolean):
        return None if isinstance(value, bool) else "must be true or false"
    if isinstance(value, bool):
        return "must not be a boolean"
    if isinstance(kind, Integer):
        return None if isinstance(value, int) else "must be an integer"
    if isinstance(kind, Float):
        return None if isinstance(value, (int, float)) else "must be a number"
    if isinstance(kind, String):
        return None if isinstance(value, str) else "must be a string"
    return None


@dataclass
class GridPage:
    rows: list[dict[str, Any]] = field(default_factory=list)
    total_count: int = 0
    filtered_count: int = 0
    echo: str = ""

    def to_response(self) -> dict[str, Any]:
        return {
            "sEcho": self.echo,
            "iTotalRecords": self.total_count,
            "iTotalDisplayRecords": self.filtered_count,
            "data": self.rows,
        }


class DataTablesService:
    model: Optional[type] = None
    columns: tuple[Column, ...] = ()
    # Base queries a grid can pick by key instead of overriding base_query.
    named_queries: Mapping[str, Callable[[], Select]] = {}
    query_key: Optional[str] = None

    def __init__(
        self,
        dao: Optional[GenericDao] = None,
        *,
        session_factory: Optional[Callable[..., ContextManager[Session]]] = None,
    ):
        if dao is None:
            if self.model is None:
                raise TypeError(f"{type(self).__name__} needs a model or a dao")
            dao = GenericDao(self.model)
        self.dao = dao
        self._session_factory = session_factory or session_scope
        self._column_configuration: Optional[ColumnConfiguration] = None
        self._column_lock = threading.Lock()

        try:
            self.column_configuration()
        except ConfigurationUnavailable:
            # Logged in _derive_columns; the next grid request retries and fails explicitly.
            pass

    # ------------------------------------------------------------------
    # Overridables
    # ------------------------------------------------------------------

    def convert_entity_to_columns(self, entity: Any) -> ColumnConfiguration:
        missing = [c.field_name for c in self.columns if not hasattr(entity, c.field_name)]
        if missing:
            raise AttributeError(f"{type(entity).__name__} has no field(s): {', '.join(missing)}")
        return ColumnConfiguration(self.columns)

    def convert_entity_to_row(self, entity: Any) -> dict[str, Any]:
        row: dict[str, Any] = {"DT_RowId": getattr(entity, "id", None)}
        for name in self.column_configuration().field_names():
            row[name] = getattr(entity, name, None)
        return row

    def base_query(self, params: DataTableParams) -> Select:
        if self.query_key:
            return self.get_query_using_key(self.query_key)
        return select(self.dao.type)

    def get_query_using_key(self, key: str) -> Select:
        factory = self.named_queries.get(key)
        if factory is None:
            raise ConfigurationUnavailable(f"No query named {key!r} for {self.dao.type_name}")
        return factory()

    def get_parameters(self, params: DataTableParams) -> dict[str, Any]:
        return {}

    def validate(self, entity: Any) -> list[str]:
        return []

    # ------------------------------------------------------------------
    # Column configuration (one-shot, thread-safe)
    # ------------------------------------------------------------------

    def column_configuration(self) -> ColumnConfiguration:
        cached = self._column_configuration
        if cached is not None:
            return cached
        with self._column_lock:
            if self._column_configuration is None:
                self._column_configuration = self._derive_columns()
            return self._column_configuration

    def _derive_columns(self) -> ColumnConfiguration:
        type_name = self.dao.type_name
        try:
            configuration = self.convert_entity_to_columns(self.dao.type())
        except Exception as e:
            _log.error(
                "Error getting a standard ColumnConfiguration for %s. convert_entity_to_columns must handle "
                "a brand new instance of the entity, and the entity needs a no-arg constructor.",
                type_name,
                exc_info=True,
            )
            raise ConfigurationUnavailable(f"Column configuration unavailable for {type_name}") from e
        if configuration is None or len(configuration) == 0:
            _log.error("Empty ColumnConfiguration for %s", type_name)
            raise ConfigurationUnavailable(f"Column configuration unavailable for {type_name}")
        return configuration

    # ------------------------------------------------------------------
    # Query building
    # ------------------------------------------------------------------

    def _attribute(self, field_name: str):
        attr = getattr(self.dao.type, field_name, None)
        if attr is None:
            raise ConfigurationUnavailable(f"{self.dao.type_name} has no column {field_name}")
        return attr

    def apply_filter(self, stmt: Select, params: DataTableParams) -> Select:
        term = params.search or ""
        if not term.strip():
            return stmt

        searchable = self.column_configuration().searchable_columns()
        if not searchable:
            return stmt

        pattern = like_pattern(term)
        predicates = [self._attribute(c.field_name).ilike(pattern, escape=LIKE_ESCAPE) for c in searchable]
        # .where() ANDs onto any predicate the base query already carries.
        return stmt.where(or_(*predicates))

    def apply_sort(self, stmt: Select, params: DataTableParams) -> Select:
        column = self.column_configuration().get_column(params.sort_column_index)
        if column is None:
            raise ValidationFailure(f"Invalid sort column index: {params.sort_column_index}")

        attr = self._attribute(column.field_name)
        ordered = stmt.order_by(attr.asc() if sort_direction(params.sort_direction) == "ASC" else attr.desc())

        pk = getattr(self.dao.type, "id", None)
        if pk is not None and column.field_name != "id":
            ordered = ordered.order_by(pk.asc())
        return ordered

    def query_with_sort_and_filter(self, params: DataTableParams, base: Optional[Select] = None) -> Select:
        stmt = base if base is not None else self.base_query(params)
        return self.apply_sort(self.apply_filter(stmt, params), params)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def get_page(self, params: DataTableParams) -> GridPage:
        self.column_configuration()

        bind = self.get_parameters(params)
        base = self.base_query(params)
        stmt = self.query_with_sort_and_filter(params, base=base)

        with self._session_factory(read_only=True) as db:
            total = self.dao.get_count(db, base, bind)
            _log.debug("grid=%s query=%s", self.dao.type_name, stmt)
            result = self.dao.query(db, stmt, bind, params.display_start, params.display_length)
            rows = [self.convert_entity_to_row(e) for e in result.data]

        return GridPage(rows=rows, total_count=total, filtered_count=result.total, echo=params.echo)

    def find(self, entity_id: Any) -> Any:
        with self._session_factory(read_only=True) as db:
            return self.dao.find(db, entity_id)

    def find_row(self, entity_id: Any) -> dict[str, Any]:
        with self._session_factory(read_only=True) as db:
            return self.convert_entity_to_row(self.dao.find(db, entity_id))

    def apply_changes(self, entity: Any, data: Mapping[str, Any]) -> None:
        editable = self.column_configuration().editable_fields()
        rejected = sorted(k for k in (data or {}) if k not in editable)
        if rejected:
            raise ValidationFailure("Fields are not editable", errors=[f"{k}: not editable" for k in rejected])

        mapped = inspect(self.dao.type).columns
        errors = []
        for key, value in sorted((data or {}).items()):
            problem = check_column_value(mapped[key], value) if key in mapped else None
            if problem:
                errors.append(f"{key}: {problem}")
        if errors:
            raise ValidationFailure(f"{self.dao.type_name} failed validation", errors=errors)

        for key, value in (data or {}).items():
            setattr(entity, key, value)

    def new_entity(self) -> Any:
        """A fresh instance with the model's scalar column defaults filled in."""
        entity = self.dao.type()
        for attr in inspect(self.dao.type).column_attrs:
            column = attr.columns[0]
            default = column.default
            if default is not None and default.is_scalar and getattr(entity, attr.key) is None:
                setattr(entity, attr.key, default.arg)
        return entity

    def _validate_or_raise(self, entity: Any) -> None:
        errors = [str(e) for e in (self.validate(entity) or [])]
        if errors:
            raise ValidationFailure(f"{self.dao.type_name} failed validation", errors=errors)

    def add(self, data: Mapping[str, Any]) -> dict[str, Any]:
        entity = self.new_entity()
        self.apply_changes(entity, data)
        self._validate_or_raise(entity)

        with self._session_factory() as db:
            merged = self.dao.merge(db, entity)
            row = self.convert_entity_to_row(merged)

        _log.info("grid add type=%s id=%s", self.dao.type_name, row.get("DT_RowId"))
        return row

    def update(self, entity_id: Any, data: Mapping[str, Any]) -> dict[str, Any]:
        with self._session_factory() as db:
            entity = self.dao.find(db, entity_id)
            self.apply_changes(entity, data)
            if hasattr(entity, "dateLastModified"):
                entity.dateLastModified = iso_utc_now()
            self._validate_or_raise(entity)
            merged = self.dao.merge(db, entity)
            row = self.convert_entity_to_row(merged)

        _log.info("grid update type=%s id=%s fields=%s", self.dao.type_name, entity_id, sorted(data or {}))
        return row

    def remove(self, entity_id: Any) -> None:
        with self._session_factory() as db:
            entity = self.dao.find(db, entity_id)
            self.dao.remove(db, entity)

        _log.info("grid remove type=%s id=%s", self.dao.type_name, entity_id)
