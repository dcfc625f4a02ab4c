from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional


@dataclass(frozen=True)
class Column:
    field_name: str
    searchable: bool = False
    editable: bool = False
    title: str = ""


class ColumnConfiguration:
    """Ordered mapping of grid column index -> Column."""

    def __init__(self, columns: Iterable[Column]):
        self._columns: dict[int, Column] = {i: c for i, c in enumerate(columns)}

    @classmethod
    def of(cls, *columns: Column) -> "ColumnConfiguration":
        return cls(columns)

    def get_column(self, index: int) -> Optional[Column]:
        return self._columns.get(index)

    @property
    def column_config_map(self) -> dict[int, Column]:
        return dict(self._columns)

    def searchable_columns(self) -> list[Column]:
        return [c for _i, c in sorted(self._columns.items()) if c.searchable]

    def editable_fields(self) -> set[str]:
        return {c.field_name for c in self._columns.values() if c.editable}

    def field_names(self) -> list[str]:
        return [c.field_name for _i, c in sorted(self._columns.items())]

    def __len__(self) -> int:
        return len(self._columns)
