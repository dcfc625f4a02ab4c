from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from utils import to_int


DEFAULT_PAGE_SIZE = 10

_GRID_KEYS = {
    "iDisplayStart",
    "iDisplayLength",
    "iSortColumnIndex",
    "iSortCol_0",
    "sSortDirection",
    "sSortDir_0",
    "sSearch",
    "sEcho",
}


@dataclass(frozen=True)
class DataTableParams:
    """One grid request as sent by the jQuery DataTables client."""

    display_start: int = 0
    display_length: int = DEFAULT_PAGE_SIZE
    sort_column_index: int = 0
    sort_direction: str = "asc"
    search: str = ""
    echo: str = ""
    # Any other query args, for grids whose base query takes parameters.
    extra: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_args(cls, args: Mapping[str, Any], *, max_page_size: int = 200) -> "DataTableParams":
        start = max(0, to_int(args.get("iDisplayStart"), 0))

        length = to_int(args.get("iDisplayLength"), DEFAULT_PAGE_SIZE)
        # DataTables sends -1 for "show all"; never hand back more than one capped page.
        if length <= 0 or length > max_page_size:
            length = max_page_size

        sort_raw = args.get("iSortColumnIndex")
        if sort_raw is None:
            sort_raw = args.get("iSortCol_0")
        sort_idx = to_int(sort_raw, 0)

        direction = args.get("sSortDirection")
        if direction is None:
            direction = args.get("sSortDir_0")

        return cls(
            display_start=start,
            display_length=length,
            sort_column_index=sort_idx,
            sort_direction=str(direction if direction is not None else "asc"),
            search=str(args.get("sSearch") or ""),
            echo=str(args.get("sEcho") or ""),
            extra={str(k): str(v) for k, v in args.items() if k not in _GRID_KEYS},
        )
