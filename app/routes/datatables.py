"""
Server-side datatables endpoints.

    GET    /api/grids/<grid>                 one page in datatables shape
    GET    /api/grids/<grid>/rows/<id>       one row
    POST   /api/grids/<grid>/rows            create
    PUT    /api/grids/<grid>/rows/<id>       edit (editable columns only)
    DELETE /api/grids/<grid>/rows/<id>       delete
"""
from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from datatables.params import DataTableParams
from datatables.service import DataTablesService
from utils import NotFoundError, ValidationFailure, ok, parse_json_body

grids_bp = Blueprint("grids", __name__)


def _grid(name: str) -> DataTablesService:
    service = current_app.extensions["grids"].get(name)
    if service is None:
        raise NotFoundError(f"Unknown grid: {name}")
    return service


def _body() -> dict:
    return parse_json_body(request.get_data(as_text=True))


def _row_id(raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValidationFailure(f"Invalid row id: {raw}")


@grids_bp.get("")
def list_grids():
    grids = current_app.extensions["grids"]
    return ok({
        name: [
            {"index": i, "field": c.field_name, "title": c.title, "searchable": c.searchable, "editable": c.editable}
            for i, c in sorted(svc.column_configuration().column_config_map.items())
        ]
        for name, svc in sorted(grids.items())
    })


@grids_bp.get("/<grid>")
def grid_page(grid: str):
    service = _grid(grid)
    cfg = current_app.config["CFG"]
    params = DataTableParams.from_args(request.args, max_page_size=cfg.GRID_MAX_PAGE_SIZE)
    page = service.get_page(params)
    return jsonify(page.to_response())


@grids_bp.get("/<grid>/rows/<row_id>")
def get_row(grid: str, row_id: str):
    return ok(_grid(grid).find_row(_row_id(row_id)))


@grids_bp.post("/<grid>/rows")
def add_row(grid: str):
    service = _grid(grid)
    return ok(service.add(_body()), http_status=201)


@grids_bp.put("/<grid>/rows/<row_id>")
def update_row(grid: str, row_id: str):
    service = _grid(grid)
    return ok(service.update(_row_id(row_id), _body()))


@grids_bp.delete("/<grid>/rows/<row_id>")
def delete_row(grid: str, row_id: str):
    service = _grid(grid)
    rid = _row_id(row_id)
    service.remove(rid)
    return ok({"id": rid, "deleted": True})
