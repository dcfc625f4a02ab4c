from __future__ import annotations

from typing import Any

from sqlalchemy import bindparam, select

from datatables.columns import Column
from datatables.params import DataTableParams
from datatables.service import DataTablesService
from models import Candidate, CorporateUser, JobOrder, Placement


PLACEMENT_STATUSES = {"Submitted", "Approved", "Active", "Completed", "Terminated"}


def _blank(value: Any) -> bool:
    return not str(value or "").strip()


class CandidateDataTablesService(DataTablesService):
    model = Candidate
    columns = (
        Column("name", searchable=True, editable=True, title="Name"),
        Column("email", searchable=True, editable=True, title="Email"),
        Column("status", editable=True, title="Status"),
        Column("phone", editable=True, title="Phone"),
        Column("dateLastModified", title="Last Modified"),
    )

    def validate(self, entity: Candidate) -> list[str]:
        errors = []
        if _blank(entity.name):
            errors.append("name: required")
        email = str(entity.email or "").strip()
        if email and "@" not in email:
            errors.append("email: invalid format")
        return errors


class PlacementDataTablesService(DataTablesService):
    model = Placement
    columns = (
        Column("id", title="ID"),
        Column("status", searchable=True, editable=True, title="Status"),
        Column("employmentType", searchable=True, editable=True, title="Employment Type"),
        Column("dateBegin", editable=True, title="Start"),
        Column("dateEnd", editable=True, title="End"),
        Column("payRate", editable=True, title="Pay Rate"),
        Column("clientBillRate", editable=True, title="Bill Rate"),
        Column("totalCommissionPercentage", title="Commission %"),
        Column("credentialingStatus", title="Credentialing"),
    )

    def validate(self, entity: Placement) -> list[str]:
        errors = []
        if entity.status not in PLACEMENT_STATUSES:
            errors.append(f"status: must be one of {', '.join(sorted(PLACEMENT_STATUSES))}")
        for name in ("payRate", "clientBillRate"):
            value = getattr(entity, name)
            if value is None:
                continue
            try:
                if float(value) < 0:
                    errors.append(f"{name}: must not be negative")
            except (TypeError, ValueError):
                errors.append(f"{name}: must be a number")
        if entity.dateBegin and entity.dateEnd and str(entity.dateEnd) < str(entity.dateBegin):
            errors.append("dateEnd: must not be before dateBegin")
        return errors


class JobOrderDataTablesService(DataTablesService):
    """Job orders filtered by status (`?status=`, default Open)."""

    model = JobOrder
    columns = (
        Column("title", searchable=True, editable=True, title="Title"),
        Column("status", editable=True, title="Status"),
        Column("employmentType", searchable=True, editable=True, title="Employment Type"),
        Column("dateAdded", title="Added"),
    )

    named_queries = {
        "jobOrdersByStatus": lambda: select(JobOrder).where(JobOrder.status == bindparam("status")),
    }
    query_key = "jobOrdersByStatus"

    def __init__(self, *args, default_status: str = "Open", **kwargs):
        self.default_status = default_status
        super().__init__(*args, **kwargs)

    def get_parameters(self, params: DataTableParams) -> dict[str, Any]:
        return {"status": params.extra.get("status") or self.default_status}

    def validate(self, entity: JobOrder) -> list[str]:
        return ["title: required"] if _blank(entity.title) else []


class CorporateUserDataTablesService(DataTablesService):
    model = CorporateUser
    columns = (
        Column("name", searchable=True, editable=True, title="Name"),
        Column("email", searchable=True, editable=True, title="Email"),
        Column("username", searchable=True, title="Username"),
        Column("enabled", editable=True, title="Enabled"),
    )

    def validate(self, entity: CorporateUser) -> list[str]:
        errors = []
        if _blank(entity.name):
            errors.append("name: required")
        if "@" not in str(entity.email or ""):
            errors.append("email: invalid format")
        return errors


def build_grid_registry() -> dict[str, DataTablesService]:
    return {
        "candidates": CandidateDataTablesService(),
        "placements": PlacementDataTablesService(),
        "job-orders": JobOrderDataTablesService(),
        "corporate-users": CorporateUserDataTablesService(),
    }
