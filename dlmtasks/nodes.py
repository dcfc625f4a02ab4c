from __future__ import annotations

from typing import Callable, ContextManager, Optional

from sqlalchemy.orm import Session

from config import Config
from dlmtasks.service import DateLastModifiedTasksService
from scheduledtasks.events import EventType
from scheduledtasks.tasks import EventTask
from scheduledtasks.traversing import EventTraverser


def bill_amount(billable_hours: float, bill_rate: float) -> float:
    return round(float(billable_hours or 0.0) * float(bill_rate or 0.0), 2)


class BillMasterAmountTask(EventTask):
    entity_type = "BillMaster"
    order = 10
    event_types = frozenset({EventType.INSERTED, EventType.UPDATED})

    def _recompute(self, traverser: EventTraverser) -> None:
        bm = traverser.helper.entity
        if bm is None:
            traverser.note("bill master gone")
            return
        amount = bill_amount(bm.billableHours, bm.billRate)
        if bm.amount != amount:
            bm.amount = amount
        traverser.state["amount"] = amount

    on_insert = _recompute
    on_update = _recompute


def build_dlm_services(
    cfg: Optional[Config] = None,
    *,
    session_factory: Optional[Callable[..., ContextManager[Session]]] = None,
) -> dict[str, DateLastModifiedTasksService]:
    cfg = cfg or Config()
    services = [
        DateLastModifiedTasksService(
            "BillMaster",
            [BillMasterAmountTask()],
            batch_size=cfg.DLM_BATCH_SIZE,
            session_factory=session_factory,
        ),
    ]
    return {s.entity_type: s for s in services}
