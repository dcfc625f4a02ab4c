from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

from db import session_scope
from dlmtasks.nodes import BillMasterAmountTask, bill_amount
from dlmtasks.service import DateLastModifiedTasksService
from models import BillMaster, DlmCheckpoint, EventTaskRun


def _seed_bills(*rows: tuple[float, float, str]) -> list[int]:
    with session_scope() as db:
        bills = [BillMaster(billableHours=h, billRate=r, amount=0.0, dateLastModified=ts) for h, r, ts in rows]
        db.add_all(bills)
        db.flush()
        return [b.id for b in bills]


def _amounts(ids: list[int]) -> list[float]:
    with session_scope(read_only=True) as db:
        return [db.get(BillMaster, i).amount for i in ids]


def _internal(client, entity_type: str, body: dict | None = None, token: str = "test-cron-token"):
    return client.post(
        f"/api/internal/dlm/{entity_type}",
        data=json.dumps(body or {}),
        content_type="application/json",
        headers={"X-Internal-Token": token} if token else {},
    )


def test_bill_amount_rounding():
    assert bill_amount(7.5, 40) == 300.0
    assert bill_amount(3, 33.3333) == 100.0
    assert bill_amount(None, 10) == 0.0


def test_sweep_processes_changed_rows_and_advances_checkpoint(app_client):
    ids = _seed_bills(
        (8.0, 50.0, "2026-01-01T00:00:00+00:00"),
        (10.0, 42.5, "2026-01-02T00:00:00+00:00"),
        (1.5, 20.0, "2026-01-03T00:00:00+00:00"),
    )
    service = DateLastModifiedTasksService("BillMaster", [BillMasterAmountTask()], batch_size=10)

    summary = service.run()

    assert summary["processed"] == 3
    assert summary["failed"] == 0
    assert summary["hasMore"] is False
    assert summary["lastModifiedSeen"] == "2026-01-03T00:00:00+00:00"
    assert _amounts(ids) == [400.0, 425.0, 30.0]

    with session_scope(read_only=True) as db:
        cp = db.get(DlmCheckpoint, "BillMaster")
        assert cp.lastModifiedSeen == "2026-01-03T00:00:00+00:00"
        assert cp.lastIdSeen == ids[2]
        assert cp.processedCount == 3
        assert db.query(EventTaskRun).filter(EventTaskRun.entityType == "BillMaster").count() == 3

    again = service.run()
    assert again["processed"] == 0
    assert again["since"] == "2026-01-03T00:00:00+00:00"


def test_sweep_batches_without_skipping_equal_timestamps(app_client):
    ts = "2026-02-01T00:00:00+00:00"
    ids = _seed_bills((1, 1, ts), (2, 1, ts), (3, 1, ts), (4, 1, ts), (5, 1, "2026-02-02T00:00:00+00:00"))
    service = DateLastModifiedTasksService("BillMaster", [BillMasterAmountTask()], batch_size=2)

    first = service.run()
    assert first["processed"] == 2
    assert first["hasMore"] is True
    second = service.run()
    third = service.run()
    assert (second["processed"], third["processed"]) == (2, 1)
    assert service.run()["processed"] == 0

    assert _amounts(ids) == [1.0, 2.0, 3.0, 4.0, 5.0]


def test_explicit_since_overrides_checkpoint(app_client):
    ids = _seed_bills((2, 10, "2026-03-01T00:00:00+00:00"), (3, 10, "2026-03-05T00:00:00+00:00"))
    service = DateLastModifiedTasksService("BillMaster", [BillMasterAmountTask()])

    summary = service.run(since="2026-03-02")
    assert summary["processed"] == 1
    assert _amounts(ids) == [0.0, 30.0]


def test_internal_dlm_endpoint(app_client):
    _app, client = app_client
    ids = _seed_bills((4, 12.5, "2026-04-01T00:00:00+00:00"))

    assert _internal(client, "BillMaster", token="").status_code == 401
    assert _internal(client, "BillMaster", token="wrong").status_code == 401
    assert _internal(client, "Spaceship").status_code == 404

    res = _internal(client, "BillMaster")
    assert res.status_code == 200
    assert res.get_json()["data"]["processed"] == 1
    assert _amounts(ids) == [50.0]


def test_internal_dlm_endpoint_queues_in_async_mode(app_client):
    app, client = app_client
    app.config["CFG"].EVENTS_ASYNC = True

    with patch(
        "app.tasks.event_tasks.run_date_last_modified_tasks.apply_async", return_value=MagicMock(id="job-7")
    ) as enqueue:
        res = _internal(client, "BillMaster", {"since": "2026-01-01"})

    assert res.status_code == 202
    assert res.get_json()["data"] == {"jobId": "job-7", "status": "queued"}
    assert enqueue.call_args.kwargs["kwargs"] == {"entity_type": "BillMaster", "since": "2026-01-01"}
