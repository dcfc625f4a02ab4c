from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import requests
from sqlalchemy import func, select

from db import session_scope
from models import (
    Candidate,
    CandidateEducation,
    Certification,
    CorporateUser,
    EventTaskRun,
    Placement,
    PlacementCertification,
    PlacementCommission,
)
from scheduledtasks.nodes import CorporateUserNotificationTask, credentialing_status
from scheduledtasks.traversing import TraverserConfig
from scheduledtasks.workflow import EventWorkflowService
from services.notifier import generate_hmac_signature


def _post(client, payload, headers=None):
    return client.post(
        "/api/events/subscription",
        data=json.dumps(payload),
        content_type="application/json",
        headers=headers or {},
    )


def _event(entity: str, entity_id: int, event_type: str = "UPDATED", **extra) -> dict:
    body = {"entityName": entity, "entityId": entity_id, "entityEventType": event_type}
    body.update(extra)
    return body


def _seed_placement(*percentages: float) -> tuple[int, list[int]]:
    with session_scope() as db:
        user = CorporateUser(name="Recruiter", email="r@example.com", username="rec")
        cand = Candidate(name="Pat Doe", email="pat@example.com", owner=user)
        placement = Placement(status="Approved", candidate=cand, payRate=40.0, clientBillRate=60.0)
        db.add(placement)
        commissions = [PlacementCommission(placement=placement, user=user, commissionPercentage=p) for p in percentages]
        db.add_all(commissions)
        db.flush()
        return placement.id, [c.id for c in commissions]


def _placement(pid: int) -> Placement:
    with session_scope(read_only=True) as db:
        return db.get(Placement, pid)


def _outcomes(body: dict) -> dict[str, str]:
    return {t["task"]: t["outcome"] for t in body["data"]["tasks"]}


def test_commission_insert_recomputes_total(app_client):
    _app, client = app_client
    pid, cids = _seed_placement(10.0, 15.5)

    res = _post(client, _event("PlacementCommission", cids[0], "INSERTED"))
    assert res.status_code == 200
    body = res.get_json()
    assert body["ok"] is True
    assert body["data"]["handled"] is True
    assert _outcomes(body) == {"PlacementCommissionTotalTask": "OK", "PlacementCommissionCapTask": "OK"}
    assert _placement(pid).totalCommissionPercentage == 25.5


def test_soft_deleted_commissions_are_excluded(app_client):
    _app, client = app_client
    pid, cids = _seed_placement(10.0, 15.0, 5.0)
    with session_scope() as db:
        db.get(PlacementCommission, cids[1]).isDeleted = True

    _post(client, _event("PlacementCommission", cids[1], "UPDATED", updatedProperties=["isDeleted"]))
    assert _placement(pid).totalCommissionPercentage == 15.0


def test_hard_delete_uses_payload_placement_id(app_client):
    _app, client = app_client
    pid, cids = _seed_placement(30.0, 20.0)
    with session_scope() as db:
        db.delete(db.get(PlacementCommission, cids[0]))

    res = _post(client, _event("PlacementCommission", cids[0], "DELETED", payload={"placementId": pid}))
    assert res.status_code == 200
    body = res.get_json()
    # The cap check is not guarded for deletes.
    assert _outcomes(body) == {"PlacementCommissionTotalTask": "OK", "PlacementCommissionCapTask": "SKIPPED"}
    assert _placement(pid).totalCommissionPercentage == 20.0


def test_commission_cap_failure_is_recoverable(app_client):
    _app, client = app_client
    pid, cids = _seed_placement(60.0, 50.0)

    res = _post(client, _event("PlacementCommission", cids[1], "INSERTED"))
    assert res.status_code == 200
    body = res.get_json()
    assert body["data"]["aborted"] is False
    assert _outcomes(body)["PlacementCommissionCapTask"] == "FAILED"
    failed = [t for t in body["data"]["tasks"] if t["outcome"] == "FAILED"][0]
    assert "exceeds 100%" in failed["error"]
    assert _placement(pid).totalCommissionPercentage == 110.0


def test_unknown_event_type_runs_nothing(app_client):
    _app, client = app_client
    pid, cids = _seed_placement(10.0)

    body = _post(client, _event("PlacementCommission", cids[0], "MERGED")).get_json()
    assert body["data"]["eventType"] == "UNKNOWN"
    assert set(_outcomes(body).values()) == {"SKIPPED"}
    assert _placement(pid).totalCommissionPercentage == 0.0


def test_audit_rows_written_per_task(app_client):
    _app, client = app_client
    _pid, cids = _seed_placement(10.0)

    body = _post(client, _event("PlacementCommission", cids[0], "INSERTED", eventId="evt-123")).get_json()
    assert body["data"]["eventId"] == "evt-123"

    with session_scope(read_only=True) as db:
        rows = db.execute(select(EventTaskRun).where(EventTaskRun.eventId == "evt-123")).scalars().all()
    assert sorted((r.taskName, r.taskOrder, r.outcome) for r in rows) == [
        ("PlacementCommissionCapTask", 20, "OK"),
        ("PlacementCommissionTotalTask", 10, "OK"),
    ]
    assert all(r.entityType == "PlacementCommission" and r.entityId == cids[0] for r in rows)


def _seed_certifications(*specs: tuple[str, str, bool]) -> tuple[int, list[int]]:
    with session_scope() as db:
        placement = Placement(status="Approved")
        cert = Certification(name="BLS")
        db.add_all([placement, cert])
        rows = [
            PlacementCertification(placement=placement, certification=cert, status=s, dateExpiration=exp, isDeleted=d)
            for s, exp, d in specs
        ]
        db.add_all(rows)
        db.flush()
        return placement.id, [r.id for r in rows]


def test_credentialing_status_rules():
    def cert(status, exp="", deleted=False):
        return PlacementCertification(status=status, dateExpiration=exp, isDeleted=deleted)

    today = "2026-06-01"
    assert credentialing_status([], today=today) == "NONE"
    assert credentialing_status([cert("Pending", deleted=True)], today=today) == "NONE"
    assert credentialing_status([cert("Approved", "2027-01-01"), cert("Approved")], today=today) == "COMPLETE"
    assert credentialing_status([cert("Approved"), cert("Pending")], today=today) == "INCOMPLETE"
    assert credentialing_status([cert("Approved", "2026-05-31")], today=today) == "INCOMPLETE"
    assert credentialing_status([cert("Approved", "2026-06-01T00:00:00Z")], today=today) == "COMPLETE"


def test_certification_events_update_credentialing(app_client):
    _app, client = app_client
    pid, ids = _seed_certifications(("Approved", "2999-01-01", False), ("Pending", "", False))

    _post(client, _event("PlacementCertification", ids[1], "INSERTED"))
    assert _placement(pid).credentialingStatus == "INCOMPLETE"

    with session_scope() as db:
        db.get(PlacementCertification, ids[1]).status = "Approved"
    _post(client, _event("PlacementCertification", ids[1], "UPDATED", updatedProperties=["status"]))
    assert _placement(pid).credentialingStatus == "COMPLETE"

    with session_scope() as db:
        for cid in ids:
            db.get(PlacementCertification, cid).isDeleted = True
    _post(client, _event("PlacementCertification", ids[0], "UPDATED"))
    assert _placement(pid).credentialingStatus == "NONE"


def test_education_events_update_candidate_degree(app_client):
    _app, client = app_client
    with session_scope() as db:
        cand = Candidate(name="Sam Lee", email="sam@example.com")
        bs = CandidateEducation(candidate=cand, degree="BSN", graduationDate="2015-05-01")
        msn = CandidateEducation(candidate=cand, degree="MSN", graduationDate="2019-05-01")
        db.add_all([cand, bs, msn])
        db.flush()
        cand_id, msn_id = cand.id, msn.id

    _post(client, _event("CandidateEducation", msn_id, "INSERTED"))
    with session_scope(read_only=True) as db:
        assert db.get(Candidate, cand_id).educationDegree == "MSN"

    with session_scope() as db:
        db.get(CandidateEducation, msn_id).isDeleted = True
    _post(client, _event("CandidateEducation", msn_id, "UPDATED"))
    with session_scope(read_only=True) as db:
        assert db.get(Candidate, cand_id).educationDegree == "BSN"


def test_corporate_user_without_notify_url_is_noop(app_client):
    _app, client = app_client
    with session_scope() as db:
        user = CorporateUser(name="Ops", email="ops@example.com", username="ops")
        db.add(user)
        db.flush()
        uid = user.id

    with patch("services.notifier.requests.post") as post:
        body = _post(client, _event("CorporateUser", uid, "UPDATED")).get_json()
    assert _outcomes(body) == {"CorporateUserNotificationTask": "OK"}
    post.assert_not_called()


def _notify_workflow() -> EventWorkflowService:
    wf = EventWorkflowService()
    wf.register_traverser(TraverserConfig.from_catalog("CorporateUser", CorporateUser))
    wf.register_task(CorporateUserNotificationTask("http://notify.test/hook", secret="s3cret", timeout=3))
    return wf.build()


def test_corporate_user_notification_is_signed(app_client):
    with session_scope() as db:
        user = CorporateUser(name="Ops", email="ops@example.com", username="ops")
        db.add(user)
        db.flush()
        uid = user.id

    resp = MagicMock(status_code=204)
    with patch("services.notifier.requests.post", return_value=resp) as post:
        report = _notify_workflow().handle_payload(_event("CorporateUser", uid, "UPDATED", updatedProperties="email"))

    assert report.failed == []
    post.assert_called_once()
    args, kwargs = post.call_args
    assert args[0] == "http://notify.test/hook"
    assert kwargs["timeout"] == 3

    sent = json.loads(kwargs["data"])
    assert sent["entityId"] == uid
    assert sent["updatedProperties"] == ["email"]
    assert sent["data"]["email"] == "ops@example.com"

    headers = kwargs["headers"]
    assert headers["X-Signature"] == generate_hmac_signature(sent, "s3cret", int(headers["X-Timestamp"]))


def test_corporate_user_notification_failure_is_recoverable(app_client):
    with session_scope() as db:
        user = CorporateUser(name="Ops", email="ops@example.com")
        db.add(user)
        db.flush()
        uid = user.id

    with patch("services.notifier.requests.post", side_effect=requests.ConnectionError("down")):
        report = _notify_workflow().handle_payload(_event("CorporateUser", uid, "INSERTED"))

    assert report.failed == ["CorporateUserNotificationTask"]
    assert not report.aborted
    assert "down" in report.results[0].error


def test_unknown_entity_is_accepted_but_unhandled(app_client):
    _app, client = app_client
    res = _post(client, _event("Spaceship", 9, "INSERTED"))
    assert res.status_code == 200
    assert res.get_json()["data"]["handled"] is False


def test_invalid_events_are_rejected(app_client):
    _app, client = app_client

    res = _post(client, {"entityId": 1, "entityEventType": "INSERTED"})
    assert res.status_code == 400
    assert res.get_json()["error"]["details"] == ["events[0]: Missing entityName"]

    res = _post(client, {"events": [_event("Candidate", 1), {"entityName": "Candidate", "entityId": "abc"}]})
    assert res.status_code == 400
    assert res.get_json()["error"]["details"] == ["events[1]: Invalid entityId: 'abc'"]

    res = _post(client, {"events": []})
    assert res.status_code == 400

    res = client.post("/api/events/subscription", data="not json", content_type="application/json")
    assert res.status_code == 400
    assert res.get_json()["error"]["code"] == "BAD_REQUEST"


def test_batch_of_events(app_client):
    _app, client = app_client
    pid, cids = _seed_placement(10.0, 20.0)

    res = _post(client, {"events": [_event("PlacementCommission", c, "INSERTED") for c in cids]})
    assert res.status_code == 200
    reports = res.get_json()["data"]["reports"]
    assert [r["entityId"] for r in reports] == cids
    assert _placement(pid).totalCommissionPercentage == 30.0


def test_webhook_token_is_enforced_when_configured(app_client):
    app, client = app_client
    app.config["CFG"].WEBHOOK_TOKEN = "hook-secret"
    _pid, cids = _seed_placement(10.0)
    event = _event("PlacementCommission", cids[0], "INSERTED")

    assert _post(client, event).status_code == 401
    assert _post(client, event, {"X-Webhook-Token": "wrong"}).status_code == 401
    assert _post(client, event, {"X-Webhook-Token": "hook-secret"}).status_code == 200


def test_async_mode_enqueues_events(app_client):
    app, client = app_client
    app.config["CFG"].EVENTS_ASYNC = True

    job = MagicMock(id="job-1")
    with patch("app.tasks.event_tasks.process_subscription_event.apply_async", return_value=job) as enqueue:
        res = _post(client, _event("Candidate", 5, "UPDATED", eventId="evt-9"))

    assert res.status_code == 202
    assert res.get_json()["data"]["jobs"] == [{"eventId": "evt-9", "jobId": "job-1", "status": "queued"}]
    queued = enqueue.call_args.kwargs["kwargs"]["event"]
    assert queued["entityName"] == "Candidate"
    assert queued["entityId"] == 5

    with session_scope(read_only=True) as db:
        assert db.execute(select(func.count()).select_from(EventTaskRun)).scalar_one() == 0


def test_pipelines_listing(app_client):
    _app, client = app_client
    body = client.get("/api/events/pipelines").get_json()
    assert body["ok"] is True
    pipelines = body["data"]
    assert [t["task"] for t in pipelines["PlacementCommission"]] == [
        "PlacementCommissionTotalTask",
        "PlacementCommissionCapTask",
    ]
    assert [t["order"] for t in pipelines["PlacementCommission"]] == [10, 20]
    assert pipelines["JobOrder"] == []
