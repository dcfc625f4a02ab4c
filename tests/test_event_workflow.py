from __future__ import annotations

import pytest
from sqlalchemy import select

from db import session_scope
from models import Candidate, EventTaskRun, ENTITY_MODELS
from related_entities import related_entities
from scheduledtasks.events import SubscriptionEvent
from scheduledtasks.tasks import EventTask, TaskFailure
from scheduledtasks.traversing import TraverserConfig
from scheduledtasks.workflow import EventWorkflowService
from utils import PipelineAborted


class _Rename(EventTask):
    entity_type = "Candidate"
    order = 1

    def on_update(self, traverser):
        traverser.helper.require_entity().name = "Renamed"


class _SetStatusThenFail(EventTask):
    entity_type = "Candidate"
    order = 2

    def __init__(self, failure: Exception, **kwargs):
        super().__init__(**kwargs)
        self.failure = failure

    def on_update(self, traverser):
        traverser.helper.require_entity().status = "Broken"
        traverser.session.flush()
        raise self.failure


class _Touch(EventTask):
    entity_type = "Candidate"
    order = 3

    def on_update(self, traverser):
        traverser.helper.require_entity().phone = "555-0100"


def _workflow(*tasks: EventTask) -> EventWorkflowService:
    wf = EventWorkflowService()
    wf.register_traverser(TraverserConfig.from_catalog("Candidate", ENTITY_MODELS["Candidate"]))
    wf.register_tasks(tasks)
    return wf.build()


def _seed_candidate() -> int:
    with session_scope() as db:
        c = Candidate(name="Original", email="o@example.com", status="Active")
        db.add(c)
        db.flush()
        return c.id


def _event(candidate_id: int, event_type: str = "UPDATED") -> SubscriptionEvent:
    return SubscriptionEvent(entity_name="Candidate", entity_id=candidate_id, entity_event_type=event_type)


def _runs(event_id: str) -> list[EventTaskRun]:
    with session_scope(read_only=True) as db:
        return list(
            db.execute(select(EventTaskRun).where(EventTaskRun.eventId == event_id).order_by(EventTaskRun.taskOrder))
            .scalars()
            .all()
        )


def test_recoverable_failure_rolls_back_only_the_failed_task(app_client):
    cid = _seed_candidate()
    wf = _workflow(_Touch(), _SetStatusThenFail(TaskFailure("soft")), _Rename())
    event = _event(cid)

    report = wf.handle(event)

    assert report.failed == ["_SetStatusThenFail"]
    assert not report.aborted
    with session_scope(read_only=True) as db:
        c = db.get(Candidate, cid)
        assert c.name == "Renamed"
        assert c.status == "Active"
        assert c.phone == "555-0100"

    runs = _runs(event.event_id)
    assert [(r.taskName, r.outcome) for r in runs] == [
        ("_Rename", "OK"),
        ("_SetStatusThenFail", "FAILED"),
        ("_Touch", "OK"),
    ]
    assert runs[1].error == "TaskFailure: soft"


def test_critical_failure_rolls_back_event_and_keeps_audit(app_client):
    cid = _seed_candidate()
    wf = _workflow(_Rename(), _SetStatusThenFail(RuntimeError("hard"), critical=True), _Touch())
    event = _event(cid)

    with pytest.raises(PipelineAborted) as ei:
        wf.handle(event)
    assert ei.value.http_status == 500
    assert ei.value.details["aborted"] is True

    with session_scope(read_only=True) as db:
        c = db.get(Candidate, cid)
        assert (c.name, c.status, c.phone) == ("Original", "Active", "")

    assert [(r.taskName, r.outcome) for r in _runs(event.event_id)] == [
        ("_Rename", "OK"),
        ("_SetStatusThenFail", "FAILED"),
        ("_Touch", "NOT_RUN"),
    ]


def test_unknown_entity_type_is_reported_unhandled(app_client):
    wf = _workflow(_Rename())
    report = wf.handle(SubscriptionEvent(entity_name="Spaceship", entity_id=1, entity_event_type="INSERTED"))
    assert report.handled is False
    assert report.results == []


def test_registration_rules():
    wf = EventWorkflowService()
    with pytest.raises(ValueError):
        wf.register_task(_Rename())

    wf.register_traverser(TraverserConfig.from_catalog("Candidate", ENTITY_MODELS["Candidate"]))
    wf.register_task(_Rename())
    with pytest.raises(RuntimeError):
        wf.describe()

    wf.build()
    assert wf.built
    with pytest.raises(RuntimeError):
        wf.register_task(_Touch())


def test_task_fields_are_merged_into_catalog_defaults():
    class _NeedsOwnerUsername(EventTask):
        entity_type = "Candidate"
        related_entity_fields = {"CANDIDATE_OWNER": ["username"]}

    wf = _workflow(_NeedsOwnerUsername())
    fields = wf.config_for("Candidate").related_entity_fields["CANDIDATE_OWNER"].fields
    assert "username" in fields
    assert related_entities("Candidate")["CANDIDATE_OWNER"].fields < fields


def test_task_asking_for_unknown_related_key_fails_build():
    class _Bad(EventTask):
        entity_type = "Candidate"
        related_entity_fields = {"SPACESHIP": ["id"]}

    wf = EventWorkflowService()
    wf.register_traverser(TraverserConfig.from_catalog("Candidate", ENTITY_MODELS["Candidate"]))
    wf.register_task(_Bad())
    with pytest.raises(ValueError):
        wf.build()
