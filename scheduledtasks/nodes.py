"""
Event tasks maintaining derived fields, plus the default wiring.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, ContextManager, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from config import Config
from models import (
    ENTITY_MODELS,
    Candidate,
    CandidateEducation,
    Placement,
    PlacementCertification,
    PlacementCommission,
)
from related_entities import entity_types
from scheduledtasks.events import EventType
from scheduledtasks.tasks import EventTask, TaskFailure
from scheduledtasks.traversing import EventTraverser, TraverserConfig
from scheduledtasks.workflow import EventWorkflowService
from services import notifier


_log = logging.getLogger("scheduledtasks")

MAX_TOTAL_COMMISSION = 100.0

CREDENTIALING_NONE = "NONE"
CREDENTIALING_COMPLETE = "COMPLETE"
CREDENTIALING_INCOMPLETE = "INCOMPLETE"


def _payload_int(traverser: EventTraverser, key: str) -> Optional[int]:
    raw = (traverser.event.payload or {}).get(key)
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


def _parent_id(traverser: EventTraverser, attr: str) -> Optional[int]:
    """Foreign key of the root entity, falling back to the event payload after a hard delete."""
    obj = traverser.helper.entity
    if obj is not None:
        return getattr(obj, attr, None)
    return _payload_int(traverser, attr)


def _today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


class PlacementCommissionTotalTask(EventTask):
    entity_type = "PlacementCommission"
    order = 10
    related_entity_fields = {"PLACEMENT": ["totalCommissionPercentage"]}

    def _recompute(self, traverser: EventTraverser) -> None:
        db = traverser.session
        placement_id = _parent_id(traverser, "placementId")
        if db is None or placement_id is None:
            traverser.note("no placement to update")
            return

        placement = db.get(Placement, placement_id)
        if placement is None:
            traverser.note(f"placement {placement_id} not found")
            return

        total = db.execute(
            select(func.coalesce(func.sum(PlacementCommission.commissionPercentage), 0.0)).where(
                PlacementCommission.placementId == placement_id,
                PlacementCommission.isDeleted.is_(False),
            )
        ).scalar_one()
        total = round(float(total or 0.0), 4)

        placement.totalCommissionPercentage = total
        traverser.state["placementId"] = placement_id
        traverser.state["totalCommissionPercentage"] = total

    on_insert = _recompute
    on_update = _recompute
    on_delete = _recompute


class PlacementCommissionCapTask(EventTask):
    """Flags placements whose commissions add up to more than 100%."""

    entity_type = "PlacementCommission"
    order = 20
    event_types = frozenset({EventType.INSERTED, EventType.UPDATED})

    def _check(self, traverser: EventTraverser) -> None:
        total = traverser.state.get("totalCommissionPercentage")
        if total is None:
            return
        if total > MAX_TOTAL_COMMISSION:
            raise TaskFailure(
                f"Total commission {total}% exceeds {MAX_TOTAL_COMMISSION:g}% "
                f"on placement {traverser.state.get('placementId')}"
            )

    on_insert = _check
    on_update = _check


def credentialing_status(certifications: list[Any], *, today: Optional[str] = None) -> str:
    today = today or _today()
    active = [c for c in certifications if not c.isDeleted]
    if not active:
        return CREDENTIALING_NONE
    for c in active:
        if c.status != "Approved":
            return CREDENTIALING_INCOMPLETE
        expires = str(c.dateExpiration or "")[:10]
        if expires and expires < today:
            return CREDENTIALING_INCOMPLETE
    return CREDENTIALING_COMPLETE


class PlacementCredentialingStatusTask(EventTask):
    entity_type = "PlacementCertification"
    order = 10
    related_entity_fields = {"PLACEMENT": ["credentialingStatus"]}

    def _recompute(self, traverser: EventTraverser) -> None:
        db = traverser.session
        placement_id = _parent_id(traverser, "placementId")
        if db is None or placement_id is None:
            traverser.note("no placement to update")
            return

        placement = db.get(Placement, placement_id)
        if placement is None:
            traverser.note(f"placement {placement_id} not found")
            return

        certs = (
            db.execute(select(PlacementCertification).where(PlacementCertification.placementId == placement_id))
            .scalars()
            .all()
        )
        status = credentialing_status(certs)
        placement.credentialingStatus = status
        traverser.state["credentialingStatus"] = status

    on_insert = _recompute
    on_update = _recompute
    on_delete = _recompute


class CandidateEducationDegreeTask(EventTask):
    entity_type = "CandidateEducation"
    order = 10
    related_entity_fields = {"CANDIDATE": ["educationDegree"]}

    def _recompute(self, traverser: EventTraverser) -> None:
        db = traverser.session
        candidate_id = _parent_id(traverser, "candidateId")
        if db is None or candidate_id is None:
            traverser.note("no candidate to update")
            return

        candidate = traverser.helper.get_related_entity("CANDIDATE")
        if candidate is None:
            candidate = db.get(Candidate, candidate_id)
        if candidate is None:
            traverser.note(f"candidate {candidate_id} not found")
            return

        latest = db.execute(
            select(CandidateEducation)
            .where(
                CandidateEducation.candidateId == candidate_id,
                CandidateEducation.isDeleted.is_(False),
            )
            .order_by(CandidateEducation.graduationDate.desc(), CandidateEducation.id.desc())
            .limit(1)
        ).scalar_one_or_none()

        degree = latest.degree if latest is not None else ""
        candidate.educationDegree = degree
        traverser.state["educationDegree"] = degree

    on_insert = _recompute
    on_update = _recompute
    on_delete = _recompute


class CorporateUserNotificationTask(EventTask):
    """Pushes corporate user changes to a downstream webhook."""

    entity_type = "CorporateUser"
    order = 50

    def __init__(self, url: str = "", *, secret: str = "", timeout: int = 10, **kwargs):
        super().__init__(**kwargs)
        self.url = (url or "").strip()
        self.secret = secret
        self.timeout = timeout

    def _notify(self, traverser: EventTraverser) -> None:
        if not self.url:
            _log.debug("notify skipped (no url) user=%s", traverser.entity_id)
            return

        event = traverser.event
        body = {
            "eventId": event.event_id,
            "entityType": traverser.entity_type,
            "entityId": traverser.entity_id,
            "eventType": traverser.event_type.value,
            "updatedProperties": list(event.updated_properties),
            "data": traverser.helper.get_entity_fields(),
        }
        try:
            status = notifier.post_notification(self.url, body, secret=self.secret, timeout=self.timeout)
        except notifier.NotificationError as e:
            raise TaskFailure(str(e))
        traverser.state["notificationStatus"] = status

    on_insert = _notify
    on_update = _notify
    on_delete = _notify


def default_tasks(cfg: Config) -> list[EventTask]:
    return [
        PlacementCommissionTotalTask(),
        PlacementCommissionCapTask(),
        PlacementCredentialingStatusTask(),
        CandidateEducationDegreeTask(),
        CorporateUserNotificationTask(
            cfg.NOTIFY_WEBHOOK_URL,
            secret=cfg.NOTIFY_SIGNING_SECRET,
            timeout=cfg.NOTIFY_TIMEOUT_SECONDS,
        ),
    ]


def build_default_workflow(
    cfg: Optional[Config] = None,
    *,
    session_factory: Optional[Callable[..., ContextManager[Session]]] = None,
) -> EventWorkflowService:
    cfg = cfg or Config()
    workflow = EventWorkflowService(session_factory=session_factory)
    for entity_type in entity_types():
        workflow.register_traverser(TraverserConfig.from_catalog(entity_type, ENTITY_MODELS.get(entity_type)))
    workflow.register_tasks(default_tasks(cfg))
    return workflow.build()
