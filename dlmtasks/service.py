"""
Date-last-modified sweeps.

Periodically picks up entities changed since the previous sweep and runs an
ordered task list over each, the same way a subscription UPDATED event would.
Progress is kept in `dlm_checkpoints`, one row per entity type.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, ContextManager, Iterable, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from db import session_scope
from models import ENTITY_MODELS, DlmCheckpoint
from related_entities import merge_related_fields
from scheduledtasks.events import EventType, SubscriptionEvent
from scheduledtasks.pipeline import EventPipeline
from scheduledtasks.tasks import EventTask
from scheduledtasks.traversing import TraverserConfig
from scheduledtasks.workflow import run_event
from utils import PipelineAborted, iso_utc_now, new_uuid


_log = logging.getLogger("dlmtasks")


class DateLastModifiedTasksService:
    def __init__(
        self,
        entity_type: str,
        tasks: Iterable[EventTask],
        *,
        model: Optional[type] = None,
        batch_size: int = 500,
        session_factory: Optional[Callable[..., ContextManager[Session]]] = None,
    ):
        self.entity_type = entity_type
        self.model = model or ENTITY_MODELS.get(entity_type)
        if self.model is None:
            raise ValueError(f"Unknown entity type: {entity_type}")
        self.batch_size = max(1, int(batch_size))
        self._session_factory = session_factory or session_scope

        tasks = list(tasks)
        base = TraverserConfig.from_catalog(entity_type, self.model)
        related = merge_related_fields(base.related_entity_fields, [t.related_entity_fields for t in tasks])
        self.config = base.with_related_fields(related)
        self.pipeline = EventPipeline(entity_type, tasks)

    def describe(self) -> dict[str, Any]:
        return {"entityType": self.entity_type, "batchSize": self.batch_size, "tasks": self.pipeline.describe()}

    def _pending(self, db: Session, since: str, after_id: int) -> list[tuple[int, str]]:
        m = self.model
        if after_id:
            cond = or_(m.dateLastModified > since, and_(m.dateLastModified == since, m.id > after_id))
        else:
            cond = m.dateLastModified > since
        rows = db.execute(
            select(m.id, m.dateLastModified)
            .where(cond)
            .order_by(m.dateLastModified.asc(), m.id.asc())
            .limit(self.batch_size)
        ).all()
        return [(int(r[0]), str(r[1] or "")) for r in rows]

    def run(self, since: Optional[str] = None) -> dict[str, Any]:
        """
        Process one batch of entities modified after `since` (default: the
        stored checkpoint) and advance the checkpoint past them.
        """
        with self._session_factory(read_only=True) as db:
            cp = db.get(DlmCheckpoint, self.entity_type)
            if since is None:
                since = cp.lastModifiedSeen if cp else ""
                after_id = cp.lastIdSeen if cp else 0
            else:
                after_id = 0
            pending = self._pending(db, since, after_id)

        processed = 0
        failed = 0
        aborted = 0
        last_seen, last_id = since, after_id

        for entity_id, modified in pending:
            event = SubscriptionEvent(
                entity_name=self.entity_type,
                entity_id=entity_id,
                entity_event_type=EventType.UPDATED.value,
                event_id=f"dlm-{new_uuid()}",
                event_timestamp=modified,
                payload={"source": "dlm"},
            )
            try:
                report = run_event(event, self.config, self.pipeline, session_factory=self._session_factory)
                if report.failed:
                    failed += 1
            except PipelineAborted:
                # Audit rows hold the details; the sweep moves on.
                aborted += 1
            processed += 1
            last_seen, last_id = modified, entity_id

        with self._session_factory() as db:
            cp = db.get(DlmCheckpoint, self.entity_type)
            if cp is None:
                cp = DlmCheckpoint(entityType=self.entity_type, processedCount=0)
                db.add(cp)
            if pending:
                cp.lastModifiedSeen = last_seen
                cp.lastIdSeen = last_id
            cp.processedCount = int(cp.processedCount or 0) + processed
            cp.lastRunAt = iso_utc_now()

        summary = {
            "entityType": self.entity_type,
            "since": since,
            "processed": processed,
            "failed": failed,
            "aborted": aborted,
            "lastModifiedSeen": last_seen,
            "hasMore": len(pending) >= self.batch_size,
        }
        _log.info(
            "dlm sweep entity=%s processed=%s failed=%s aborted=%s last=%s",
            self.entity_type,
            processed,
            failed,
            aborted,
            last_seen,
        )
        return summary
