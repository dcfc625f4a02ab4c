from __future__ import annotations

import logging
from typing import Any, Callable, ContextManager, Iterable, Optional

from sqlalchemy.orm import Session

from db import session_scope
from models import EventTaskRun
from related_entities import merge_related_fields
from scheduledtasks.events import SubscriptionEvent
from scheduledtasks.pipeline import EventPipeline, PipelineReport
from scheduledtasks.tasks import EventTask
from scheduledtasks.traversing import TraverserConfig, TraverserRegistry, classify
from utils import PipelineAborted, iso_utc_now


_log = logging.getLogger("scheduledtasks")


class _PipelineAbortedSignal(Exception):
    def __init__(self, report: PipelineReport):
        super().__init__("pipeline aborted")
        self.report = report


def record_task_runs(db: Session, report: PipelineReport) -> None:
    at = iso_utc_now()
    for r in report.results:
        db.add(
            EventTaskRun(
                eventId=report.event_id,
                entityType=report.entity_type,
                entityId=report.entity_id,
                eventType=report.event_type,
                taskName=r.name,
                taskOrder=r.order,
                outcome=r.outcome,
                error=r.error[:2000],
                durationMs=r.duration_ms,
                at=at,
            )
        )


def run_event(
    event: SubscriptionEvent,
    config: TraverserConfig,
    pipeline: EventPipeline,
    *,
    session_factory: Callable[..., ContextManager[Session]] = session_scope,
) -> PipelineReport:
    """
    Run one event through `pipeline` in a single transaction.

    The event's writes are rolled back if the pipeline aborts. The per-task
    audit rows are written in their own transaction either way.
    """
    try:
        with session_factory() as db:
            traverser = config.traverse(event, db)
            report = pipeline.run(traverser)
            if report.aborted:
                raise _PipelineAbortedSignal(report)
    except _PipelineAbortedSignal as signal:
        report = signal.report

    with session_factory() as db:
        record_task_runs(db, report)

    if report.aborted:
        raise PipelineAborted(
            f"Pipeline aborted for {report.entity_type}:{report.entity_id} ({', '.join(report.failed)})",
            report=report,
        )
    return report


class EventWorkflowService:
    """
    Routes subscription events to the task pipeline of their entity type.

    Register traverser configs and tasks at startup, then `build()` once.
    """

    def __init__(self, *, session_factory: Optional[Callable[..., ContextManager[Session]]] = None):
        self._session_factory = session_factory or session_scope
        self.traversers = TraverserRegistry()
        self._tasks: dict[str, list[EventTask]] = {}
        self._pipelines: Optional[dict[str, EventPipeline]] = None
        self._configs: dict[str, TraverserConfig] = {}

    def register_traverser(self, config: TraverserConfig) -> None:
        if self._pipelines is not None:
            raise RuntimeError("Workflow already built")
        self.traversers.register(config)

    def register_task(self, task: EventTask) -> None:
        if self._pipelines is not None:
            raise RuntimeError("Workflow already built")
        if task.entity_type not in self.traversers:
            raise ValueError(f"No traverser registered for {task.entity_type!r} ({task.name})")
        self._tasks.setdefault(task.entity_type, []).append(task)

    def register_tasks(self, tasks: Iterable[EventTask]) -> None:
        for task in tasks:
            self.register_task(task)

    def build(self) -> "EventWorkflowService":
        pipelines: dict[str, EventPipeline] = {}
        configs: dict[str, TraverserConfig] = {}
        for entity_type in self.traversers.entity_types():
            base = self.traversers.get(entity_type)
            tasks = self._tasks.get(entity_type, [])
            related = merge_related_fields(base.related_entity_fields, [t.related_entity_fields for t in tasks])
            configs[entity_type] = base.with_related_fields(related)
            pipelines[entity_type] = EventPipeline(entity_type, tasks)
            _log.info("pipeline built entity=%s tasks=%s", entity_type, [t.name for t in pipelines[entity_type].tasks])
        self._configs = configs
        self._pipelines = pipelines
        return self

    @property
    def built(self) -> bool:
        return self._pipelines is not None

    def _require_built(self) -> dict[str, EventPipeline]:
        if self._pipelines is None:
            raise RuntimeError("Workflow not built")
        return self._pipelines

    def pipeline_for(self, entity_type: str) -> Optional[EventPipeline]:
        return self._require_built().get(entity_type)

    def config_for(self, entity_type: str) -> Optional[TraverserConfig]:
        self._require_built()
        return self._configs.get(entity_type)

    def describe(self) -> dict[str, list[dict[str, Any]]]:
        return {name: p.describe() for name, p in sorted(self._require_built().items())}

    def handle(self, event: SubscriptionEvent) -> PipelineReport:
        pipeline = self.pipeline_for(event.entity_name)
        config = self.config_for(event.entity_name)
        if pipeline is None or config is None:
            _log.warning("no pipeline for entity=%s id=%s event=%s", event.entity_name, event.entity_id, event.event_id)
            return PipelineReport(
                entity_type=event.entity_name,
                entity_id=event.entity_id,
                event_type=classify(event).value,
                event_id=event.event_id,
                handled=False,
            )
        return run_event(event, config, pipeline, session_factory=self._session_factory)

    def handle_payload(self, body: dict[str, Any]) -> PipelineReport:
        return self.handle(SubscriptionEvent.from_payload(body))
