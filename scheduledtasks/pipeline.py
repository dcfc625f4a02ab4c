from __future__ import annotations

import logging
from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import Any, Iterable

from scheduledtasks.tasks import EventTask, TaskFailure
from scheduledtasks.traversing import EventTraverser
from utils import now_monotonic


_log = logging.getLogger("scheduledtasks")

OUTCOME_OK = "OK"
OUTCOME_FAILED = "FAILED"
OUTCOME_SKIPPED = "SKIPPED"
OUTCOME_NOT_RUN = "NOT_RUN"


@dataclass
class TaskResult:
    name: str
    order: int
    outcome: str
    error: str = ""
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "task": self.name,
            "order": self.order,
            "outcome": self.outcome,
            "error": self.error,
            "durationMs": self.duration_ms,
        }


@dataclass
class PipelineReport:
    entity_type: str
    entity_id: int
    event_type: str
    event_id: str = ""
    handled: bool = True
    aborted: bool = False
    results: list[TaskResult] = field(default_factory=list)

    @property
    def ran(self) -> list[str]:
        return [r.name for r in self.results if r.outcome in {OUTCOME_OK, OUTCOME_FAILED}]

    @property
    def failed(self) -> list[str]:
        return [r.name for r in self.results if r.outcome == OUTCOME_FAILED]

    def to_dict(self) -> dict[str, Any]:
        return {
            "eventId": self.event_id,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "eventType": self.event_type,
            "handled": self.handled,
            "aborted": self.aborted,
            "tasks": [r.to_dict() for r in self.results],
        }


class EventPipeline:
    """
    Ordered tasks for one entity type.

    Sorted once, ascending by `order`; equal orders keep registration order.
    """

    def __init__(self, entity_type: str, tasks: Iterable[EventTask] = ()):
        self.entity_type = entity_type
        self.tasks: tuple[EventTask, ...] = tuple(sorted(tasks, key=lambda t: t.order))

    def __len__(self) -> int:
        return len(self.tasks)

    def describe(self) -> list[dict[str, Any]]:
        return [
            {
                "task": t.name,
                "order": t.order,
                "critical": t.critical,
                "eventTypes": sorted(e.value for e in t.event_types),
            }
            for t in self.tasks
        ]

    def run(self, traverser: EventTraverser) -> PipelineReport:
        report = PipelineReport(
            entity_type=traverser.entity_type,
            entity_id=traverser.entity_id,
            event_type=traverser.event_type.value,
            event_id=traverser.event.event_id,
        )

        for task in self.tasks:
            if report.aborted:
                report.results.append(TaskResult(task.name, task.order, OUTCOME_NOT_RUN))
                continue

            if not task.applies_to(traverser):
                report.results.append(TaskResult(task.name, task.order, OUTCOME_SKIPPED))
                continue

            started = now_monotonic()
            try:
                with self._savepoint(traverser):
                    task.apply(traverser)
            except Exception as e:
                elapsed = int((now_monotonic() - started) * 1000)
                fatal = task.critical or (isinstance(e, TaskFailure) and e.fatal)
                _log.exception(
                    "task failed entity=%s id=%s event=%s task=%s fatal=%s",
                    traverser.entity_type,
                    traverser.entity_id,
                    traverser.event_type.value,
                    task.name,
                    fatal,
                )
                report.results.append(
                    TaskResult(task.name, task.order, OUTCOME_FAILED, error=f"{type(e).__name__}: {e}", duration_ms=elapsed)
                )
                if fatal:
                    report.aborted = True
                continue

            elapsed = int((now_monotonic() - started) * 1000)
            report.results.append(TaskResult(task.name, task.order, OUTCOME_OK, duration_ms=elapsed))

        _log.info(
            "pipeline entity=%s id=%s event=%s ran=%s failed=%s aborted=%s",
            traverser.entity_type,
            traverser.entity_id,
            traverser.event_type.value,
            len(report.ran),
            len(report.failed),
            report.aborted,
        )
        return report

    @staticmethod
    def _savepoint(traverser: EventTraverser):
        session = traverser.session
        if session is None:
            return nullcontext()
        # A failed task's writes are rolled back without touching earlier tasks'.
        return session.begin_nested()
