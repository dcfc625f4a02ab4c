"""
Background entry points for the event workflow and DLM sweeps.

Neither task retries: a failed pipeline is visible in `event_task_runs` and
the next DLM sweep or a re-sent event picks the entity up again.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Optional

from dotenv import load_dotenv

import db
from app.tasks import celery_app
from config import Config
from dlmtasks.nodes import build_dlm_services
from dlmtasks.service import DateLastModifiedTasksService
from scheduledtasks.nodes import build_default_workflow
from scheduledtasks.workflow import EventWorkflowService
from utils import NotFoundError, PipelineAborted


_log = logging.getLogger("scheduledtasks")

_lock = threading.Lock()
_workflow: Optional[EventWorkflowService] = None
_dlm: Optional[dict[str, DateLastModifiedTasksService]] = None


def _runtime() -> tuple[EventWorkflowService, dict[str, DateLastModifiedTasksService]]:
    """Worker-side setup, done once per process."""
    global _workflow, _dlm
    if _workflow is not None and _dlm is not None:
        return _workflow, _dlm
    with _lock:
        if _workflow is None or _dlm is None:
            load_dotenv()
            cfg = Config()
            cfg.validate()
            if db.SessionLocal is None:
                engine = db.init_engine(cfg.DATABASE_URL)
                import models  # noqa: F401

                db.Base.metadata.create_all(bind=engine)
            _workflow = build_default_workflow(cfg)
            _dlm = build_dlm_services(cfg)
        return _workflow, _dlm


def reset_runtime() -> None:
    global _workflow, _dlm
    with _lock:
        _workflow = None
        _dlm = None


@celery_app.task(bind=True, name="app.tasks.event_tasks.process_subscription_event")
def process_subscription_event(self, event: dict[str, Any]) -> dict[str, Any]:
    workflow, _ = _runtime()
    try:
        report = workflow.handle_payload(event)
    except PipelineAborted as e:
        _log.error("queued event aborted job=%s: %s", self.request.id, e.message)
        return {"ok": False, "error": {"code": e.code, "message": e.message}, "report": e.details}
    return {"ok": True, "report": report.to_dict()}


@celery_app.task(bind=True, name="app.tasks.event_tasks.run_date_last_modified_tasks")
def run_date_last_modified_tasks(self, entity_type: str, since: Optional[str] = None) -> dict[str, Any]:
    _, dlm = _runtime()
    service = dlm.get(entity_type)
    if service is None:
        raise NotFoundError(f"No date-last-modified tasks for {entity_type}")
    summary = service.run(since=since)
    _log.info("dlm job=%s entity=%s processed=%s", self.request.id, entity_type, summary["processed"])
    return summary
