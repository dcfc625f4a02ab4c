from __future__ import annotations

import hmac
import logging

from flask import Blueprint, current_app, request

from scheduledtasks.events import SubscriptionEvent
from utils import ApiError, NotFoundError, PipelineAborted, ValidationFailure, err, ok, parse_json_body

events_bp = Blueprint("events", __name__)

_log = logging.getLogger("api")

MAX_EVENTS_PER_REQUEST = 100


def _token_matches(provided: str, expected: str) -> bool:
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def _require_webhook_token() -> None:
    expected = current_app.config["CFG"].WEBHOOK_TOKEN
    if not expected:
        return
    provided = str(request.headers.get("X-Webhook-Token") or "").strip()
    if not provided or not _token_matches(provided, expected):
        raise ApiError("AUTH_INVALID", "Invalid webhook token", http_status=401)


def _require_internal_token() -> None:
    expected = current_app.config["CFG"].INTERNAL_CRON_TOKEN
    provided = str(request.headers.get("X-Internal-Token") or "").strip()
    if not expected or not provided or not _token_matches(provided, expected):
        raise ApiError("AUTH_INVALID", "Invalid internal token", http_status=401)


def _parse_events(body: dict) -> list[SubscriptionEvent]:
    raw = body.get("events") if "events" in body else [body]
    if not isinstance(raw, list) or not raw:
        raise ValidationFailure("events must be a non-empty list")
    if len(raw) > MAX_EVENTS_PER_REQUEST:
        raise ValidationFailure(f"At most {MAX_EVENTS_PER_REQUEST} events per request")

    events: list[SubscriptionEvent] = []
    errors: list[str] = []
    for i, item in enumerate(raw):
        try:
            events.append(SubscriptionEvent.from_payload(item))
        except ValidationFailure as e:
            errors.append(f"events[{i}]: {e.message}")
    if errors:
        raise ValidationFailure("Invalid subscription event", errors=errors)
    return events


@events_bp.post("/events/subscription")
def subscription_event():
    """
    Entity subscription webhook.

    Body: one event, or {"events": [...]}. Handled inline unless EVENTS_ASYNC
    is on, in which case every event is queued and 202 is returned.
    """
    _require_webhook_token()
    cfg = current_app.config["CFG"]
    events = _parse_events(parse_json_body(request.get_data(as_text=True)))

    if cfg.EVENTS_ASYNC:
        from app.tasks.event_tasks import process_subscription_event

        jobs = []
        for event in events:
            task = process_subscription_event.apply_async(kwargs={"event": event.to_payload()})
            jobs.append({"eventId": event.event_id, "jobId": task.id, "status": "queued"})
        _log.info("queued events=%s", len(jobs))
        return ok({"jobs": jobs}, http_status=202)

    workflow = current_app.extensions["workflow"]
    if len(events) == 1:
        return ok(workflow.handle(events[0]).to_dict())

    reports = []
    aborted = False
    for event in events:
        try:
            reports.append(workflow.handle(event).to_dict())
        except PipelineAborted as e:
            aborted = True
            reports.append(e.details)
    if aborted:
        return err("PIPELINE_ABORTED", "One or more event pipelines aborted", http_status=500, details=reports)
    return ok({"reports": reports})


@events_bp.get("/events/pipelines")
def list_pipelines():
    return ok(current_app.extensions["workflow"].describe())


@events_bp.post("/internal/dlm/<entity_type>")
def run_dlm(entity_type: str):
    """Cron hook: `X-Internal-Token` = INTERNAL_CRON_TOKEN; optional body {"since": "<iso>"}."""
    _require_internal_token()
    service = current_app.extensions["dlm"].get(entity_type)
    if service is None:
        raise NotFoundError(f"No date-last-modified tasks for {entity_type}")

    body = parse_json_body(request.get_data(as_text=True))
    since = body.get("since")
    if since is not None:
        since = str(since).strip()

    cfg = current_app.config["CFG"]
    if cfg.EVENTS_ASYNC:
        from app.tasks.event_tasks import run_date_last_modified_tasks

        task = run_date_last_modified_tasks.apply_async(kwargs={"entity_type": entity_type, "since": since})
        return ok({"jobId": task.id, "status": "queued"}, http_status=202)

    return ok(service.run(since=since))
