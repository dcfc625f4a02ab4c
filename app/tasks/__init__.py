"""
Celery app for queued subscription events and date-last-modified sweeps.

Usage:
    celery -A app.tasks.celery_app worker --loglevel=INFO
"""
from __future__ import annotations

import os

from celery import Celery


def make_celery() -> Celery:
    """
    Environment variables:
        REDIS_URL: broker URL (default: redis://localhost:6379/0)
        CELERY_RESULT_BACKEND: optional separate result backend
        CELERY_ALWAYS_EAGER: run tasks inline (tests, local dev)
    """
    redis_url = os.getenv("REDIS_URL", "") or "redis://localhost:6379/0"
    result_backend = os.getenv("CELERY_RESULT_BACKEND", redis_url)

    app = Celery(
        "backoffice_events",
        broker=redis_url,
        backend=result_backend,
        include=["app.tasks.event_tasks"],
    )

    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,
        result_expires=86400,
        # An event is acknowledged only once its pipeline has run.
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        worker_concurrency=int(os.getenv("CELERY_CONCURRENCY", "4")),
        task_always_eager=str(os.getenv("CELERY_ALWAYS_EAGER", "")).strip().lower() in {"1", "true", "yes", "on"},
    )

    return app


celery_app = make_celery()
