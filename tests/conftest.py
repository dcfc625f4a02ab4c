from __future__ import annotations

import pytest


@pytest.fixture()
def app_client(tmp_path, monkeypatch):
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'test.db'}")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.setenv("REDIS_URL", "")
    monkeypatch.setenv("EVENTS_ASYNC", "0")
    monkeypatch.setenv("WEBHOOK_TOKEN", "")
    monkeypatch.setenv("INTERNAL_CRON_TOKEN", "test-cron-token")
    monkeypatch.setenv("NOTIFY_WEBHOOK_URL", "")
    monkeypatch.setenv("NOTIFY_SIGNING_SECRET", "")
    monkeypatch.setenv("DLM_BATCH_SIZE", "500")

    from app import create_app

    app = create_app()
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield app, client
