from __future__ import annotations

import logging
import os
import re

from dotenv import load_dotenv
from flask import Flask, g, request
from flask_cors import CORS
from sqlalchemy.exc import DBAPIError
from werkzeug.exceptions import HTTPException

from config import Config
from db import Base, init_engine
from utils import ApiError, err, now_monotonic


_log = logging.getLogger("api")


def _configure_logging(level: str):
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _request_id() -> str:
    return str(getattr(g, "request_id", "") or "").strip()


def _internal_message(cfg: Config, prefix: str, detail: str) -> str:
    request_id = _request_id()
    if cfg.IS_PRODUCTION or not detail:
        return f"{prefix} (requestId: {request_id})" if request_id else prefix
    detail = re.sub(r"\s+", " ", detail).strip()
    if len(detail) > 300:
        detail = detail[:300] + "..."
    return f"{prefix}: {detail} (requestId: {request_id})" if request_id else f"{prefix}: {detail}"


def init_request_hooks(app: Flask) -> None:
    @app.before_request
    def _before():
        g.request_id = str(request.headers.get("X-Request-ID") or "").strip()[:64] or os.urandom(8).hex()
        g.start_ts = now_monotonic()

    @app.after_request
    def _after(resp):
        resp.headers["X-Request-ID"] = _request_id()
        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        resp.headers.setdefault("X-Frame-Options", "DENY")
        resp.headers.setdefault("Referrer-Policy", "no-referrer")
        resp.headers.setdefault("Cache-Control", "no-store")

        started = getattr(g, "start_ts", None)
        latency_ms = int((now_monotonic() - started) * 1000) if started is not None else -1
        _log.info(
            "request_id=%s method=%s path=%s status=%s latency_ms=%s",
            _request_id(),
            request.method,
            request.path,
            resp.status_code,
            latency_ms,
        )
        return resp


def init_error_handlers(app: Flask) -> None:
    cfg: Config = app.config["CFG"]

    @app.errorhandler(ApiError)
    def api_error(e: ApiError):
        if e.http_status >= 500:
            _log.error("request_id=%s code=%s message=%s", _request_id(), e.code, e.message)
        return err(e.code, e.message, http_status=e.http_status, details=e.details)

    @app.errorhandler(404)
    def not_found(_e):
        return err("NOT_FOUND", f"Unknown endpoint: {request.path}", http_status=404)

    @app.errorhandler(405)
    def method_not_allowed(_e):
        return err("BAD_REQUEST", f"Method not allowed: {request.method} {request.path}", http_status=405)

    @app.errorhandler(HTTPException)
    def http_error(e: HTTPException):
        return err("BAD_REQUEST", str(e.description or e.name), http_status=int(e.code or 400))

    @app.errorhandler(DBAPIError)
    def db_error(e: DBAPIError):
        _log.exception("request_id=%s path=%s", _request_id(), request.path)
        orig = getattr(e, "orig", None)
        return err("INTERNAL", _internal_message(cfg, "Database error", str(orig) if orig else ""), http_status=500)

    @app.errorhandler(Exception)
    def unexpected(e: Exception):
        _log.exception("request_id=%s path=%s", _request_id(), request.path)
        return err("INTERNAL", _internal_message(cfg, "Unexpected error", type(e).__name__), http_status=500)


def create_app() -> Flask:
    load_dotenv()
    cfg = Config()
    cfg.validate()
    _configure_logging(cfg.LOG_LEVEL)

    engine = init_engine(cfg.DATABASE_URL)

    import models  # noqa: F401  registers the tables on Base.metadata

    Base.metadata.create_all(bind=engine)

    app = Flask(__name__)
    app.config["CFG"] = cfg
    app.json.sort_keys = False

    CORS(
        app,
        origins=cfg.ALLOWED_ORIGINS,
        supports_credentials=False,
        allow_headers=["Content-Type", "X-Request-ID", "X-Webhook-Token", "X-Internal-Token"],
        expose_headers=["X-Request-ID"],
        methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        max_age=3600,
    )

    init_request_hooks(app)
    init_error_handlers(app)

    from datatables.grids import build_grid_registry
    from dlmtasks.nodes import build_dlm_services
    from scheduledtasks.nodes import build_default_workflow

    app.extensions["grids"] = build_grid_registry()
    app.extensions["workflow"] = build_default_workflow(cfg)
    app.extensions["dlm"] = build_dlm_services(cfg)

    from app.routes.core import core_bp
    from app.routes.datatables import grids_bp
    from app.routes.events import events_bp

    app.register_blueprint(core_bp)
    app.register_blueprint(grids_bp, url_prefix="/api/grids")
    app.register_blueprint(events_bp, url_prefix="/api")

    _log.info(
        "app ready env=%s grids=%s pipelines=%s async_events=%s",
        cfg.ENV,
        sorted(app.extensions["grids"]),
        len(app.extensions["workflow"].describe()),
        cfg.EVENTS_ASYNC,
    )
    return app
