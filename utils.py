from __future__ import annotations

import json
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from flask import jsonify


class ApiError(Exception):
    def __init__(self, code: str, message: str, *, http_status: int = 400, details: Any = None):
        super().__init__(message)
        self.code = str(code or "INTERNAL")
        self.message = str(message or "")
        self.http_status = int(http_status or 400)
        self.details = details


class NotFoundError(ApiError):
    def __init__(self, message: str = "Not found"):
        super().__init__("NOT_FOUND", message, http_status=404)


class ValidationFailure(ApiError):
    def __init__(self, message: str = "Validation failed", *, errors: Optional[list[str]] = None):
        super().__init__("VALIDATION_ERROR", message, http_status=400, details=list(errors or []))

    @property
    def errors(self) -> list[str]:
        return list(self.details or [])


class ConfigurationUnavailable(ApiError):
    def __init__(self, message: str = "Configuration unavailable"):
        super().__init__("CONFIG_UNAVAILABLE", message, http_status=500)


class PipelineAborted(ApiError):
    def __init__(self, message: str, *, report: Any = None):
        details = report.to_dict() if report is not None else None
        super().__init__("PIPELINE_ABORTED", message, http_status=500, details=details)
        self.report = report


def ok(data: Any = None, *, http_status: int = 200):
    return jsonify({"ok": True, "data": data}), http_status


def err(code: str, message: str, *, http_status: int = 400, details: Any = None):
    body: dict[str, Any] = {"ok": False, "error": {"code": code, "message": message}}
    if details is not None:
        body["error"]["details"] = details
    return jsonify(body), http_status


def iso_utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_uuid() -> str:
    return str(uuid.uuid4())


def now_monotonic() -> float:
    return time.monotonic()


def parse_json_body(raw: str) -> dict[str, Any]:
    s = str(raw or "").strip()
    if not s:
        return {}
    try:
        body = json.loads(s)
    except Exception:
        raise ApiError("BAD_REQUEST", "Invalid JSON body")
    if not isinstance(body, dict):
        raise ApiError("BAD_REQUEST", "JSON body must be an object")
    return body


def to_int(value: Any, default: int) -> int:
    try:
        return int(str(value).strip())
    except Exception:
        return default
