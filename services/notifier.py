"""
Outbound notification client.

POSTs JSON to a downstream webhook, HMAC-signed when a secret is configured:
- X-Timestamp: Unix timestamp
- X-Signature: HMAC-SHA256(secret, "<timestamp>:<sorted json>")
"""
from __future__ import annotations

import hashlib
import hmac
import json
import time
from typing import Any

import requests


class NotificationError(RuntimeError):
    pass


def generate_hmac_signature(payload: dict, secret: str, timestamp: int) -> str:
    sorted_payload = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    message = f"{timestamp}:{sorted_payload}"
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def post_notification(url: str, payload: dict[str, Any], *, secret: str = "", timeout: int = 10) -> int:
    """Send one notification; returns the HTTP status. Raises NotificationError on failure."""
    timestamp = int(time.time())
    headers = {
        "Content-Type": "application/json",
        "X-Timestamp": str(timestamp),
    }
    if secret:
        headers["X-Signature"] = generate_hmac_signature(payload, secret, timestamp)

    try:
        resp = requests.post(
            url,
            data=json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str),
            headers=headers,
            timeout=timeout,
        )
        resp.raise_for_status()
        return resp.status_code
    except requests.RequestException as e:
        raise NotificationError(f"Notification to {url} failed: {e}") from e
