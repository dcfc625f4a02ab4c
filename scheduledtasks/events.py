from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from utils import ValidationFailure, new_uuid


class EventType(str, Enum):
    INSERTED = "INSERTED"
    UPDATED = "UPDATED"
    DELETED = "DELETED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_code(cls, code: Any) -> "EventType":
        raw = str(getattr(code, "value", code) or "").strip().upper()
        try:
            return cls(raw)
        except ValueError:
            return cls.UNKNOWN


KNOWN_EVENT_TYPES = frozenset({EventType.INSERTED, EventType.UPDATED, EventType.DELETED})


@dataclass(frozen=True)
class SubscriptionEvent:
    entity_name: str
    entity_id: int
    entity_event_type: str
    event_id: str = field(default_factory=new_uuid)
    updated_properties: tuple[str, ...] = ()
    event_timestamp: str = ""
    payload: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, body: Mapping[str, Any]) -> "SubscriptionEvent":
        """
        Build an event from the subscription webhook JSON:

            {"eventId": "...", "entityName": "Placement", "entityId": 42,
             "entityEventType": "UPDATED", "updatedProperties": ["status"],
             "eventTimestamp": 1700000000000, "payload": {...}}
        """
        if not isinstance(body, Mapping):
            raise ValidationFailure("Event must be a JSON object")

        entity_name = str(body.get("entityName") or "").strip()
        if not entity_name:
            raise ValidationFailure("Missing entityName")

        raw_id = body.get("entityId")
        try:
            entity_id = int(str(raw_id).strip())
        except (TypeError, ValueError):
            raise ValidationFailure(f"Invalid entityId: {raw_id!r}")

        props = body.get("updatedProperties") or []
        if isinstance(props, str):
            props = [p for p in props.split(",")]
        payload = body.get("payload")
        if payload is None:
            payload = body.get("eventMetadata")

        return cls(
            entity_name=entity_name,
            entity_id=entity_id,
            entity_event_type=str(body.get("entityEventType") or ""),
            event_id=str(body.get("eventId") or "").strip() or new_uuid(),
            updated_properties=tuple(str(p).strip() for p in props if str(p).strip()),
            event_timestamp=str(body.get("eventTimestamp") or ""),
            payload=dict(payload) if isinstance(payload, Mapping) else {},
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "eventId": self.event_id,
            "entityName": self.entity_name,
            "entityId": self.entity_id,
            "entityEventType": self.entity_event_type,
            "updatedProperties": list(self.updated_properties),
            "eventTimestamp": self.event_timestamp,
            "payload": dict(self.payload),
        }
