from __future__ import annotations

from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from fieldsets import parse_fields, project
from related_entities import RelatedEntity
from scheduledtasks.events import SubscriptionEvent
from utils import NotFoundError


_MISSING = object()


class TaskHelper:
    """
    Lookups shared by the tasks of one event.

    Knows which related entities (and which of their fields) the pipeline
    needs, loads the root entity once and walks relationship paths from it.
    Results are cached for the lifetime of the event.
    """

    def __init__(
        self,
        event: SubscriptionEvent,
        related_entity_fields: Mapping[str, RelatedEntity],
        *,
        model: Optional[type] = None,
        session: Optional[Session] = None,
    ):
        self.event = event
        self.related_entity_fields = related_entity_fields
        self.model = model
        self.session = session
        self._entity: Any = _MISSING
        self._related: dict[str, Any] = {}

    @property
    def entity_id(self) -> int:
        return self.event.entity_id

    @property
    def entity(self) -> Any:
        """The root entity, or None when it no longer exists in storage."""
        if self._entity is _MISSING:
            if self.session is None or self.model is None:
                self._entity = None
            else:
                self._entity = self.session.get(self.model, self.event.entity_id)
        return self._entity

    def require_entity(self) -> Any:
        obj = self.entity
        if obj is None:
            raise NotFoundError(f"{self.event.entity_name} not found: {self.event.entity_id}")
        return obj

    def related_entity(self, key: str) -> RelatedEntity:
        rel = self.related_entity_fields.get(key)
        if rel is None:
            raise KeyError(f"{self.event.entity_name} has no related entity {key}")
        return rel

    def get_related_entity(self, key: str) -> Any:
        """Follow the catalog path for `key` from the root entity (None if any hop is empty)."""
        if key in self._related:
            return self._related[key]

        rel = self.related_entity(key)
        obj = self.entity
        for hop in [p for p in rel.path.split(".") if p]:
            if obj is None:
                break
            obj = getattr(obj, hop, None)
        self._related[key] = obj
        return obj

    def get_fields(self, key: str) -> Any:
        """Project the configured field set of `key` into plain data."""
        rel = self.related_entity(key)
        obj = self.get_related_entity(key)
        tree = parse_fields(rel.fields)
        if isinstance(obj, (list, tuple)):
            return [project(o, tree) for o in obj]
        return project(obj, tree)

    def get_entity_fields(self) -> Optional[dict[str, Any]]:
        for key, rel in self.related_entity_fields.items():
            if not rel.path:
                return self.get_fields(key)
        return None

    def refresh(self) -> None:
        self._entity = _MISSING
        self._related.clear()
