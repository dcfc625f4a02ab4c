"""
A traverser is passed through a task pipeline; tasks read the event and its
lookups from it and leave their results on it for the tasks that follow.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

from sqlalchemy.orm import Session

from related_entities import RelatedEntity, related_entities
from scheduledtasks.events import EventType, SubscriptionEvent
from scheduledtasks.helpers import TaskHelper


HelperFactory = Callable[..., TaskHelper]


def classify(event: SubscriptionEvent) -> EventType:
    return EventType.from_code(event.entity_event_type)


def helper_for(
    event: SubscriptionEvent,
    related_fields: Mapping[str, RelatedEntity],
    *,
    model: Optional[type] = None,
    session: Optional[Session] = None,
    factory: HelperFactory = TaskHelper,
) -> TaskHelper:
    return factory(event, related_fields, model=model, session=session)


class EventTraverser:
    def __init__(self, helper: TaskHelper, event_type: EventType):
        self.helper = helper
        self.event_type = event_type
        self.state: dict[str, Any] = {}
        self.notes: list[str] = []

    @property
    def event(self) -> SubscriptionEvent:
        return self.helper.event

    @property
    def entity_type(self) -> str:
        return self.helper.event.entity_name

    @property
    def entity_id(self) -> int:
        return self.helper.event.entity_id

    @property
    def session(self) -> Optional[Session]:
        return self.helper.session

    def note(self, message: str) -> None:
        self.notes.append(str(message))

    def __repr__(self) -> str:
        return f"<EventTraverser {self.entity_type}:{self.entity_id} {self.event_type.value}>"


@dataclass(frozen=True)
class TraverserConfig:
    """Everything that differs between entity types when building a traverser."""

    entity_type: str
    model: Optional[type]
    related_entity_fields: Mapping[str, RelatedEntity] = field(default_factory=dict)
    helper_factory: HelperFactory = TaskHelper

    @classmethod
    def from_catalog(cls, entity_type: str, model: Optional[type], **kwargs) -> "TraverserConfig":
        return cls(entity_type=entity_type, model=model, related_entity_fields=related_entities(entity_type), **kwargs)

    def with_related_fields(self, related_fields: Mapping[str, RelatedEntity]) -> "TraverserConfig":
        return TraverserConfig(
            entity_type=self.entity_type,
            model=self.model,
            related_entity_fields=related_fields,
            helper_factory=self.helper_factory,
        )

    def traverse(self, event: SubscriptionEvent, session: Optional[Session] = None) -> EventTraverser:
        helper = helper_for(
            event,
            self.related_entity_fields,
            model=self.model,
            session=session,
            factory=self.helper_factory,
        )
        return EventTraverser(helper, classify(event))


class TraverserRegistry:
    def __init__(self) -> None:
        self._configs: dict[str, TraverserConfig] = {}

    def register(self, config: TraverserConfig) -> None:
        self._configs[config.entity_type] = config

    def get(self, entity_type: str) -> Optional[TraverserConfig]:
        return self._configs.get(str(entity_type or ""))

    def entity_types(self) -> list[str]:
        return sorted(self._configs)

    def __contains__(self, entity_type: object) -> bool:
        return entity_type in self._configs
