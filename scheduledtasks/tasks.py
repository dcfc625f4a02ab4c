from __future__ import annotations

from typing import Callable, Iterable, Mapping, Optional

from scheduledtasks.events import KNOWN_EVENT_TYPES, EventType
from scheduledtasks.traversing import EventTraverser


DEFAULT_ORDER = 100


class TaskFailure(Exception):
    """
    Raised by a task that could not do its work.

    Recoverable by default: the pipeline logs it and moves on. `fatal=True`
    (or a task marked `critical`) aborts the rest of the pipeline.
    """

    def __init__(self, message: str, *, fatal: bool = False):
        super().__init__(message)
        self.fatal = bool(fatal)


class EventTask:
    """
    One ordered unit of work bound to an entity type.

    Subclasses set `entity_type` and implement the `on_*` hooks they care
    about. Tasks hold no per-event state; everything goes through the
    traverser.
    """

    entity_type: str = ""
    name: str = ""
    order: int = DEFAULT_ORDER
    event_types: frozenset[EventType] = KNOWN_EVENT_TYPES
    critical: bool = False
    related_entity_fields: Mapping[str, Iterable[str]] = {}

    def __init__(
        self,
        order: Optional[int] = None,
        related_entity_fields: Optional[Mapping[str, Iterable[str]]] = None,
        *,
        critical: Optional[bool] = None,
    ):
        if order is not None:
            self.order = int(order)
        if related_entity_fields is not None:
            self.related_entity_fields = related_entity_fields
        if critical is not None:
            self.critical = bool(critical)
        if not self.name:
            self.name = type(self).__name__

    def applies_to(self, traverser: EventTraverser) -> bool:
        return traverser.event_type in self.event_types

    def apply(self, traverser: EventTraverser) -> None:
        handler: Callable[[EventTraverser], None] = {
            EventType.INSERTED: self.on_insert,
            EventType.UPDATED: self.on_update,
            EventType.DELETED: self.on_delete,
        }.get(traverser.event_type, self.on_unknown)
        handler(traverser)

    def on_insert(self, traverser: EventTraverser) -> None:
        pass

    def on_update(self, traverser: EventTraverser) -> None:
        pass

    def on_delete(self, traverser: EventTraverser) -> None:
        pass

    def on_unknown(self, traverser: EventTraverser) -> None:
        pass

    def __repr__(self) -> str:
        return f"<EventTask {self.entity_type}:{self.name} order={self.order}>"
