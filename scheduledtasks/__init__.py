from scheduledtasks.events import EventType, SubscriptionEvent
from scheduledtasks.pipeline import EventPipeline, PipelineReport, TaskResult
from scheduledtasks.tasks import DEFAULT_ORDER, EventTask, TaskFailure
from scheduledtasks.traversing import EventTraverser, TraverserConfig, TraverserRegistry
from scheduledtasks.workflow import EventWorkflowService, run_event

__all__ = [
    "DEFAULT_ORDER",
    "EventPipeline",
    "EventTask",
    "EventTraverser",
    "EventType",
    "EventWorkflowService",
    "PipelineReport",
    "SubscriptionEvent",
    "TaskFailure",
    "TaskResult",
    "TraverserConfig",
    "TraverserRegistry",
    "run_event",
]
