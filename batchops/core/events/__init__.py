"""Lightweight in-process event bus.

Runners and the task registry publish task lifecycle events; any number of
progress surfaces subscribe without owning a runner.
"""

from .event_bus import EventBus, Subscription
from .task_events import (
    TaskCancelled,
    TaskCheckpointDropped,
    TaskCompleted,
    TaskEvent,
    TaskFailed,
    TaskItemDone,
    TaskProgress,
    TaskStarted,
)

__all__ = [
    "EventBus",
    "Subscription",
    "TaskEvent",
    "TaskStarted",
    "TaskProgress",
    "TaskItemDone",
    "TaskCompleted",
    "TaskFailed",
    "TaskCancelled",
    "TaskCheckpointDropped",
]
