from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class TaskEvent:
    job_id: str
    job_type: str
    scope: str | None


@dataclass(frozen=True, slots=True)
class TaskStarted(TaskEvent):
    label: str
    total: int
    done: int = 0


@dataclass(frozen=True, slots=True)
class TaskProgress(TaskEvent):
    done: int
    total: int
    progress: int  # 0..100
    current_item: str = ""


@dataclass(frozen=True, slots=True)
class TaskItemDone(TaskEvent):
    """One item finished; ``result`` is whatever the executor returned."""

    item_id: str
    result: Any = None


@dataclass(frozen=True, slots=True)
class TaskCompleted(TaskEvent):
    pass


@dataclass(frozen=True, slots=True)
class TaskFailed(TaskEvent):
    error: str
    item_id: str | None = None


@dataclass(frozen=True, slots=True)
class TaskCancelled(TaskEvent):
    pass


@dataclass(frozen=True, slots=True)
class TaskCheckpointDropped(TaskEvent):
    """A persistence call failed; the item may run again on the next resume."""

    operation: str
    error: str
    item_id: str | None = None
