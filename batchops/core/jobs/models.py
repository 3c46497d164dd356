"""Persisted job records, batch items and in-memory task handles."""

from __future__ import annotations

import json
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from batchops.core.jobs.job_runner import CancelToken

TaskStatus = Literal["running", "completed", "failed", "cancelled"]
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed", "cancelled"})

COMPOSITE_SEPARATOR = ":"

# Older clients persisted role-specific keys.
_ITEM_ID_KEYS = ("itemIds", "roleIds")
_COMPLETED_ID_KEYS = ("completedItemIds", "completedRoleIds")


def compute_progress(done: int, total: int) -> int:
    """Percent complete, rounded half-up and clamped to 0..100."""
    if total <= 0:
        return 100
    pct = int(done * 100 / total + 0.5)
    return max(0, min(100, pct))


def composite_key(entity_id: str, sub_key: str) -> str:
    """Build an item id for entity × sub-scope work, e.g. ``role-1:E1S2``."""
    return f"{entity_id}{COMPOSITE_SEPARATOR}{sub_key}"


def split_composite_key(item_id: str) -> tuple[str, str]:
    """Decompose a composite item id; a plain id yields an empty sub key."""
    entity_id, sep, sub_key = item_id.partition(COMPOSITE_SEPARATOR)
    if not sep:
        return item_id, ""
    return entity_id, sub_key


def _load_object(raw: Any) -> dict[str, Any]:
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            obj = json.loads(raw or "{}")
        except (TypeError, ValueError):
            return {}
        return obj if isinstance(obj, dict) else {}
    return {}


def _id_list(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)):
        return []
    out: list[str] = []
    seen: set[str] = set()
    for v in value:
        if isinstance(v, bool) or not isinstance(v, (str, int)):
            continue
        s = str(v).strip()
        if s and s not in seen:
            seen.add(s)
            out.append(s)
    return out


def _first_list(obj: Mapping[str, Any], keys: Iterable[str]) -> list[str]:
    for key in keys:
        if key in obj:
            return _id_list(obj.get(key))
    return []


def parse_item_ids(raw_input: Any) -> list[str]:
    """Item ids from a persisted ``input`` payload; malformed content yields []."""
    return _first_list(_load_object(raw_input), _ITEM_ID_KEYS)


def parse_completed_ids(raw_output: Any) -> list[str]:
    """Completed ids from a persisted ``output`` payload; malformed content yields []."""
    return _first_list(_load_object(raw_output), _COMPLETED_ID_KEYS)


def dump_input(item_ids: Iterable[str]) -> str:
    return json.dumps({"itemIds": list(item_ids)}, ensure_ascii=False)


def dump_output(completed_item_ids: Iterable[str]) -> str:
    return json.dumps({"completedItemIds": list(completed_item_ids)}, ensure_ascii=False)


@dataclass(slots=True)
class Job:
    """Durable description of a bulk operation over an ordered list of items."""

    id: str
    scope: str
    type: str
    item_ids: list[str] = field(default_factory=list)
    completed_item_ids: list[str] = field(default_factory=list)
    progress_hint: int = 0

    def __post_init__(self) -> None:
        self.item_ids = _id_list(self.item_ids)
        self.completed_item_ids = self._subset(self.completed_item_ids)

    def _subset(self, ids: Iterable[str]) -> list[str]:
        wanted = set(ids)
        return [i for i in self.item_ids if i in wanted]

    def remaining_item_ids(self) -> list[str]:
        done = set(self.completed_item_ids)
        return [i for i in self.item_ids if i not in done]

    def mark_completed(self, item_id: str) -> bool:
        """Union ``item_id`` into the completed set; False if unknown or already there."""
        if item_id not in self.item_ids or item_id in self.completed_item_ids:
            return False
        self.completed_item_ids = self._subset([*self.completed_item_ids, item_id])
        return True

    @property
    def is_complete(self) -> bool:
        return not self.remaining_item_ids()

    @property
    def progress(self) -> int:
        return compute_progress(len(self.completed_item_ids), len(self.item_ids))

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], *, scope: str = "") -> "Job | None":
        """Parse one listed job; returns None when the record has no id."""
        job_id = payload.get("id")
        if job_id is None or isinstance(job_id, bool) or str(job_id).strip() == "":
            return None
        raw_hint = payload.get("progress", 0)
        try:
            hint = int(raw_hint) if not isinstance(raw_hint, bool) else 0
        except (TypeError, ValueError):
            hint = 0
        raw_scope = payload.get("scope")
        return cls(
            id=str(job_id),
            scope=str(raw_scope) if raw_scope else scope,
            type=str(payload.get("type") or ""),
            item_ids=parse_item_ids(payload.get("input")),
            completed_item_ids=parse_completed_ids(payload.get("output")),
            progress_hint=max(0, min(100, hint)),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "scope": self.scope,
            "type": self.type,
            "input": dump_input(self.item_ids),
            "output": dump_output(self.completed_item_ids),
            "progress": self.progress_hint,
        }


@dataclass(frozen=True, slots=True)
class Item:
    id: str
    label: str = ""

    @property
    def display(self) -> str:
        return self.label or self.id


EndListener = Callable[["RunningJobHandle"], Any]
ItemListener = Callable[[str, Any], Any]


@dataclass(slots=True)
class RunningJobHandle:
    """In-memory view of one task; never persisted."""

    job_id: str
    job_type: str
    scope: str | None
    label: str
    items: list[Item]
    total: int
    cancel_token: "CancelToken"
    estimated_ms_per_item: int = 0
    done: int = 0
    progress: int = 0
    status: str = "running"
    current_item: str = ""
    error: str | None = None
    persisted: bool = True
    started_at: float = field(default_factory=time.time)
    finished_at: float | None = None
    end_listeners: list[EndListener] = field(default_factory=list)
    item_listeners: list[ItemListener] = field(default_factory=list)

    @property
    def key(self) -> tuple[str, str | None]:
        return (self.job_type, self.scope)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def snapshot(self) -> "RunningJobHandle":
        return replace(self, items=list(self.items), end_listeners=[], item_listeners=[])
