from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any

import pytest

from batchops.core.errors import JobStoreError
from batchops.core.events import EventBus
from batchops.core.jobs import Job, MemoryJobStore, TaskRegistry


class RecordingStore(MemoryJobStore):
    """MemoryJobStore that logs every call and can be told to fail.

    Each call yields to the loop once, like a network round trip would.
    """

    def __init__(self) -> None:
        super().__init__()
        self.calls: list[tuple[Any, ...]] = []
        self.fail_create = False
        self.fail_retire = False
        self.fail_list = False
        self.fail_checkpoint_items: set[str] = set()
        self.create_gate: asyncio.Event | None = None

    def seed(self, job: Job) -> None:
        self._apply_created(job)

    def ops(self) -> list[str]:
        return [c[0] for c in self.calls]

    async def create(self, scope: str, job_type: str, item_ids: Sequence[str]) -> str:
        self.calls.append(("create", scope, job_type, list(item_ids)))
        await asyncio.sleep(0)
        if self.create_gate is not None:
            await self.create_gate.wait()
        if self.fail_create:
            raise JobStoreError("create unavailable")
        return await super().create(scope, job_type, item_ids)

    async def checkpoint(self, job_id: str, completed_item_id: str, progress_hint: int) -> None:
        self.calls.append(("checkpoint", completed_item_id, progress_hint))
        await asyncio.sleep(0)
        if completed_item_id in self.fail_checkpoint_items:
            raise JobStoreError("checkpoint dropped")
        await super().checkpoint(job_id, completed_item_id, progress_hint)

    async def retire(self, job_id: str) -> None:
        self.calls.append(("retire", job_id))
        await asyncio.sleep(0)
        if self.fail_retire:
            raise JobStoreError("retire unavailable")
        await super().retire(job_id)

    async def list_open(self, scope: str) -> list[Job]:
        self.calls.append(("list_open", scope))
        await asyncio.sleep(0)
        if self.fail_list:
            raise JobStoreError("list unavailable")
        return await super().list_open(scope)


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def registry(store: RecordingStore, bus: EventBus) -> TaskRegistry:
    return TaskRegistry(store, bus)
