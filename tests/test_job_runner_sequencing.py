from __future__ import annotations

import asyncio
from typing import Any

import pytest

from batchops.core.events import EventBus, TaskEvent, TaskProgress
from batchops.core.jobs import BatchTaskDescriptor, Item, ItemContext, SnapshotCell, TaskRegistry


def _items(*ids: str) -> list[Item]:
    return [Item(i, f"Role {i}") for i in ids]


@pytest.mark.asyncio
async def test_items_run_in_order_with_checkpoint_between_each(store, registry: TaskRegistry) -> None:
    async def execute(ctx: ItemContext) -> str:
        store.calls.append(("exec", ctx.item_id))
        await asyncio.sleep(0)
        return f"spec-{ctx.item_id}"

    job_id = await registry.start_batch_task(
        BatchTaskDescriptor("spec-fill-batch", "project-1", _items("A", "B", "C"), execute)
    )
    final = await registry.wait(job_id)

    assert final is not None and final.status == "completed"
    assert store.calls == [
        ("create", "project-1", "spec-fill-batch", ["A", "B", "C"]),
        ("exec", "A"),
        ("checkpoint", "A", 33),
        ("exec", "B"),
        ("checkpoint", "B", 67),
        ("exec", "C"),
        ("checkpoint", "C", 100),
        ("retire", job_id),
    ]
    assert await store.list_open("project-1") == []


@pytest.mark.asyncio
async def test_executor_sees_position_and_results_reach_callback(registry: TaskRegistry) -> None:
    seen: list[tuple[str, int, int]] = []
    done: list[tuple[str, Any]] = []

    async def execute(ctx: ItemContext) -> int:
        seen.append((ctx.item_id, ctx.index, ctx.total))
        return ctx.index * 10

    async def on_done(ctx: ItemContext, result: Any) -> None:
        done.append((ctx.item_id, result))

    job_id = await registry.start_batch_task(
        BatchTaskDescriptor("portrait-batch", "p", _items("x", "y"), execute, on_item_done=on_done)
    )
    await registry.wait(job_id)

    assert seen == [("x", 1, 2), ("y", 2, 2)]
    assert done == [("x", 10), ("y", 20)]


@pytest.mark.asyncio
async def test_progress_events_never_decrease(store, bus: EventBus, registry: TaskRegistry) -> None:
    progress: list[int] = []
    current: list[str] = []

    def on_progress(e: TaskProgress) -> None:
        progress.append(e.progress)
        if e.current_item:
            current.append(e.current_item)

    bus.subscribe(TaskProgress, on_progress)

    async def execute(ctx: ItemContext) -> None:
        return None

    job_id = await registry.start_batch_task(
        BatchTaskDescriptor("costume-batch", "p", _items("1", "2", "3", "4"), execute)
    )
    await registry.wait(job_id)

    assert progress == sorted(progress)
    assert progress[-1] == 100
    assert current[0] == "Role 1 (1/4)"
    assert "Role 4 (4/4)" in current


@pytest.mark.asyncio
async def test_retire_is_the_last_store_call(store, registry: TaskRegistry) -> None:
    async def execute(ctx: ItemContext) -> None:
        await asyncio.sleep(0)

    job_id = await registry.start_batch_task(
        BatchTaskDescriptor("spec-fill-batch", "p", _items("a", "b"), execute)
    )
    await registry.wait(job_id)

    ops = store.ops()
    assert ops.count("retire") == 1
    assert ops[-1] == "retire"


@pytest.mark.asyncio
async def test_snapshot_accessor_is_read_for_every_item(registry: TaskRegistry) -> None:
    cell: SnapshotCell[dict[str, str]] = SnapshotCell({})
    seen: list[dict[str, str]] = []

    async def execute(ctx: ItemContext) -> str:
        seen.append(dict(ctx.snapshot))
        return ctx.item_id

    def on_done(ctx: ItemContext, result: str) -> None:
        cell.update(lambda s: {**s, result: "filled"})

    job_id = await registry.start_batch_task(
        BatchTaskDescriptor(
            "spec-fill-batch",
            "p",
            _items("A", "B", "C"),
            execute,
            on_item_done=on_done,
            snapshot=cell.get,
        )
    )
    await registry.wait(job_id)

    assert seen == [{}, {"A": "filled"}, {"A": "filled", "B": "filled"}]


@pytest.mark.asyncio
async def test_events_carry_the_job_identity(bus: EventBus, registry: TaskRegistry) -> None:
    events: list[TaskEvent] = []
    bus.subscribe(TaskEvent, events.append)

    async def execute(ctx: ItemContext) -> None:
        return None

    job_id = await registry.start_batch_task(
        BatchTaskDescriptor("portrait-batch", "project-9", _items("r1"), execute)
    )
    await registry.wait(job_id)

    names = [type(e).__name__ for e in events]
    assert names[0] == "TaskStarted"
    assert names[-1] == "TaskCompleted"
    assert "TaskItemDone" in names
    assert {(e.job_id, e.job_type, e.scope) for e in events} == {
        (job_id, "portrait-batch", "project-9")
    }
