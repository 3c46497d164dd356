from __future__ import annotations

import asyncio

import pytest

from batchops.application.use_cases import AutoGenerateRequest, AutoGenerateSelectedUseCase
from batchops.config import PORTRAIT_BATCH, SPEC_FILL_BATCH
from batchops.core.jobs import BatchTaskDescriptor, Item, ItemContext, TaskRegistry


async def _drain() -> None:
    for _ in range(20):
        await asyncio.sleep(0)


class _Pipeline:
    def __init__(self, fail_first_on: str | None = None, skip_first: bool = False) -> None:
        self.ran: list[tuple[str, str]] = []
        self.fail_first_on = fail_first_on
        self.skip_first = skip_first

    def _execute(self, job_type: str):
        async def execute(ctx: ItemContext) -> None:
            self.ran.append((job_type, ctx.item_id))
            if job_type == SPEC_FILL_BATCH and ctx.item_id == self.fail_first_on:
                raise RuntimeError("spec fill failed")

        return execute

    def first(self, scope: str, ids: list[str]) -> BatchTaskDescriptor:
        items = [] if self.skip_first else [Item(i) for i in ids]
        return BatchTaskDescriptor(SPEC_FILL_BATCH, scope, items, self._execute(SPEC_FILL_BATCH))

    def second(self, scope: str, ids: list[str]) -> BatchTaskDescriptor:
        return BatchTaskDescriptor(PORTRAIT_BATCH, scope, [Item(i) for i in ids], self._execute(PORTRAIT_BATCH))


async def _settle(registry: TaskRegistry) -> None:
    for _ in range(3):
        await _drain()
        for h in registry.list():
            await registry.wait(h.job_id)


@pytest.mark.asyncio
async def test_second_phase_starts_after_first_completes(registry: TaskRegistry) -> None:
    pipeline = _Pipeline()
    use_case = AutoGenerateSelectedUseCase(registry, pipeline.first, pipeline.second)

    result = await use_case.execute(AutoGenerateRequest("p", ["r1", "r2"]))
    await _settle(registry)

    assert result.chained
    assert pipeline.ran == [
        (SPEC_FILL_BATCH, "r1"),
        (SPEC_FILL_BATCH, "r2"),
        (PORTRAIT_BATCH, "r1"),
        (PORTRAIT_BATCH, "r2"),
    ]


@pytest.mark.asyncio
async def test_failed_first_phase_never_starts_second(store, registry: TaskRegistry) -> None:
    pipeline = _Pipeline(fail_first_on="r1")
    use_case = AutoGenerateSelectedUseCase(registry, pipeline.first, pipeline.second)

    await use_case.execute(AutoGenerateRequest("p", ["r1", "r2"]))
    await _settle(registry)

    assert pipeline.ran == [(SPEC_FILL_BATCH, "r1")]
    assert not any(c[0] == "create" and c[2] == PORTRAIT_BATCH for c in store.calls)


@pytest.mark.asyncio
async def test_empty_first_phase_starts_second_directly(registry: TaskRegistry) -> None:
    pipeline = _Pipeline(skip_first=True)
    use_case = AutoGenerateSelectedUseCase(registry, pipeline.first, pipeline.second)

    result = await use_case.execute(AutoGenerateRequest("p", ["r1"]))
    await _settle(registry)

    assert not result.chained
    assert result.first_job_id is not None
    assert pipeline.ran == [(PORTRAIT_BATCH, "r1")]


@pytest.mark.asyncio
async def test_empty_selection_does_nothing(store, registry: TaskRegistry) -> None:
    pipeline = _Pipeline()
    use_case = AutoGenerateSelectedUseCase(registry, pipeline.first, pipeline.second)

    result = await use_case.execute(AutoGenerateRequest("p", []))

    assert result.first_job_id is None
    assert store.calls == []
