from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from batchops.core.jobs import BatchTaskDescriptor, TaskRegistry

logger = logging.getLogger(__name__)

DescriptorBuilder = Callable[[str, list[str]], BatchTaskDescriptor]


@dataclass(frozen=True, slots=True)
class AutoGenerateRequest:
    scope: str
    selected_ids: list[str]


@dataclass(frozen=True, slots=True)
class AutoGenerateResult:
    first_job_id: str | None
    chained: bool


class AutoGenerateSelectedUseCase:
    """
    Two-phase pipeline over a selection of entities.

    Phase 1 (e.g. spec fill) runs first; phase 2 (e.g. portraits) starts for the
    same selection only when phase 1 completes. A failed or cancelled phase 1
    never starts phase 2. When the builder leaves phase 1 with nothing to do,
    phase 2 starts right away.
    """

    def __init__(
        self,
        registry: TaskRegistry,
        build_first: DescriptorBuilder,
        build_second: DescriptorBuilder,
    ) -> None:
        self._registry = registry
        self._build_first = build_first
        self._build_second = build_second

    async def execute(self, request: AutoGenerateRequest) -> AutoGenerateResult:
        if not request.selected_ids:
            return AutoGenerateResult(first_job_id=None, chained=False)

        first = self._build_first(request.scope, list(request.selected_ids))
        if not first.items:
            job_id = await self._start_second(request)
            return AutoGenerateResult(first_job_id=job_id, chained=False)

        job_id = await self._registry.start_batch_task(first)
        self._registry.chain_on_success(job_id, lambda: self._start_second(request))
        return AutoGenerateResult(first_job_id=job_id, chained=True)

    async def _start_second(self, request: AutoGenerateRequest) -> str | None:
        second = self._build_second(request.scope, list(request.selected_ids))
        if not second.items:
            logger.info("Second phase has no items", extra={"scope": request.scope})
            return None
        return await self._registry.start_batch_task(second)
