from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from batchops.core.errors import CancelledError, ItemExecutionError
from batchops.core.events import (
    EventBus,
    TaskCancelled,
    TaskCheckpointDropped,
    TaskCompleted,
    TaskFailed,
    TaskItemDone,
    TaskProgress,
    TaskStarted,
)
from batchops.core.jobs.job_store import JobStore
from batchops.core.jobs.models import Item, RunningJobHandle, compute_progress
from batchops.core.observability.timing import time_block

logger = logging.getLogger(__name__)


class CancelToken:
    """Cooperative cancellation token for batch tasks.

    Executors that make nested calls should pass the same token down.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._evt: asyncio.Event | None = None

    def cancel(self) -> None:
        self._cancelled = True
        if self._evt is not None:
            self._evt.set()

    def is_cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise CancelledError("Task cancelled")

    async def wait(self) -> None:
        """Block until cancel() is called; executors can race this against their request."""
        if self._evt is None:
            self._evt = asyncio.Event()
            if self._cancelled:
                self._evt.set()
        await self._evt.wait()


@dataclass(frozen=True, slots=True)
class ItemContext:
    """Everything an executor gets for one item.

    ``snapshot`` is read from the descriptor's accessor right before the call.
    """

    job_id: str
    job_type: str
    scope: str
    item: Item
    index: int  # 1-based position among all items of the job
    total: int
    cancel_token: CancelToken
    snapshot: Any = None

    @property
    def item_id(self) -> str:
        return self.item.id


Executor = Callable[[ItemContext], Awaitable[Any]]
ItemDoneFn = Callable[[ItemContext, Any], Any]


@dataclass(slots=True)
class BatchTaskDescriptor:
    job_type: str
    scope: str
    items: list[Item]
    executor: Executor
    on_item_done: ItemDoneFn | None = None
    label: str = ""
    estimated_ms_per_item: int | None = None  # None: the configured estimate for job_type
    snapshot: Callable[[], Any] | None = None
    persist: bool = True
    completed_item_ids: list[str] = field(default_factory=list)

    @property
    def item_ids(self) -> list[str]:
        return [i.id for i in self.items]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class BatchJobRunner:
    """Runs one job's remaining items strictly in order.

    The checkpoint for item N is awaited before item N+1 starts. The first
    executor failure stops the run; persistence failures are logged and skipped.
    """

    def __init__(
        self,
        store: JobStore,
        event_bus: EventBus,
        handle: RunningJobHandle,
        descriptor: BatchTaskDescriptor,
    ) -> None:
        self._store = store
        self._bus = event_bus
        self._handle = handle
        self._descriptor = descriptor
        self._error: ItemExecutionError | None = None
        already = set(descriptor.completed_item_ids)
        self._completed: list[str] = [i for i in descriptor.item_ids if i in already]

    @property
    def handle(self) -> RunningJobHandle:
        return self._handle

    @property
    def error(self) -> ItemExecutionError | None:
        return self._error

    @property
    def completed_item_ids(self) -> list[str]:
        return list(self._completed)

    def _log_extra(self, **kw: Any) -> dict[str, Any]:
        h = self._handle
        return {"job_id": h.job_id, "job_type": h.job_type, "scope": h.scope, **kw}

    def _event_base(self) -> dict[str, Any]:
        h = self._handle
        return {"job_id": h.job_id, "job_type": h.job_type, "scope": h.scope}

    def _remaining(self) -> list[Item]:
        done = set(self._completed)
        return [i for i in self._descriptor.items if i.id not in done]

    def _context(self, item: Item) -> ItemContext:
        d = self._descriptor
        return ItemContext(
            job_id=self._handle.job_id,
            job_type=d.job_type,
            scope=d.scope,
            item=item,
            index=d.item_ids.index(item.id) + 1,
            total=self._handle.total,
            cancel_token=self._handle.cancel_token,
            snapshot=d.snapshot() if d.snapshot is not None else None,
        )

    def _publish_progress(self) -> None:
        h = self._handle
        self._bus.publish(
            TaskProgress(
                **self._event_base(),
                done=h.done,
                total=h.total,
                progress=h.progress,
                current_item=h.current_item,
            )
        )

    async def _persist(
        self, operation: str, call: Callable[[], Awaitable[None]], item_id: str | None = None
    ) -> bool:
        if not self._handle.persisted:
            return True
        try:
            await call()
            return True
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "Job store %s failed; item may run again on resume",
                operation,
                exc_info=True,
                extra=self._log_extra(item_id=item_id),
            )
            self._bus.publish(
                TaskCheckpointDropped(
                    **self._event_base(), operation=operation, error=str(e), item_id=item_id
                )
            )
            return False

    def _finish(self, status: str, error: str | None = None) -> None:
        h = self._handle
        h.status = status
        h.error = error
        h.current_item = ""
        h.finished_at = time.time()
        if status == "completed":
            h.progress = 100
            h.done = h.total
            self._bus.publish(TaskCompleted(**self._event_base()))
        elif status == "failed":
            item_id = self._error.item_id if self._error is not None else None
            self._bus.publish(TaskFailed(**self._event_base(), error=error or "", item_id=item_id))
        else:
            self._bus.publish(TaskCancelled(**self._event_base()))

    async def run(self) -> str:
        h = self._handle
        token = h.cancel_token
        remaining = self._remaining()
        h.done = len(self._completed)
        h.progress = compute_progress(h.done, h.total)
        self._bus.publish(TaskStarted(**self._event_base(), label=h.label, total=h.total, done=h.done))
        logger.info(
            "Batch task started: %d of %d items remaining",
            len(remaining),
            h.total,
            extra=self._log_extra(),
        )

        if not remaining:
            await self._persist("retire", lambda: self._store.retire(h.job_id))
            self._finish("completed")
            return h.status

        for item in remaining:
            if token.is_cancelled():
                logger.info("Batch task cancelled before next item", extra=self._log_extra())
                self._finish("cancelled")
                return h.status

            h.current_item = f"{item.display} ({h.done + 1}/{h.total})"
            self._publish_progress()

            try:
                with time_block(f"item {item.id}", logger=logger, extra=self._log_extra(item_id=item.id)):
                    result = await self._descriptor.executor(self._context(item))
            except asyncio.CancelledError:
                self._finish("cancelled")
                raise
            except CancelledError:
                if token.is_cancelled():
                    self._finish("cancelled")
                    return h.status
                self._fail(item, CancelledError("Executor cancelled without a cancel request"))
                return h.status
            except Exception as e:  # noqa: BLE001
                self._fail(item, e)
                return h.status

            if self._descriptor.on_item_done is not None:
                try:
                    await _maybe_await(self._descriptor.on_item_done(self._context(item), result))
                except Exception:
                    logger.exception("Item completion callback failed", extra=self._log_extra(item_id=item.id))

            self._completed.append(item.id)
            h.done = len(self._completed)
            h.progress = max(h.progress, compute_progress(h.done, h.total))
            self._bus.publish(TaskItemDone(**self._event_base(), item_id=item.id, result=result))
            self._publish_progress()
            await self._persist(
                "checkpoint",
                lambda: self._store.checkpoint(h.job_id, item.id, h.progress),
                item_id=item.id,
            )

        await self._persist("retire", lambda: self._store.retire(h.job_id))
        self._finish("completed")
        logger.info("Batch task completed", extra=self._log_extra())
        return h.status

    def _fail(self, item: Item, exc: Exception) -> None:
        self._error = ItemExecutionError(f"Item {item.display} failed", cause=exc, item_id=item.id)
        logger.error(
            "Batch task stopped at failed item",
            exc_info=exc,
            extra=self._log_extra(item_id=item.id),
        )
        self._finish("failed", str(exc) or type(exc).__name__)
