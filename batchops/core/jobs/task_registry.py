from __future__ import annotations

import asyncio
import inspect
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from batchops.config import DEFAULT_ESTIMATED_MS_PER_ITEM, DEFAULT_MAX_FINISHED_TASKS
from batchops.core.errors import ValidationError
from batchops.core.events import (
    EventBus,
    Subscription,
    TaskCancelled,
    TaskCompleted,
    TaskEvent,
    TaskFailed,
    TaskItemDone,
    TaskStarted,
)
from batchops.core.jobs.job_runner import BatchJobRunner, BatchTaskDescriptor, CancelToken
from batchops.core.jobs.job_store import JobStore
from batchops.core.jobs.models import (
    EndListener,
    Item,
    ItemListener,
    Job,
    RunningJobHandle,
    compute_progress,
)

logger = logging.getLogger(__name__)

TaskKey = tuple[str, "str | None"]


class TaskRegistry:
    """Directory of batch and single tasks for the lifetime of the process.

    At most one batch runner per (type, scope) is running at any time. Terminal
    handles stay listed (for progress panels) until dismissed or evicted.
    """

    def __init__(
        self,
        store: JobStore,
        event_bus: EventBus,
        *,
        max_finished: int = DEFAULT_MAX_FINISHED_TASKS,
        label_for: Callable[[str], str] | None = None,
        estimate_for: Callable[[str], int] | None = None,
    ) -> None:
        self._store = store
        self._bus = event_bus
        self._max_finished = max_finished
        self._label_for = label_for or (lambda job_type: job_type)
        self._estimate_for = estimate_for or (lambda job_type: DEFAULT_ESTIMATED_MS_PER_ITEM)
        self._handles: dict[str, RunningJobHandle] = {}
        self._active: dict[TaskKey, str] = {}
        self._pending: dict[TaskKey, asyncio.Future[str | None]] = {}
        self._runs: dict[str, asyncio.Task[str]] = {}
        self._background: set[asyncio.Task[Any]] = set()
        self._subscriptions: list[Subscription] = []
        self._subscribe_handlers()

    def _subscribe_handlers(self) -> None:
        self._subscriptions.extend(
            [
                self._bus.subscribe(TaskItemDone, self._on_item_done),
                self._bus.subscribe(TaskCompleted, self._on_terminal),
                self._bus.subscribe(TaskFailed, self._on_terminal),
                self._bus.subscribe(TaskCancelled, self._on_terminal),
            ]
        )

    # -- queries -------------------------------------------------------------

    def is_running(self, job_type: str, scope: str | None = None) -> bool:
        """True while a task of ``job_type`` runs for ``scope`` (any scope when None)."""
        for key in self._pending:
            if key[0] == job_type and (scope is None or key[1] == scope):
                return True
        return any(
            h.status == "running" and h.job_type == job_type and (scope is None or h.scope == scope)
            for h in self._handles.values()
        )

    def get(self, job_id: str) -> RunningJobHandle | None:
        h = self._handles.get(job_id)
        return None if h is None else h.snapshot()

    def list(self) -> list[RunningJobHandle]:
        handles = sorted(self._handles.values(), key=lambda h: h.started_at, reverse=True)
        return [h.snapshot() for h in handles]

    def running(self) -> list[RunningJobHandle]:
        return [h for h in self.list() if h.status == "running"]

    async def wait(self, job_id: str) -> RunningJobHandle | None:
        """Wait for a batch runner to end and return the final handle."""
        task = self._runs.get(job_id)
        if task is not None:
            await asyncio.wait({task})
        return self.get(job_id)

    # -- batch tasks ---------------------------------------------------------

    async def start_batch_task(self, descriptor: BatchTaskDescriptor) -> str:
        """Start a batch for (type, scope), or return the id of the one already running."""
        if not descriptor.items:
            raise ValidationError("A batch task needs at least one item")
        if descriptor.completed_item_ids:
            raise ValidationError("Fresh batch tasks cannot carry completed items")

        key: TaskKey = (descriptor.job_type, descriptor.scope)
        existing = self._active.get(key)
        if existing is not None:
            logger.info(
                "Batch already running; reusing it",
                extra={"job_id": existing, "job_type": key[0], "scope": key[1]},
            )
            return existing
        pending = self._pending.get(key)
        if pending is not None:
            job_id = await asyncio.shield(pending)
            if job_id is None:
                # The starting caller was interrupted before registering; start afresh.
                return await self.start_batch_task(descriptor)
            return job_id

        created: asyncio.Future[str | None] = asyncio.get_running_loop().create_future()
        self._pending[key] = created
        try:
            job_id, persisted = await self._create_record(descriptor)
            handle = self._register(job_id, descriptor, persisted=persisted)
            self._launch(handle, descriptor)
            created.set_result(job_id)
            return job_id
        except BaseException:
            created.set_result(None)
            raise
        finally:
            self._pending.pop(key, None)

    def resume_batch_task(self, job: Job, descriptor: BatchTaskDescriptor) -> str | None:
        """Attach a runner to an existing open job; None when its key is already tracked."""
        key: TaskKey = (job.type, job.scope)
        if key in self._active or key in self._pending:
            return None
        descriptor.job_type = job.type
        descriptor.scope = job.scope
        descriptor.completed_item_ids = list(job.completed_item_ids)
        handle = self._register(job.id, descriptor, persisted=True)
        self._launch(handle, descriptor)
        return job.id

    async def _create_record(self, descriptor: BatchTaskDescriptor) -> tuple[str, bool]:
        if descriptor.persist:
            try:
                job_id = await self._store.create(
                    descriptor.scope, descriptor.job_type, descriptor.item_ids
                )
                return job_id, True
            except Exception:  # noqa: BLE001
                logger.warning(
                    "Job store create failed; running without persistence",
                    exc_info=True,
                    extra={"job_type": descriptor.job_type, "scope": descriptor.scope},
                )
        return f"local-{uuid.uuid4().hex}", False

    def _register(
        self, job_id: str, descriptor: BatchTaskDescriptor, *, persisted: bool
    ) -> RunningJobHandle:
        already = set(descriptor.completed_item_ids)
        done = sum(1 for i in descriptor.item_ids if i in already)
        total = len(descriptor.items)
        handle = RunningJobHandle(
            job_id=job_id,
            job_type=descriptor.job_type,
            scope=descriptor.scope,
            label=descriptor.label or self._label_for(descriptor.job_type),
            items=list(descriptor.items),
            total=total,
            cancel_token=CancelToken(),
            estimated_ms_per_item=(
                descriptor.estimated_ms_per_item
                if descriptor.estimated_ms_per_item is not None
                else self._estimate_for(descriptor.job_type)
            ),
            done=done,
            progress=compute_progress(done, total),
            persisted=persisted,
        )
        self._handles[job_id] = handle
        self._active[handle.key] = job_id
        self._purge_if_needed()
        return handle

    def _launch(self, handle: RunningJobHandle, descriptor: BatchTaskDescriptor) -> None:
        runner = BatchJobRunner(self._store, self._bus, handle, descriptor)
        task = asyncio.get_running_loop().create_task(
            runner.run(), name=f"batch:{handle.job_type}:{handle.scope}"
        )
        self._runs[handle.job_id] = task

        def _done(t: asyncio.Task[str], job_id: str = handle.job_id) -> None:
            if self._runs.get(job_id) is t:
                self._runs.pop(job_id, None)
            if not t.cancelled() and t.exception() is not None:
                logger.error("Batch runner crashed", exc_info=t.exception(), extra={"job_id": job_id})

        task.add_done_callback(_done)

    # -- single tasks --------------------------------------------------------

    def register_single_task(
        self, job_type: str, label: str, estimated_ms: int = 0, scope: str | None = None
    ) -> str:
        """Track a one-off operation for progress display; nothing is persisted."""
        task_id = f"task-{uuid.uuid4().hex}"
        handle = RunningJobHandle(
            job_id=task_id,
            job_type=job_type,
            scope=scope,
            label=label,
            items=[Item(task_id, label)],
            total=1,
            cancel_token=CancelToken(),
            estimated_ms_per_item=estimated_ms,
            current_item=label,
            persisted=False,
        )
        self._handles[task_id] = handle
        self._purge_if_needed()
        self._bus.publish(
            TaskStarted(job_id=task_id, job_type=job_type, scope=scope, label=label, total=1)
        )
        return task_id

    def complete_single_task(self, task_id: str) -> None:
        h = self._single_running(task_id)
        if h is None:
            return
        h.status = "completed"
        h.progress = 100
        h.done = 1
        h.current_item = ""
        h.finished_at = time.time()
        self._bus.publish(TaskCompleted(job_id=task_id, job_type=h.job_type, scope=h.scope))

    def fail_single_task(self, task_id: str, error: str | None = None) -> None:
        h = self._single_running(task_id)
        if h is None:
            return
        h.status = "failed"
        h.error = error or "Failed"
        h.current_item = ""
        h.finished_at = time.time()
        self._bus.publish(
            TaskFailed(job_id=task_id, job_type=h.job_type, scope=h.scope, error=h.error)
        )

    def _single_running(self, task_id: str) -> RunningJobHandle | None:
        h = self._handles.get(task_id)
        if h is None or h.status != "running" or task_id in self._runs:
            logger.debug("Ignoring update for unknown or finished task", extra={"job_id": task_id})
            return None
        return h

    # -- control -------------------------------------------------------------

    def cancel_task(self, job_id: str) -> bool:
        """Request cooperative cancellation; the job stays resumable at its last checkpoint."""
        h = self._handles.get(job_id)
        if h is None or h.status != "running":
            return False
        h.cancel_token.cancel()
        if job_id not in self._runs:
            h.status = "cancelled"
            h.current_item = ""
            h.finished_at = time.time()
            self._bus.publish(TaskCancelled(job_id=job_id, job_type=h.job_type, scope=h.scope))
        return True

    def dismiss_task(self, job_id: str) -> bool:
        """Drop a finished task from the listing; running tasks must be cancelled first."""
        h = self._handles.get(job_id)
        if h is None or not h.is_terminal:
            return False
        del self._handles[job_id]
        self._release(h)
        h.end_listeners.clear()
        h.item_listeners.clear()
        return True

    def on_task_end(self, job_id: str, listener: EndListener) -> Callable[[], None]:
        """One-shot listener for the terminal status; fires right away if already ended."""
        h = self._handles.get(job_id)
        if h is None:
            return _noop
        if h.is_terminal:
            self._invoke(listener, h.snapshot())
            return _noop
        h.end_listeners.append(listener)
        return _remover(h.end_listeners, listener)

    def chain_on_success(
        self, job_id: str, start_next: Callable[[], Awaitable[Any] | Any]
    ) -> Callable[[], None]:
        """Run ``start_next`` only when ``job_id`` completes; never after failure or cancel."""

        def _listener(handle: RunningJobHandle) -> Any:
            if handle.status != "completed":
                logger.info(
                    "Not starting next phase: previous phase %s",
                    handle.status,
                    extra={"job_id": handle.job_id, "job_type": handle.job_type},
                )
                return None
            return start_next()

        return self.on_task_end(job_id, _listener)

    def subscribe(self, job_id: str, listener: ItemListener) -> Callable[[], None]:
        """Per-item listener ``(item_id, result)`` for a task."""
        h = self._handles.get(job_id)
        if h is None:
            return _noop
        h.item_listeners.append(listener)
        return _remover(h.item_listeners, listener)

    async def aclose(self) -> None:
        """Cancel every runner and detach from the event bus."""
        for h in self._handles.values():
            if h.status == "running":
                h.cancel_token.cancel()
        tasks = list(self._runs.values()) + list(self._background)
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for sub in self._subscriptions:
            self._bus.unsubscribe(sub)
        self._subscriptions.clear()

    # -- event handlers ------------------------------------------------------

    def _on_item_done(self, e: TaskItemDone) -> None:
        h = self._handles.get(e.job_id)
        if h is None:
            return
        for listener in list(h.item_listeners):
            try:
                result = listener(e.item_id, e.result)
            except Exception:
                logger.exception("Item listener failed", extra={"job_id": e.job_id})
                continue
            self._schedule(result)

    def _on_terminal(self, e: TaskEvent) -> None:
        h = self._handles.get(e.job_id)
        if h is None:
            return
        self._release(h)
        listeners, h.end_listeners = h.end_listeners, []
        snapshot = h.snapshot()
        for listener in listeners:
            self._invoke(listener, snapshot)
        self._purge_if_needed()

    # -- internals -----------------------------------------------------------

    def _release(self, h: RunningJobHandle) -> None:
        if self._active.get(h.key) == h.job_id:
            del self._active[h.key]

    def _invoke(self, listener: EndListener, snapshot: RunningJobHandle) -> None:
        try:
            result = listener(snapshot)
        except Exception:
            logger.exception("Task end listener failed", extra={"job_id": snapshot.job_id})
            return
        self._schedule(result)

    def _schedule(self, result: Any) -> None:
        if not inspect.isawaitable(result):
            return
        task = asyncio.ensure_future(result)
        self._background.add(task)
        task.add_done_callback(self._background_done)

    def _background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Task listener coroutine failed", exc_info=task.exception())

    def _purge_if_needed(self) -> None:
        if self._max_finished <= 0:
            return
        finished = [h for h in self._handles.values() if h.is_terminal]
        overflow = len(finished) - self._max_finished
        if overflow <= 0:
            return
        for h in sorted(finished, key=lambda r: r.finished_at or r.started_at)[:overflow]:
            self._handles.pop(h.job_id, None)


def _noop() -> None:
    return None


def _remover(listeners: list[Any], listener: Any) -> Callable[[], None]:
    def _remove() -> None:
        try:
            listeners.remove(listener)
        except ValueError:
            return

    return _remove
