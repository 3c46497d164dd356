from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from batchops.core.jobs.job_runner import BatchTaskDescriptor
from batchops.core.jobs.job_store import JobStore
from batchops.core.jobs.models import Job
from batchops.core.jobs.task_registry import TaskRegistry

logger = logging.getLogger(__name__)

DescriptorFactory = Callable[
    [str, list[str]], "BatchTaskDescriptor | Awaitable[BatchTaskDescriptor]"
]


class JobTypeCatalog:
    """Job types this version knows how to resume.

    A factory receives ``(scope, item_ids)`` and returns a descriptor carrying the
    executor, completion callback and item labels for the current entity state.
    """

    def __init__(self) -> None:
        self._factories: dict[str, DescriptorFactory] = {}

    def register(self, job_type: str, factory: DescriptorFactory) -> None:
        self._factories[job_type] = factory

    def get(self, job_type: str) -> DescriptorFactory | None:
        return self._factories.get(job_type)

    def __contains__(self, job_type: object) -> bool:
        return job_type in self._factories

    def types(self) -> list[str]:
        return sorted(self._factories)


@dataclass(slots=True)
class ResumeReport:
    resumed: list[str] = field(default_factory=list)
    retired: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


class ResumeSupervisor:
    """Reattaches runners to open jobs of one scope; one pass per activation."""

    def __init__(
        self,
        store: JobStore,
        registry: TaskRegistry,
        catalog: JobTypeCatalog,
        scope: str,
    ) -> None:
        self._store = store
        self._registry = registry
        self._catalog = catalog
        self._scope = scope
        self._ran = False

    @property
    def scope(self) -> str:
        return self._scope

    async def run(self) -> ResumeReport:
        report = ResumeReport()
        if self._ran:
            return report
        self._ran = True

        try:
            jobs = await self._store.list_open(self._scope)
        except Exception:  # noqa: BLE001
            logger.warning("Listing open jobs failed", exc_info=True, extra={"scope": self._scope})
            return report

        for job in jobs:
            await self._reconcile(job, report)

        logger.info(
            "Resume pass finished: %d resumed, %d retired, %d skipped",
            len(report.resumed),
            len(report.retired),
            len(report.skipped),
            extra={"scope": self._scope},
        )
        return report

    async def _reconcile(self, job: Job, report: ResumeReport) -> None:
        remaining = job.remaining_item_ids()
        if not remaining:
            # Either finished but never retired, or the persisted item list was unreadable.
            await self._retire(job, report, "no remaining items")
            return

        factory = self._catalog.get(job.type)
        if factory is None:
            await self._retire(job, report, "unsupported job type")
            return

        if self._registry.is_running(job.type, job.scope):
            report.skipped.append(job.id)
            return

        try:
            built = factory(job.scope, list(job.item_ids))
            descriptor = await built if inspect.isawaitable(built) else built
        except Exception:  # noqa: BLE001
            logger.exception(
                "Could not rebuild task for open job",
                extra={"job_id": job.id, "job_type": job.type, "scope": job.scope},
            )
            report.skipped.append(job.id)
            return

        job_id = self._registry.resume_batch_task(job, descriptor)
        if job_id is None:
            report.skipped.append(job.id)
            return
        logger.info(
            "Resumed job with %d of %d items remaining",
            len(remaining),
            len(job.item_ids),
            extra={"job_id": job.id, "job_type": job.type, "scope": job.scope},
        )
        report.resumed.append(job_id)

    async def _retire(self, job: Job, report: ResumeReport, reason: str) -> None:
        try:
            await self._store.retire(job.id)
        except Exception:  # noqa: BLE001
            logger.warning(
                "Retiring job failed (%s)",
                reason,
                exc_info=True,
                extra={"job_id": job.id, "job_type": job.type},
            )
            return
        logger.info("Retired job: %s", reason, extra={"job_id": job.id, "job_type": job.type})
        report.retired.append(job.id)
