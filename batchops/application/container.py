"""Composition root / DI container.

Progress surfaces should not build job stores or registries themselves. This
container lives in the application layer and wires up concrete implementations.
One container per workspace session; tests build their own for isolation.
"""

from __future__ import annotations

from pathlib import Path

from batchops.application.use_cases import AutoGenerateSelectedUseCase
from batchops.application.use_cases.auto_generate import DescriptorBuilder
from batchops.config import DEFAULT_STORE_FILENAME, Settings, load_settings
from batchops.core.events import EventBus
from batchops.core.jobs import (
    HttpJobStore,
    JobStore,
    JobTypeCatalog,
    JsonlJobStore,
    ResumeSupervisor,
    TaskRegistry,
)
from batchops.core.observability import setup_logging
from batchops.core.paths import get_app_state_dir


class Container:
    """Resolves orchestration services. Single place to swap implementations if needed."""

    def __init__(self, settings: Settings | None = None, *, settings_path: Path | None = None) -> None:
        self._settings = settings
        self._settings_path = settings_path
        self._event_bus: EventBus | None = None
        self._job_store: JobStore | None = None
        self._task_registry: TaskRegistry | None = None
        self._job_type_catalog: JobTypeCatalog | None = None

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = load_settings(self._settings_path)
        return self._settings

    @property
    def state_dir(self) -> Path:
        return self.settings.state_dir or get_app_state_dir()

    def configure_logging(self) -> None:
        s = self.settings
        setup_logging(
            level=s.log_level,
            json_logs=s.json_logs,
            log_to_file=s.log_to_file,
            state_dir=self.state_dir,
        )

    @property
    def event_bus(self) -> EventBus:
        if self._event_bus is None:
            self._event_bus = EventBus()
        return self._event_bus

    @property
    def job_store(self) -> JobStore:
        """Remote bulk-job API when a store URL is configured, local JSONL file otherwise."""
        if self._job_store is None:
            s = self.settings
            if s.store_url:
                self._job_store = HttpJobStore(
                    s.store_url, api_path=s.store_api_path, timeout_sec=s.request_timeout_sec
                )
            else:
                path = s.store_path or (self.state_dir / "jobs" / DEFAULT_STORE_FILENAME)
                self._job_store = JsonlJobStore(path)
        return self._job_store

    @property
    def task_registry(self) -> TaskRegistry:
        if self._task_registry is None:
            self._task_registry = TaskRegistry(
                self.job_store,
                self.event_bus,
                max_finished=self.settings.max_finished_tasks,
                label_for=self.settings.label_for,
                estimate_for=self.settings.estimated_ms_for,
            )
        return self._task_registry

    @property
    def job_type_catalog(self) -> JobTypeCatalog:
        """Register a descriptor factory per resumable job type here before activation."""
        if self._job_type_catalog is None:
            self._job_type_catalog = JobTypeCatalog()
        return self._job_type_catalog

    def resume_supervisor(self, scope: str) -> ResumeSupervisor:
        """A fresh supervisor per workspace activation."""
        return ResumeSupervisor(self.job_store, self.task_registry, self.job_type_catalog, scope)

    def auto_generate_use_case(
        self, build_first: DescriptorBuilder, build_second: DescriptorBuilder
    ) -> AutoGenerateSelectedUseCase:
        return AutoGenerateSelectedUseCase(self.task_registry, build_first, build_second)

    async def aclose(self) -> None:
        if self._task_registry is not None:
            await self._task_registry.aclose()
            self._task_registry = None
        if isinstance(self._job_store, HttpJobStore):
            await self._job_store.aclose()
        self._job_store = None
