"""Bulk AI-job orchestration.

Runs per-item AI operations sequentially on the asyncio loop, checkpoints each
finished item to a job store, and resumes open jobs on workspace activation.
"""

from .http_job_store import HttpJobStore
from .job_runner import BatchJobRunner, BatchTaskDescriptor, CancelToken, ItemContext
from .job_store import JobStore, JsonlJobStore, MemoryJobStore
from .models import Item, Job, RunningJobHandle, composite_key, split_composite_key
from .resume import JobTypeCatalog, ResumeReport, ResumeSupervisor
from .snapshot import SnapshotCell
from .task_registry import TaskRegistry

__all__ = [
    "BatchJobRunner",
    "BatchTaskDescriptor",
    "CancelToken",
    "ItemContext",
    "JobStore",
    "MemoryJobStore",
    "JsonlJobStore",
    "HttpJobStore",
    "Item",
    "Job",
    "RunningJobHandle",
    "composite_key",
    "split_composite_key",
    "JobTypeCatalog",
    "ResumeReport",
    "ResumeSupervisor",
    "SnapshotCell",
    "TaskRegistry",
]
