from __future__ import annotations

import json
import logging
import os
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from batchops.core.errors import JobStoreError, ValidationError
from batchops.core.jobs.models import Job

logger = logging.getLogger(__name__)


class JobStore(Protocol):
    async def create(self, scope: str, job_type: str, item_ids: Sequence[str]) -> str:
        """Persist a new open job and return its id."""

    async def checkpoint(self, job_id: str, completed_item_id: str, progress_hint: int) -> None:
        """Union one completed item into the job; safe to repeat."""

    async def retire(self, job_id: str) -> None:
        """Close the job so it is no longer listed as open."""

    async def list_open(self, scope: str) -> list[Job]:
        """Open jobs of ``scope`` in creation order."""


def _copy_job(job: Job) -> Job:
    return Job(
        id=job.id,
        scope=job.scope,
        type=job.type,
        item_ids=list(job.item_ids),
        completed_item_ids=list(job.completed_item_ids),
        progress_hint=job.progress_hint,
    )


class MemoryJobStore:
    """Process-local job store.

    Mirrors the server rules: creating a job supersedes any open job with the
    same (scope, type); checkpoints for unknown jobs or items are ignored.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}

    def _new_id(self) -> str:
        return uuid.uuid4().hex

    def _record(self, entry: dict[str, Any]) -> None:
        """Durability hook; entries are applied in memory only after this returns."""

    def _apply_created(self, job: Job) -> None:
        superseded = [
            j.id for j in self._jobs.values() if j.scope == job.scope and j.type == job.type
        ]
        for job_id in superseded:
            self._jobs.pop(job_id, None)
        self._jobs[job.id] = job

    def _apply_checkpoint(self, job_id: str, item_id: str, progress_hint: int | None) -> None:
        job = self._jobs.get(job_id)
        if job is None:
            return
        job.mark_completed(item_id)
        if progress_hint is not None:
            job.progress_hint = max(0, min(100, int(progress_hint)))

    def _apply_retired(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)

    async def create(self, scope: str, job_type: str, item_ids: Sequence[str]) -> str:
        job = Job(id=self._new_id(), scope=scope, type=job_type, item_ids=list(item_ids))
        if not job.item_ids:
            raise ValidationError("A job needs at least one item")
        self._record({"op": "created", "job": job.to_payload()})
        self._apply_created(job)
        return job.id

    async def checkpoint(self, job_id: str, completed_item_id: str, progress_hint: int) -> None:
        if job_id not in self._jobs:
            logger.debug("Checkpoint for unknown job ignored", extra={"job_id": job_id})
            return
        self._record(
            {
                "op": "checkpoint",
                "job_id": job_id,
                "item_id": completed_item_id,
                "progress": int(progress_hint),
            }
        )
        self._apply_checkpoint(job_id, completed_item_id, progress_hint)

    async def retire(self, job_id: str) -> None:
        if job_id not in self._jobs:
            return
        self._record({"op": "retired", "job_id": job_id})
        self._apply_retired(job_id)

    async def list_open(self, scope: str) -> list[Job]:
        return [_copy_job(j) for j in self._jobs.values() if j.scope == scope]

    def get(self, job_id: str) -> Job | None:
        job = self._jobs.get(job_id)
        return None if job is None else _copy_job(job)


class JsonlJobStore(MemoryJobStore):
    """Append-only JSONL job store for local/offline use.

    One JSON object per line (created, checkpoint or retired). Malformed lines are
    skipped on load. Once the file grows past ``max_bytes`` the next write first
    rewrites it to just the open jobs.

    File IO is synchronous and runs on the event loop thread: an append is one
    short line, and a compaction is bounded by the open jobs, not the history.
    """

    def __init__(self, path: Path, *, max_bytes: int = 2 * 1024 * 1024) -> None:
        super().__init__()
        self._path = path
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._max_bytes = int(max_bytes)
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            with self._path.open("r", encoding="utf-8") as f:
                lines = f.readlines()
        except OSError:
            logger.warning("Could not read job store %s", self._path, exc_info=True)
            return
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except ValueError:
                continue
            if isinstance(entry, dict):
                self._replay(entry)

    def _replay(self, entry: dict[str, Any]) -> None:
        op = entry.get("op")
        if op == "created":
            raw = entry.get("job")
            job = Job.from_payload(raw) if isinstance(raw, dict) else None
            if job is not None:
                self._apply_created(job)
        elif op == "checkpoint":
            job_id = entry.get("job_id")
            item_id = entry.get("item_id")
            if isinstance(job_id, str) and isinstance(item_id, str):
                progress = entry.get("progress")
                self._apply_checkpoint(
                    job_id, item_id, progress if isinstance(progress, int) else None
                )
        elif op == "retired":
            job_id = entry.get("job_id")
            if isinstance(job_id, str):
                self._apply_retired(job_id)

    def _record(self, entry: dict[str, Any]) -> None:
        entry = {**entry, "ts": datetime.now(timezone.utc).isoformat()}  # noqa: UP017
        try:
            self._compact_if_needed()
            with self._path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False) + "\n")
        except OSError as e:
            raise JobStoreError(f"Could not write job store {self._path}", cause=e) from e

    def _compact_if_needed(self) -> None:
        if self._max_bytes <= 0 or not self._path.exists():
            return
        if self._path.stat().st_size <= self._max_bytes:
            return
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        ts = datetime.now(timezone.utc).isoformat()  # noqa: UP017
        with tmp.open("w", encoding="utf-8") as f:
            for job in self._jobs.values():
                f.write(json.dumps({"op": "created", "job": job.to_payload(), "ts": ts}) + "\n")
        os.replace(tmp, self._path)
        logger.info("Compacted job store %s to %d open jobs", self._path, len(self._jobs))

    def clear(self) -> None:
        self._jobs.clear()
        try:
            self._path.unlink(missing_ok=True)
        except OSError as e:
            raise JobStoreError(f"Could not clear job store {self._path}", cause=e) from e
