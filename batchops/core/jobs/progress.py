"""Progress helpers shared by every surface that renders task handles."""

from __future__ import annotations

import math
import time
from collections.abc import Iterable

from batchops.core.jobs.models import RunningJobHandle


def eta_ms(handle: RunningJobHandle, *, now: float | None = None) -> int:
    """Estimated milliseconds left for a running task, 0 otherwise.

    Uses the observed average once an item has finished, the per-item estimate before that.
    """
    if handle.status != "running":
        return 0
    remaining = max(0, handle.total - handle.done)
    if handle.done > 0:
        now = time.time() if now is None else now
        elapsed_ms = max(0.0, (now - handle.started_at) * 1000.0)
        return int(elapsed_ms / handle.done * remaining)
    return int(handle.estimated_ms_per_item * handle.total)


def format_eta(ms: int | float) -> str:
    if ms <= 0:
        return ""
    secs = math.ceil(ms / 1000)
    if secs < 60:
        return f"~{secs}s left"
    mins, rem = divmod(secs, 60)
    return f"~{mins}:{rem:02d} left"


def combined_progress(handles: Iterable[RunningJobHandle]) -> int:
    """Mean progress of running tasks (collapsed panel view); 0 when idle."""
    active = [h.progress for h in handles if h.status == "running"]
    if not active:
        return 0
    return int(sum(active) / len(active) + 0.5)
