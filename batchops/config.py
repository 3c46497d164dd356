"""Settings and constants for the batch orchestrator.

Settings are read from an optional YAML file and normalized through dataclass
models:

- missing keys are filled with defaults
- basic type coercion is applied (e.g. "30" -> 30)
- unknown keys are ignored (forward compatibility)

Environment variables override the file: BATCHOPS_STORE_URL,
BATCHOPS_STATE_DIR, BATCHOPS_REQUEST_TIMEOUT.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Job kinds known to this version
SPEC_FILL_BATCH = "spec-fill-batch"
PORTRAIT_BATCH = "portrait-batch"
COSTUME_BATCH = "costume-batch"

DEFAULT_STORE_API_PATH = "/api/bulk-job"
DEFAULT_STORE_FILENAME = "jobs.jsonl"
DEFAULT_REQUEST_TIMEOUT_SEC = 15.0
DEFAULT_MAX_FINISHED_TASKS = 50
DEFAULT_ESTIMATED_MS_PER_ITEM = 5000

DEFAULT_TASK_TYPES: dict[str, dict[str, Any]] = {
    SPEC_FILL_BATCH: {"label": "Filling Character Specs", "estimated_ms_per_item": 5000},
    PORTRAIT_BATCH: {"label": "Generating Portraits", "estimated_ms_per_item": 15000},
    COSTUME_BATCH: {"label": "Generating Costumes", "estimated_ms_per_item": 15000},
}


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        v = value.strip().lower()
        if v in {"true", "1", "yes", "y", "on"}:
            return True
        if v in {"false", "0", "no", "n", "off"}:
            return False
    if isinstance(value, (int, float)):
        return bool(value)
    return default


def _as_int(value: Any, default: int) -> int:
    try:
        if isinstance(value, bool):
            return default
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: float) -> float:
    try:
        if isinstance(value, bool):
            return default
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_str(value: Any, default: str) -> str:
    if value is None:
        return default
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        return str(value)
    return default


def _as_opt_str(value: Any) -> str | None:
    s = _as_str(value, "").strip()
    return s or None


@dataclass(slots=True)
class TaskTypeConfig:
    label: str
    estimated_ms_per_item: int = DEFAULT_ESTIMATED_MS_PER_ITEM

    @classmethod
    def from_dict(cls, job_type: str, d: Mapping[str, Any] | None) -> "TaskTypeConfig":
        d = d or {}
        return cls(
            label=_as_str(d.get("label"), job_type),
            estimated_ms_per_item=max(
                0, _as_int(d.get("estimated_ms_per_item"), DEFAULT_ESTIMATED_MS_PER_ITEM)
            ),
        )


def _default_task_types() -> dict[str, TaskTypeConfig]:
    return {k: TaskTypeConfig.from_dict(k, v) for k, v in DEFAULT_TASK_TYPES.items()}


@dataclass(slots=True)
class Settings:
    store_url: str | None = None
    store_api_path: str = DEFAULT_STORE_API_PATH
    store_path: Path | None = None
    request_timeout_sec: float = DEFAULT_REQUEST_TIMEOUT_SEC
    state_dir: Path | None = None
    log_level: str = "INFO"
    json_logs: bool = False
    log_to_file: bool = True
    max_finished_tasks: int = DEFAULT_MAX_FINISHED_TASKS
    task_types: dict[str, TaskTypeConfig] = field(default_factory=_default_task_types)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any] | None) -> "Settings":
        d = d or {}
        store_path = _as_opt_str(d.get("store_path"))
        state_dir = _as_opt_str(d.get("state_dir"))
        task_types = _default_task_types()
        raw_types = d.get("task_types")
        if isinstance(raw_types, Mapping):
            for key, value in raw_types.items():
                job_type = str(key)
                merged = dict(DEFAULT_TASK_TYPES.get(job_type, {}))
                if isinstance(value, Mapping):
                    merged.update(value)
                task_types[job_type] = TaskTypeConfig.from_dict(job_type, merged)
        return cls(
            store_url=_as_opt_str(d.get("store_url")),
            store_api_path=_as_str(d.get("store_api_path"), DEFAULT_STORE_API_PATH),
            store_path=Path(store_path).expanduser() if store_path else None,
            request_timeout_sec=max(
                0.1, _as_float(d.get("request_timeout_sec"), DEFAULT_REQUEST_TIMEOUT_SEC)
            ),
            state_dir=Path(state_dir).expanduser() if state_dir else None,
            log_level=_as_str(d.get("log_level"), "INFO").upper(),
            json_logs=_as_bool(d.get("json_logs"), False),
            log_to_file=_as_bool(d.get("log_to_file"), True),
            max_finished_tasks=max(
                0, _as_int(d.get("max_finished_tasks"), DEFAULT_MAX_FINISHED_TASKS)
            ),
            task_types=task_types,
        )

    def label_for(self, job_type: str) -> str:
        cfg = self.task_types.get(job_type)
        return cfg.label if cfg is not None else job_type

    def estimated_ms_for(self, job_type: str) -> int:
        cfg = self.task_types.get(job_type)
        return cfg.estimated_ms_per_item if cfg is not None else DEFAULT_ESTIMATED_MS_PER_ITEM


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError):
        logger.warning("Could not read settings file %s; using defaults", path, exc_info=True)
        return {}
    if not isinstance(data, dict):
        logger.warning("Settings file %s is not a mapping; using defaults", path)
        return {}
    return data


def load_settings(
    path: Path | None = None, *, env: Mapping[str, str] | None = None
) -> Settings:
    """Load settings from YAML (if given and present), then apply env overrides."""
    env = os.environ if env is None else env
    raw: dict[str, Any] = {}
    if path is not None and path.exists():
        raw = _read_yaml(path)

    if env.get("BATCHOPS_STORE_URL"):
        raw["store_url"] = env["BATCHOPS_STORE_URL"]
    if env.get("BATCHOPS_STATE_DIR"):
        raw["state_dir"] = env["BATCHOPS_STATE_DIR"]
    if env.get("BATCHOPS_REQUEST_TIMEOUT"):
        raw["request_timeout_sec"] = env["BATCHOPS_REQUEST_TIMEOUT"]
    return Settings.from_dict(raw)
