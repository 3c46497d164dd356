"""Root logger setup for batch orchestration.

Console output is human-readable unless JSON is requested; the optional log
file under ``<state_dir>/logs`` is always JSON so job, item and scope ids stay
machine-searchable across sessions.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

from batchops.core.paths import get_app_state_dir

_EXTRA_KEYS = ("event", "job_id", "job_type", "scope", "item_id")
_TRUTHY = {"1", "true", "yes"}
_LOG_FILE_NAME = "batchops.log"
_LOG_FILE_MAX_BYTES = 2 * 1024 * 1024


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: dict[str, object] = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),  # noqa: UP017
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        for key in _EXTRA_KEYS:
            if hasattr(record, key):
                payload[key] = getattr(record, key)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in _TRUTHY


def _console_handler(json_logs: bool) -> logging.Handler:
    handler = logging.StreamHandler(stream=sys.stdout)
    if json_logs:
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
                datefmt="%H:%M:%S",
            )
        )
    return handler


def _file_handler(state_dir: Path | None) -> logging.Handler | None:
    try:
        logs_dir = (state_dir or get_app_state_dir()) / "logs"
        logs_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            logs_dir / _LOG_FILE_NAME,
            maxBytes=_LOG_FILE_MAX_BYTES,
            backupCount=3,
            encoding="utf-8",
        )
    except OSError:
        logging.getLogger(__name__).warning("Log file unavailable; console only", exc_info=True)
        return None
    handler.setFormatter(_JsonFormatter())
    return handler


def setup_logging(
    *,
    level: str | int | None = None,
    json_logs: bool | None = None,
    log_to_file: bool | None = None,
    state_dir: Path | None = None,
) -> None:
    """Install console and file handlers on the root logger.

    Unset arguments fall back to ``LOG_LEVEL``, ``LOG_JSON`` and ``LOG_FILE``.
    Calling it again replaces the previous handlers.
    """
    lvl = level if level is not None else os.getenv("LOG_LEVEL", "INFO")
    if isinstance(lvl, str):
        lvl = getattr(logging, lvl.upper(), logging.INFO)
    if json_logs is None:
        json_logs = _env_flag("LOG_JSON", "0")
    if log_to_file is None:
        log_to_file = _env_flag("LOG_FILE", "1")

    handlers = [_console_handler(json_logs)]
    if log_to_file:
        file_handler = _file_handler(state_dir)
        if file_handler is not None:
            handlers.append(file_handler)

    root = logging.getLogger()
    root.handlers.clear()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(int(lvl))

    # Store clients log every request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
