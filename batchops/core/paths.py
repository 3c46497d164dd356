from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from batchops.config import PROJECT_ROOT

APP_NAME = "batchops"

logger = logging.getLogger(__name__)


def get_app_state_dir(app_folder_name: str = ".batchops_state") -> Path:
    """Return a writable directory for storing app state (job store, logs).

    Preference order:
    1) BATCHOPS_STATE_DIR if set
    2) <PROJECT_ROOT>/.batchops_state if writable (good for dev / tests)
    3) OS user data dir (~/.local/share/<app>, %APPDATA%\\<app>, etc)
    """
    override = os.environ.get("BATCHOPS_STATE_DIR")
    if override:
        path = Path(override).expanduser().resolve()
        path.mkdir(parents=True, exist_ok=True)
        return path

    proj_dir = PROJECT_ROOT / app_folder_name
    try:
        proj_dir.mkdir(parents=True, exist_ok=True)
        test_file = proj_dir / ".write_test"
        test_file.write_text("ok", encoding="utf-8")
        test_file.unlink(missing_ok=True)
        return proj_dir
    except OSError:
        logger.debug("Project dir probe failed; falling back to user data dir", exc_info=True)

    if sys.platform.startswith("win"):
        base = Path(os.environ.get("APPDATA") or Path.home() / "AppData" / "Roaming")
        return (base / APP_NAME).resolve()
    if sys.platform == "darwin":
        return (Path.home() / "Library" / "Application Support" / APP_NAME).resolve()
    xdg = os.environ.get("XDG_DATA_HOME")
    base = Path(xdg) if xdg else (Path.home() / ".local" / "share")
    return (base / APP_NAME).resolve()
