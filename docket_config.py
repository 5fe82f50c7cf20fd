"""Module-level configuration values resolved from the settings store."""

from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path
from typing import Optional

from services.settings import settings_manager

_manager = settings_manager


def _resolve_database_path() -> Path:
    override = os.environ.get("DOCKET_DATABASE") or _manager.get("database_path")
    if override:
        return Path(override).expanduser()
    return _manager.paths.config_dir / "docket.db"


SECRET_KEY = (
    os.environ.get("DOCKET_FLASK_SECRET")
    or _manager.get_or_create_secret("flask_secret_key")
)

SESSION_TIMEOUT = timedelta(minutes=int(_manager.get("session_timeout_minutes")))

DATABASE_PATH: Path = _resolve_database_path()

LOG_LEVEL: str = str(_manager.get("log_level")).upper()
LOG_FILE: Optional[str] = _manager.get("log_file")

CASES_PAGE_LIMIT_MAX: int = int(_manager.get("cases_page_limit_max"))
