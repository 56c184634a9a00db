# src/tasksync/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole library (normal "settings layer").
- Nothing required at import time: without a backend URL the in-memory remote is used.
- Timeouts, retry count and queue retry budget are explicit configuration.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "TASKSYNC"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    tasks_db_path: Path

    # ---- Remote ----
    remote_base_url: str
    remote_timeout_seconds: float
    remote_connect_timeout_seconds: float
    remote_max_retries: int
    use_in_memory_remote: bool

    # ---- Sync ----
    sync_interval_seconds: float
    connectivity_probe_interval_seconds: float
    queue_max_attempts: int

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "tasksync")
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/tasksync"))
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")

        remote_base_url = _env(_k("REMOTE_BASE_URL"), "").strip()
        remote_timeout_seconds = _env_float(_k("REMOTE_TIMEOUT_SECONDS"), 15.0)
        remote_connect_timeout_seconds = _env_float(_k("REMOTE_CONNECT_TIMEOUT_SECONDS"), 5.0)
        remote_max_retries = _env_int(_k("REMOTE_MAX_RETRIES"), 1)
        use_in_memory_remote = _env_bool(_k("USE_IN_MEMORY_REMOTE"), not remote_base_url)

        # Safety-net sync; reconnect edges trigger sooner.
        sync_interval_seconds = _env_float(_k("SYNC_INTERVAL_SECONDS"), 15 * 60.0)
        connectivity_probe_interval_seconds = _env_float(_k("CONNECTIVITY_PROBE_INTERVAL_SECONDS"), 30.0)
        queue_max_attempts = _env_int(_k("QUEUE_MAX_ATTEMPTS"), 5)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            tasks_db_path=tasks_db_path,
            remote_base_url=remote_base_url,
            remote_timeout_seconds=remote_timeout_seconds,
            remote_connect_timeout_seconds=remote_connect_timeout_seconds,
            remote_max_retries=remote_max_retries,
            use_in_memory_remote=use_in_memory_remote,
            sync_interval_seconds=sync_interval_seconds,
            connectivity_probe_interval_seconds=connectivity_probe_interval_seconds,
            queue_max_attempts=queue_max_attempts,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
