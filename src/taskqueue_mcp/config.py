# src/taskqueue_mcp/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
- Legacy env names (TASK_MANAGER_FILE_PATH, CURRENT_PROJECT_PATH) keep working.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "TASKQUEUE"
APP_DIR_NAME = "taskqueue-mcp"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(*names: str, default: Path) -> Path:
    raw = _first_env(*names)
    if raw is None:
        return default
    return Path(raw).expanduser()


def _env_opt_path(*names: str) -> Path | None:
    raw = _first_env(*names)
    if raw is None:
        return None
    return Path(raw).expanduser()


def default_app_data_dir() -> Path:
    """Platform-conventional data directory for the task file."""
    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / APP_DIR_NAME
    if sys.platform == "win32":
        appdata = os.getenv("APPDATA")
        base = Path(appdata) if appdata else home / "AppData" / "Roaming"
        return base / APP_DIR_NAME
    xdg = os.getenv("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / APP_DIR_NAME
    return home / ".local" / "share" / APP_DIR_NAME


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    log_to_file: bool

    # ---- Local data paths ----
    data_dir: Path
    tasks_file_path: Path

    # ---- Status mirror (inactive when None) ----
    current_project_path: Path | None

    # ---- Plan generation ----
    default_provider: str
    default_model: str
    openai_api_key: str | None
    google_api_key: str | None
    deepseek_api_key: str | None
    llm_connect_timeout: float
    llm_read_timeout: float

    @staticmethod
    def from_env(*, load_env_file: bool = True) -> "Settings":
        if load_env_file:
            load_dotenv(override=False)

        app_name = _env(_k("APP_NAME"), APP_DIR_NAME) or APP_DIR_NAME
        log_level = _env(_k("LOG_LEVEL"), "INFO")
        log_to_file = _env_bool(_k("LOG_TO_FILE"), True)

        data_dir = _env_path(_k("DATA_DIR"), default=default_app_data_dir())
        tasks_file_path = _env_path(
            _k("FILE_PATH"),
            "TASK_MANAGER_FILE_PATH",
            default=data_dir / "tasks.json",
        )
        current_project_path = _env_opt_path(_k("CURRENT_PROJECT_PATH"), "CURRENT_PROJECT_PATH")

        default_provider = _env(_k("LLM_PROVIDER"), "openai").strip().lower() or "openai"
        default_model = _env(_k("LLM_MODEL"), "gpt-4o-mini").strip() or "gpt-4o-mini"

        openai_api_key = _first_env(_k("OPENAI_API_KEY"), "OPENAI_API_KEY", default=None)
        google_api_key = _first_env(
            _k("GOOGLE_API_KEY"),
            "GOOGLE_GENERATIVE_AI_API_KEY",
            "GEMINI_API_KEY",
            default=None,
        )
        deepseek_api_key = _first_env(_k("DEEPSEEK_API_KEY"), "DEEPSEEK_API_KEY", default=None)

        connect_timeout = _env_float(_k("LLM_CONNECT_TIMEOUT_SECONDS"), 5.0)
        read_timeout = _env_float(_k("LLM_READ_TIMEOUT_SECONDS"), 60.0)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            log_to_file=log_to_file,
            data_dir=data_dir,
            tasks_file_path=tasks_file_path,
            current_project_path=current_project_path,
            default_provider=default_provider,
            default_model=default_model,
            openai_api_key=openai_api_key,
            google_api_key=google_api_key,
            deepseek_api_key=deepseek_api_key,
            llm_connect_timeout=connect_timeout,
            llm_read_timeout=max(read_timeout, connect_timeout),
        )


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
