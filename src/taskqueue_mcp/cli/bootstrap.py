# src/taskqueue_mcp/cli/bootstrap.py

"""
Composition root shared by both entrypoints (`taskqueue-cli`, `taskqueue-mcp`).

Both surfaces get the same wiring, so a project edited through the MCP server
and approved from the CLI goes through one set of lifecycle rules.
"""

from __future__ import annotations

import logging

from ..config import Settings, get_settings
from ..core.state import AppState
from ..llm.planner import OpenAIPlanGenerator
from ..logging_setup import setup_logging
from ..tasks.status_notifier import StatusNotifier
from ..tasks.task_registry import TaskRegistry
from ..tasks.task_store import TaskFileStore

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings, *, console_level: int | None = None) -> None:
    if console_level is None:
        level_name = str(settings.log_level).upper()
        console_level = getattr(logging, level_name, logging.INFO)
    log_dir = settings.data_dir if settings.log_to_file else None
    setup_logging(log_dir=log_dir, console_level=console_level)


def create_initial_state(*, settings: Settings | None = None) -> AppState:
    """
    Build store, status mirror, planner and registry for one process.

    Pass `settings` to avoid reading the environment (tests do); otherwise
    get_settings() is used.
    """
    if settings is None:
        settings = get_settings()

    store = TaskFileStore(settings.tasks_file_path)
    notifier = StatusNotifier(settings.current_project_path)
    registry = TaskRegistry(
        store,
        status_sink=notifier,
        planner=OpenAIPlanGenerator(settings),
    )

    if notifier.enabled:
        logger.info("Current status mirror enabled at %s", notifier.status_file_path)

    return AppState(settings=settings, store=store, registry=registry, notifier=notifier)
