# src/taskqueue_mcp/core/state.py

from __future__ import annotations

from dataclasses import dataclass

from ..config import Settings
from ..tasks.status_notifier import StatusNotifier
from ..tasks.task_registry import TaskRegistry
from ..tasks.task_store import TaskFileStore


@dataclass
class AppState:
    """Everything one process needs: settings plus the wired store/registry."""

    settings: Settings
    store: TaskFileStore
    registry: TaskRegistry
    notifier: StatusNotifier
