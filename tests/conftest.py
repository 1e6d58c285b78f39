# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from taskqueue_mcp.tasks.task_registry import TaskRegistry
from taskqueue_mcp.tasks.task_store import TaskFileStore

from .fakes import FakePlanGenerator, RecordingStatusSink


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with the bootstrap and the planner.

    We intentionally use a SimpleNamespace rather than reading the environment,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="taskqueue-mcp",
        log_level="INFO",
        log_to_file=False,
        data_dir=tmp_path / "data",
        tasks_file_path=tmp_path / "data" / "tasks.json",
        current_project_path=None,
        default_provider="openai",
        default_model="gpt-4o-mini",
        openai_api_key=None,
        google_api_key=None,
        deepseek_api_key=None,
        llm_connect_timeout=5.0,
        llm_read_timeout=60.0,
    )


@pytest.fixture()
def tasks_path(settings: SimpleNamespace) -> Path:
    return settings.tasks_file_path


@pytest.fixture()
def store(tasks_path: Path) -> TaskFileStore:
    return TaskFileStore(tasks_path)


@pytest.fixture()
def sink() -> RecordingStatusSink:
    return RecordingStatusSink()


@pytest.fixture()
def planner() -> FakePlanGenerator:
    return FakePlanGenerator()


@pytest.fixture()
def registry(store: TaskFileStore, sink: RecordingStatusSink, planner: FakePlanGenerator) -> TaskRegistry:
    """
    Registry wired with a real file store and recording fakes.

    The JSON store stays real because its behavior is part of what we test.
    """
    return TaskRegistry(store, status_sink=sink, planner=planner)
