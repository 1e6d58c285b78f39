# src/taskqueue_mcp/core/ports.py

"""
Ports (interfaces) used by the task registry.

The registry depends on Protocols instead of concrete implementations.
This keeps the LLM provider and the status mirror swappable and makes testing easier.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from ..tasks.task_models import Project, Task, TaskDefinition


@dataclass(slots=True)
class GeneratedPlan:
    """What a plan generator hands back: optional plan text plus ordered tasks."""

    tasks: list[TaskDefinition] = field(default_factory=list)
    project_plan: str | None = None


class PlanGenerator(Protocol):
    """Turns a free-form request (plus attachment texts) into a task list."""

    async def generate_plan(
            self,
            *,
            prompt: str,
            attachments: list[str],
            provider: str | None = None,
            model: str | None = None,
    ) -> GeneratedPlan: ...


class StatusSink(Protocol):
    """
    Receiver of "current focus" changes.

    Implementations must never raise: the registry calls them after a
    successful save and does not expect failures.
    """

    async def task_updated(self, project: Project, task: Task) -> None: ...

    async def clear(self) -> None: ...
