# src/taskqueue_mcp/tasks/status_notifier.py

"""
Current-status mirror.

Writes a single markdown rule file describing what is being worked on right
now (project + task), for editors/agents that read `.cursor/rules/*.mdc`.
It is a derived view of registry state: every failure is logged and dropped.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path

from .task_models import Project, Task, TaskStatus

logger = logging.getLogger(__name__)

STATUS_FILE_RELATIVE = Path(".cursor") / "rules" / "current_status.mdc"

_INDENT = "   "

# [label](mdc:./.cursor/rules/<name>.mdc) -> .cursor/rules/<name>.mdc
_RULE_LINK_RE = re.compile(
    r"\[.*?\]\(mdc:(?:\.?/)?(\.cursor[/\\]rules[/\\][^)]+\.mdc)\)",
    re.IGNORECASE,
)

_FRONT_MATTER = "---\ndescription: Status of the current task\nglobs:\nalwaysApply: true\n---"


@dataclass(slots=True, frozen=True)
class StatusProjectView:
    initial_prompt: str
    project_plan: str
    is_finalized: bool
    completed_tasks: int
    total_tasks: int


@dataclass(slots=True, frozen=True)
class StatusTaskView:
    title: str
    description: str
    status: TaskStatus
    approved: bool
    completed_details: str = ""
    rule_filename: str | None = None
    rule_excerpt: str | None = None


def _indent(text: str) -> str:
    # Stored text sometimes carries literal "\n" sequences instead of newlines.
    lines = text.replace("\\n", "\n").split("\n")
    return "\n".join(f"{_INDENT}{line}" for line in lines)


def find_rule_link(description: str) -> str | None:
    """Relative path of the first linked .cursor/rules/*.mdc file, if any."""
    m = _RULE_LINK_RE.search(description or "")
    return m.group(1) if m else None


def format_status_file(project: StatusProjectView | None, task: StatusTaskView | None) -> str:
    if project is not None:
        state = "Finalized" if project.is_finalized else "In Progress"
        project_section = (
            f"Project Name: {project.initial_prompt}\n"
            f"Project Detail:\n{_indent(project.project_plan)}\n"
            f"Status: {state} ({project.completed_tasks}/{project.total_tasks} tasks completed)"
        )
    else:
        project_section = "Project: none"

    rule_section = ""
    if task is not None:
        status_str = "approved" if task.approved else task.status.value
        parts = [
            f"Title: {task.title}",
            f"Status: {status_str}",
            f"Description:\n{_indent(task.description)}",
        ]
        if task.completed_details:
            parts.append(f"Completed Details:\n{_indent(task.completed_details)}")
        task_section = "\n".join(parts)

        if task.rule_filename and task.rule_excerpt:
            rule_section = (
                f"\n\n# Relevant Rule Excerpt ({task.rule_filename})\n\n{_indent(task.rule_excerpt)}"
            )
    else:
        task_section = "Task: none"

    return (
        f"{_FRONT_MATTER}\n\n# Project\n\n{project_section}\n\n# Task\n\n{task_section}{rule_section}\n"
    )


def select_focus_task(project: Project, task: Task) -> Task | None:
    """
    Pick the task to show after `task` was updated.

    - not started -> no active task
    - done -> another in-progress, unapproved task of the project if there is one,
      else the done task itself
    - otherwise the task itself
    """
    if task.status == TaskStatus.NOT_STARTED:
        return None
    if task.status == TaskStatus.DONE:
        for other in project.tasks:
            if other.id != task.id and other.status == TaskStatus.IN_PROGRESS and not other.approved:
                return other
    return task


class StatusNotifier:
    """
    StatusSink writing `<project_root>/.cursor/rules/current_status.mdc`.

    Inactive (every call is a no-op) when project_root is None.
    """

    def __init__(self, project_root: str | Path | None) -> None:
        self._root = Path(project_root).expanduser() if project_root else None

    @property
    def enabled(self) -> bool:
        return self._root is not None

    @property
    def status_file_path(self) -> Path | None:
        if self._root is None:
            return None
        return self._root / STATUS_FILE_RELATIVE

    async def task_updated(self, project: Project, task: Task) -> None:
        if self._root is None:
            return
        try:
            focus = select_focus_task(project, task)
            task_view = await self._task_view(focus) if focus is not None else None
            content = format_status_file(self._project_view(project), task_view)
            await self._write(content)
        except Exception:
            logger.exception("Failed to update current status for project %s", project.project_id)

    async def clear(self) -> None:
        if self._root is None:
            return
        try:
            await self._write(format_status_file(None, None))
        except Exception:
            logger.exception("Failed to clear current status file")

    @staticmethod
    def _project_view(project: Project) -> StatusProjectView:
        return StatusProjectView(
            initial_prompt=project.initial_prompt,
            project_plan=project.project_plan,
            is_finalized=project.completed,
            completed_tasks=project.count_finished(),
            total_tasks=len(project.tasks),
        )

    async def _task_view(self, task: Task) -> StatusTaskView:
        rule_filename: str | None = None
        rule_excerpt: str | None = None

        rel = find_rule_link(task.description)
        if rel and self._root is not None:
            rel_path = Path(*re.split(r"[/\\]", rel))
            rule_path = self._root / rel_path
            try:
                rule_excerpt = await asyncio.to_thread(rule_path.read_text, "utf-8")
                rule_filename = rel_path.name
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Failed to read rule file %s: %s", rule_path, e)

        return StatusTaskView(
            title=task.title,
            description=task.description,
            status=task.status,
            approved=task.approved,
            completed_details=task.completed_details,
            rule_filename=rule_filename,
            rule_excerpt=rule_excerpt,
        )

    async def _write(self, content: str) -> None:
        path = self.status_file_path
        if path is None:
            return

        def _do_write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, "utf-8")

        try:
            await asyncio.to_thread(_do_write)
        except OSError as e:
            logger.error("Failed to update %s: %s", path, e)
            return
        logger.debug("Current status written to %s", path)
