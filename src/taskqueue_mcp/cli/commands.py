# src/taskqueue_mcp/cli/commands.py

from __future__ import annotations

import argparse
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ..core.state import AppState
from ..tasks.task_models import TaskState, TaskStatus

CommandHandler = Callable[[AppState, argparse.Namespace], Awaitable[str]]
ParserConfigurator = Callable[[argparse.ArgumentParser], None]

logger = logging.getLogger(__name__)

_STATUS_LABELS = {
    TaskStatus.DONE.value: "✅ Done",
    TaskStatus.IN_PROGRESS.value: "🔄 In Progress",
    TaskStatus.NOT_STARTED.value: "⏳ Not Started",
}


def _truncate(text: str, limit: int, suffix: str) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + suffix


def format_task_progress_table(tasks: list[dict[str, Any]]) -> str:
    """Markdown progress table for a project's tasks (wire-shaped task dicts)."""
    lines = [
        "",
        "Progress Status:",
        "| Task ID | Title | Description | Status | Approval | Tools | Rules |",
        "|----------|----------|-------------|--------|----------|-------|-------|",
    ]
    for t in tasks:
        status = _STATUS_LABELS.get(t.get("status", ""), str(t.get("status", "")))
        approved = "✅ Approved" if t.get("approved") else "⏳ Pending"
        tools = "✓" if t.get("toolRecommendations") else "-"
        rules = "✓" if t.get("ruleRecommendations") else "-"
        desc = _truncate(str(t.get("description", "")), 50, " ...")
        lines.append(f"| {t['id']} | {t['title']} | {desc} | {status} | {approved} | {tools} | {rules} |")
    return "\n".join(lines) + "\n"


def format_projects_list(projects: list[dict[str, Any]]) -> str:
    """Markdown table of project summaries (as returned by list_projects)."""
    lines = [
        "",
        "Projects List:",
        "| Project ID | Initial Prompt | Total Tasks | Completed | Approved |",
        "|------------|------------------|-------------|-----------|----------|",
    ]
    for p in projects:
        prompt = _truncate(str(p.get("initialPrompt", "")), 30, "...")
        lines.append(
            f"| {p['projectId']} | {prompt} | {p['totalTasks']} | {p['completedTasks']} | {p['approvedTasks']} |"
        )
    return "\n".join(lines) + "\n"


def _progress_line(project: dict[str, Any]) -> str:
    tasks = project.get("tasks", [])
    total = len(tasks)
    done = sum(1 for t in tasks if t.get("status") == TaskStatus.DONE.value)
    approved = sum(1 for t in tasks if t.get("approved"))
    return f"Progress: {approved}/{done}/{total} (approved/completed/total)"


class CommandRegistry:
    """Subcommand registry: each entry contributes an argparse subparser and an async handler."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}
        self._configure: dict[str, ParserConfigurator | None] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        configure: ParserConfigurator | None = None,
    ) -> None:
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        self._configure[key] = configure

    def build_parser(self, prog: str = "taskqueue-cli") -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(prog=prog, description="CLI for the task queue store.")
        parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to stderr.")
        sub = parser.add_subparsers(dest="command", metavar="COMMAND")
        sub.required = True
        for name, help_text in self._help.items():
            p = sub.add_parser(name, help=help_text, description=help_text)
            configure = self._configure.get(name)
            if configure is not None:
                configure(p)
        return parser

    async def handle(self, state: AppState, args: argparse.Namespace) -> str:
        handler = self._handlers.get(str(args.command).lower())
        if handler is None:
            return f"Unknown command: {args.command}. Use --help to list available commands."
        logger.debug("CLI command %s", args.command)
        return await handler(state, args)


registry = CommandRegistry()


async def cmd_list(state: AppState, args: argparse.Namespace) -> str:
    """
    list              -> all projects
    list -p proj-1    -> one project with its task table
    list -s open      -> filter by state (all/open/completed/pending_approval)
    """
    reg = state.registry
    if args.project:
        project = await reg.read_project(args.project)
        listed = await reg.list_tasks(args.project, args.state)
        status = "Completed ✓" if project["completed"] else "In Progress ⟳"
        lines = [
            f"Project: {project['projectId']}",
            f"  Initial Prompt: {project['initialPrompt']}",
            f"  Status: {status}",
            f"  {_progress_line(project)}",
        ]
        if not listed["tasks"]:
            lines.append("  No tasks found for this project.")
            return "\n".join(lines)
        return "\n".join(lines) + "\n" + format_task_progress_table(listed["tasks"])

    listed = await reg.list_projects(args.state)
    if not listed["projects"]:
        return "No projects found."
    return format_projects_list(listed["projects"])


async def cmd_approve_task(state: AppState, args: argparse.Namespace) -> str:
    result = await state.registry.approve_task_completion(args.project_id, args.task_id)
    project = await state.registry.read_project(args.project_id)
    task = result["task"]
    lines = [
        f"✅ Task {task['id']} in project {result['projectId']} has been approved.",
        f"  Title: {task['title']}",
        f"  Completed details: {task['completedDetails'] or 'None'}",
        f"  {_progress_line(project)}",
    ]
    tasks = project["tasks"]
    if tasks and all(t["status"] == TaskStatus.DONE.value and t["approved"] for t in tasks):
        lines.append("All tasks are completed and approved. The project can now be finalized.")
    return "\n".join(lines)


async def cmd_approve_project(state: AppState, args: argparse.Namespace) -> str:
    result = await state.registry.approve_project_completion(args.project_id)
    project = await state.registry.read_project(args.project_id)
    return "\n".join(
        [
            f"✅ Project {result['projectId']} has been approved and marked as complete.",
            f"  Initial Prompt: {project['initialPrompt']}",
            f"  Final {_progress_line(project)}",
        ]
    )


async def cmd_next_task(state: AppState, args: argparse.Namespace) -> str:
    result = await state.registry.get_next_task(args.project_id)
    task = result.get("task")
    if task is None:
        return result["message"]
    return "\n".join(
        [
            f"Next task in {result['projectId']}: {task['id']} - {task['title']}",
            f"  Status: {_STATUS_LABELS.get(task['status'], task['status'])}",
            f"  Description: {task['description']}",
        ]
    )


async def cmd_generate_plan(state: AppState, args: argparse.Namespace) -> str:
    result = await state.registry.generate_project_plan(
        args.prompt,
        provider=args.provider,
        model=args.model,
        attachments=args.attachment or [],
    )
    lines = [result["message"]]
    for t in result["tasks"]:
        lines.append(f"  - {t['id']}: {t['title']}")
    return "\n".join(lines)


def _configure_list(p: argparse.ArgumentParser) -> None:
    p.add_argument("-p", "--project", help="Show details for a specific project.")
    p.add_argument(
        "-s",
        "--state",
        choices=[s.value for s in TaskState],
        default=None,
        help="Filter by state.",
    )


def _configure_approve_task(p: argparse.ArgumentParser) -> None:
    p.add_argument("project_id", help="ID of the project containing the task.")
    p.add_argument("task_id", help="ID of the task to approve.")


def _configure_project_only(p: argparse.ArgumentParser) -> None:
    p.add_argument("project_id", help="ID of the project.")


def _configure_generate_plan(p: argparse.ArgumentParser) -> None:
    p.add_argument("--prompt", required=True, help="What the project should accomplish.")
    p.add_argument("--provider", default=None, help="openai | google | deepseek")
    p.add_argument("--model", default=None, help="Model name for the provider.")
    p.add_argument(
        "--attachment",
        action="append",
        default=[],
        help="File to include as context (repeatable).",
    )


registry.register("list", cmd_list, "List projects, or one project's tasks.", _configure_list)
registry.register("approve-task", cmd_approve_task, "Approve a completed task.", _configure_approve_task)
registry.register(
    "approve-project",
    cmd_approve_project,
    "Approve project completion.",
    _configure_project_only,
)
registry.register("next-task", cmd_next_task, "Show the next task of a project.", _configure_project_only)
registry.register(
    "generate-plan",
    cmd_generate_plan,
    "Generate a project plan with an LLM and store it.",
    _configure_generate_plan,
)
