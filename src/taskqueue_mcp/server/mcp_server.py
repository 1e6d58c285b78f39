# src/taskqueue_mcp/server/mcp_server.py

"""
MCP server (`taskqueue-mcp`).

Exposes the TaskRegistry operations as MCP tools over stdio. Each tool is a
thin adapter: it forwards typed arguments and returns the registry payload.
AppError is re-raised as ToolError so the client sees "[<code>] <message>".
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from typing import Any

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError

from ..cli.bootstrap import configure_logging, create_initial_state
from ..config import get_settings
from ..core.errors import INVALID_PARAMS_CODES, AppError, ErrorCode
from ..tasks.task_models import TaskDefinition, TaskStatus
from ..tasks.task_registry import TaskRegistry

logger = logging.getLogger(__name__)

SERVER_NAME = "taskqueue"


def _tool_error(err: AppError) -> ToolError:
    if err.code in INVALID_PARAMS_CODES:
        return ToolError(f"Invalid params: {err}")
    return ToolError(str(err))


async def _call(op: str, coro: Awaitable[dict[str, Any]]) -> dict[str, Any]:
    try:
        return await coro
    except AppError as e:
        logger.info("Tool %s failed: %s", op, e)
        raise _tool_error(e) from e


def _task_definitions(tasks: list[dict[str, Any]]) -> list[TaskDefinition]:
    out: list[TaskDefinition] = []
    for i, raw in enumerate(tasks):
        if not isinstance(raw, dict):
            raise _tool_error(AppError(f"tasks[{i}] must be an object", ErrorCode.INVALID_ARGUMENT))
        definition = TaskDefinition.from_dict(raw)
        if not definition.title.strip() or not definition.description.strip():
            raise _tool_error(
                AppError(f"tasks[{i}] requires a title and a description", ErrorCode.MISSING_PARAMETER)
            )
        out.append(definition)
    return out


def build_server(registry: TaskRegistry) -> FastMCP:
    """Create a FastMCP instance with every task tool bound to `registry`."""
    mcp = FastMCP(SERVER_NAME)

    # ---- projects ----

    @mcp.tool()
    async def list_projects(state: str | None = None) -> dict[str, Any]:
        """List projects, optionally filtered by state: all, open, completed, pending_approval."""
        return await _call("list_projects", registry.list_projects(state))

    @mcp.tool()
    async def read_project(project_id: str) -> dict[str, Any]:
        """Read a project with its plan and all of its tasks."""
        return await _call("read_project", registry.read_project(project_id))

    @mcp.tool()
    async def create_project(
            initial_prompt: str,
            tasks: list[dict[str, Any]],
            project_plan: str | None = None,
            auto_approve: bool = False,
    ) -> dict[str, Any]:
        """
        Create a project from a prompt and an ordered task list.

        Each task is an object with `title`, `description` and optional
        `toolRecommendations` / `ruleRecommendations`.
        """
        definitions = _task_definitions(tasks)
        return await _call(
            "create_project",
            registry.create_project(initial_prompt, definitions, project_plan, auto_approve),
        )

    @mcp.tool()
    async def delete_project(project_id: str) -> dict[str, Any]:
        """Delete a project and all of its tasks."""
        return await _call("delete_project", registry.delete_project(project_id))

    @mcp.tool()
    async def add_tasks_to_project(project_id: str, tasks: list[dict[str, Any]]) -> dict[str, Any]:
        """Append new tasks to an existing, not yet completed project."""
        definitions = _task_definitions(tasks)
        return await _call("add_tasks_to_project", registry.add_tasks_to_project(project_id, definitions))

    @mcp.tool()
    async def finalize_project(project_id: str) -> dict[str, Any]:
        """Mark a project complete once every task is done and approved."""
        return await _call("finalize_project", registry.approve_project_completion(project_id))

    @mcp.tool()
    async def update_project(
            project_id: str,
            initial_prompt: str | None = None,
            project_plan: str | None = None,
    ) -> dict[str, Any]:
        """Change the prompt and/or plan of a project that is not completed."""
        return await _call(
            "update_project",
            registry.update_project(project_id, initial_prompt=initial_prompt, project_plan=project_plan),
        )

    # ---- tasks ----

    @mcp.tool()
    async def list_tasks(project_id: str | None = None, state: str | None = None) -> dict[str, Any]:
        """List tasks of one project (or all projects), optionally filtered by state."""
        return await _call("list_tasks", registry.list_tasks(project_id, state))

    @mcp.tool()
    async def read_task(task_id: str) -> dict[str, Any]:
        """Read one task by id, searching every project."""
        return await _call("read_task", registry.open_task_details(task_id))

    @mcp.tool()
    async def create_task(
            project_id: str,
            title: str,
            description: str,
            tool_recommendations: str | None = None,
            rule_recommendations: str | None = None,
    ) -> dict[str, Any]:
        """Add a single task to a project."""
        definitions = _task_definitions(
            [
                {
                    "title": title,
                    "description": description,
                    "toolRecommendations": tool_recommendations,
                    "ruleRecommendations": rule_recommendations,
                }
            ]
        )
        result = await _call("create_task", registry.add_tasks_to_project(project_id, definitions))
        new_task = result["newTasks"][0]
        return {"message": f"Task {new_task['id']} created in project {project_id}", "newTask": new_task}

    @mcp.tool()
    async def update_task(
            project_id: str,
            task_id: str,
            title: str | None = None,
            description: str | None = None,
            status: str | None = None,
            completed_details: str | None = None,
            tool_recommendations: str | None = None,
            rule_recommendations: str | None = None,
    ) -> dict[str, Any]:
        """
        Update a task. Status moves not started -> in progress -> done
        (and back one step); setting done requires completed_details.
        """
        task = await _call(
            "update_task",
            registry.update_task(
                project_id,
                task_id,
                title=title,
                description=description,
                status=status,
                completed_details=completed_details,
                tool_recommendations=tool_recommendations,
                rule_recommendations=rule_recommendations,
            ),
        )
        if task["status"] == TaskStatus.DONE.value and not task["approved"]:
            task["message"] = (
                "Task marked as done but requires human approval. To approve, run: "
                f"taskqueue-cli approve-task {project_id} {task_id}"
            )
        return task

    @mcp.tool()
    async def delete_task(project_id: str, task_id: str) -> dict[str, Any]:
        """Delete a task that is not approved."""
        return await _call("delete_task", registry.delete_task(project_id, task_id))

    @mcp.tool()
    async def approve_task(project_id: str, task_id: str) -> dict[str, Any]:
        """Approve a done task. Approving twice is harmless."""
        return await _call("approve_task", registry.approve_task_completion(project_id, task_id))

    @mcp.tool()
    async def get_next_task(project_id: str) -> dict[str, Any]:
        """Return the first task of the project that is not yet done and approved."""
        return await _call("get_next_task", registry.get_next_task(project_id))

    # ---- plan generation ----

    @mcp.tool()
    async def generate_project_plan(
            prompt: str,
            provider: str | None = None,
            model: str | None = None,
            attachments: list[str] | None = None,
    ) -> dict[str, Any]:
        """
        Ask an LLM (openai, google or deepseek) to plan the work, then store the
        result as a new project. `attachments` are file paths whose contents are
        sent along as context.
        """
        return await _call(
            "generate_project_plan",
            registry.generate_project_plan(
                prompt,
                provider=provider,
                model=model,
                attachments=attachments or [],
            ),
        )

    return mcp


def main() -> None:
    settings = get_settings()
    configure_logging(settings)

    logger.info("Starting %s MCP server (tasks file: %s)", settings.app_name, settings.tasks_file_path)

    state = create_initial_state(settings=settings)
    mcp = build_server(state.registry)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
