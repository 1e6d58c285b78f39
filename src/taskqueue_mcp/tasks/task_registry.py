# src/taskqueue_mcp/tasks/task_registry.py

"""
Task registry: every project/task operation and every lifecycle rule.

Each operation follows the same pattern:
- reload the file (another process may have written since our last call)
- locate the target project/task, validate
- mutate the in-memory graph
- save the whole file once
- notify the status sink (best-effort, never raises)

Nothing is persisted when validation fails; a failed save leaves memory ahead
of disk until the next call reloads.

Cross-process caveat: the reload narrows but does not close the lost-update
window. Process B can still overwrite a write from process A if both reloaded
before either saved. There is no file lock.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from ..core.errors import AppError, ErrorCode
from ..core.ports import PlanGenerator, StatusSink
from .task_models import (
    PROJECT_ID_PREFIX,
    TASK_ID_PREFIX,
    Project,
    Task,
    TaskDefinition,
    TaskFile,
    TaskState,
    TaskStatus,
    can_transition,
)
from .task_store import TaskFileStore

logger = logging.getLogger(__name__)

TaskDefs = Iterable[TaskDefinition | Mapping[str, Any]]

AWAITING_PROJECT_APPROVAL = (
    "All tasks have been completed and approved. Awaiting project completion approval."
)


class TaskRegistry:
    """
    Owner of the in-memory project graph for one store instance.

    Whole operations (reload -> mutate -> save) are serialized with an
    asyncio.Lock so two calls in the same process never interleave; the store
    additionally serializes the individual file operations.
    """

    def __init__(
            self,
            store: TaskFileStore,
            *,
            status_sink: StatusSink | None = None,
            planner: PlanGenerator | None = None,
    ) -> None:
        self._store = store
        self._status_sink = status_sink
        self._planner = planner
        self._data = TaskFile()
        self._project_counter = 0
        self._task_counter = 0
        self._op_lock = asyncio.Lock()

    @property
    def store(self) -> TaskFileStore:
        return self._store

    # ---- internal helpers ----

    async def _reload(self) -> TaskFile:
        self._data = await self._store.reload()
        self._project_counter, self._task_counter = self._store.calculate_max_ids(self._data)
        return self._data

    async def _save(self) -> None:
        await self._store.save(self._data)

    def _next_project_id(self) -> str:
        self._project_counter += 1
        return f"{PROJECT_ID_PREFIX}{self._project_counter}"

    def _new_task(self, definition: TaskDefinition) -> Task:
        self._task_counter += 1
        return Task(
            id=f"{TASK_ID_PREFIX}{self._task_counter}",
            title=definition.title,
            description=definition.description,
            tool_recommendations=definition.tool_recommendations,
            rule_recommendations=definition.rule_recommendations,
        )

    def _get_project(self, project_id: str) -> Project:
        proj = self._data.find_project(project_id)
        if proj is None:
            raise AppError(f"Project {project_id} not found", ErrorCode.PROJECT_NOT_FOUND)
        return proj

    @staticmethod
    def _get_task(proj: Project, task_id: str) -> Task:
        task = proj.find_task(task_id)
        if task is None:
            raise AppError(f"Task {task_id} not found", ErrorCode.TASK_NOT_FOUND)
        return task

    @staticmethod
    def _ensure_not_completed(proj: Project) -> None:
        if proj.completed:
            raise AppError("Project is already completed", ErrorCode.PROJECT_ALREADY_COMPLETED)

    @staticmethod
    def _parse_state(state: TaskState | str | None) -> TaskState:
        if state is None:
            return TaskState.ALL
        try:
            return TaskState(state)
        except ValueError:
            raise AppError(f"Invalid state filter: {state}", ErrorCode.INVALID_STATE) from None

    @staticmethod
    def _parse_status(status: TaskStatus | str) -> TaskStatus:
        try:
            return TaskStatus.parse(status)
        except ValueError:
            raise AppError(
                "Invalid status: must be one of 'not started', 'in progress', 'done'",
                ErrorCode.INVALID_ARGUMENT,
            ) from None

    @staticmethod
    def _project_details(proj: Project) -> dict[str, Any]:
        return {
            "projectId": proj.project_id,
            "initialPrompt": proj.initial_prompt,
            "projectPlan": proj.project_plan,
            "completed": proj.completed,
            "autoApprove": proj.auto_approve,
            "tasks": [t.to_dict() for t in proj.tasks],
        }

    async def _notify_task(self, proj: Project, task: Task) -> None:
        if self._status_sink is None:
            return
        await self._status_sink.task_updated(proj, task)

    async def _notify_clear(self) -> None:
        if self._status_sink is None:
            return
        await self._status_sink.clear()

    # ---- projects ----

    async def create_project(
            self,
            initial_prompt: str,
            tasks: TaskDefs,
            project_plan: str | None = None,
            auto_approve: bool = False,
    ) -> dict[str, Any]:
        definitions = [TaskDefinition.coerce(t) for t in tasks]
        async with self._op_lock:
            await self._reload()

            project_id = self._next_project_id()
            new_tasks = [self._new_task(d) for d in definitions]
            proj = Project(
                project_id=project_id,
                initial_prompt=initial_prompt,
                project_plan=project_plan or initial_prompt,
                tasks=new_tasks,
                completed=False,
                auto_approve=auto_approve is True,
            )
            self._data.projects.append(proj)
            await self._save()

        logger.info("Project created id=%s tasks=%d auto_approve=%s", project_id, len(new_tasks), proj.auto_approve)
        return {
            "projectId": project_id,
            "totalTasks": len(new_tasks),
            "tasks": [t.summary() for t in new_tasks],
            "message": f"Project {project_id} created with {len(new_tasks)} tasks.",
        }

    async def update_project(
            self,
            project_id: str,
            *,
            initial_prompt: str | None = None,
            project_plan: str | None = None,
    ) -> dict[str, Any]:
        async with self._op_lock:
            await self._reload()
            proj = self._get_project(project_id)
            self._ensure_not_completed(proj)

            if initial_prompt is None and project_plan is None:
                raise AppError(
                    "At least one of initialPrompt or projectPlan must be provided",
                    ErrorCode.INVALID_ARGUMENT,
                )
            if initial_prompt is not None:
                proj.initial_prompt = initial_prompt
            if project_plan is not None:
                proj.project_plan = project_plan

            await self._save()
            return self._project_details(proj)

    async def delete_project(self, project_id: str) -> dict[str, Any]:
        """Remove a project and all its tasks. No lifecycle checks apply."""
        async with self._op_lock:
            await self._reload()
            proj = self._get_project(project_id)
            self._data.projects.remove(proj)
            await self._save()

        logger.info("Project deleted id=%s", project_id)
        return {
            "status": "project_deleted",
            "message": f"Project {project_id} has been deleted.",
        }

    async def read_project(self, project_id: str) -> dict[str, Any]:
        async with self._op_lock:
            await self._reload()
            return self._project_details(self._get_project(project_id))

    async def list_projects(self, state: TaskState | str | None = None) -> dict[str, Any]:
        flt = self._parse_state(state)
        async with self._op_lock:
            await self._reload()
            projects = [p for p in self._data.projects if p.matches_state(flt)]
            return {
                "message": "Current projects in the system:",
                "projects": [p.summary() for p in projects],
            }

    async def approve_project_completion(self, project_id: str) -> dict[str, Any]:
        async with self._op_lock:
            await self._reload()
            proj = self._get_project(project_id)
            self._ensure_not_completed(proj)

            if not proj.all_done():
                raise AppError("Not all tasks are done", ErrorCode.TASKS_NOT_ALL_DONE)
            if not proj.all_approved():
                raise AppError("Not all done tasks are approved", ErrorCode.TASKS_NOT_ALL_APPROVED)

            proj.completed = True
            await self._save()
            await self._notify_clear()

        logger.info("Project completed id=%s", project_id)
        return {
            "projectId": project_id,
            "message": "Project is fully completed and approved.",
        }

    # ---- tasks ----

    async def add_tasks_to_project(self, project_id: str, tasks: TaskDefs) -> dict[str, Any]:
        definitions = [TaskDefinition.coerce(t) for t in tasks]
        async with self._op_lock:
            await self._reload()
            proj = self._get_project(project_id)
            self._ensure_not_completed(proj)

            new_tasks = [self._new_task(d) for d in definitions]
            proj.tasks.extend(new_tasks)
            await self._save()

        logger.info("Added %d tasks to project %s", len(new_tasks), project_id)
        return {
            "message": f"Added {len(new_tasks)} tasks to project {project_id}",
            "newTasks": [t.summary() for t in new_tasks],
        }

    async def update_task(
            self,
            project_id: str,
            task_id: str,
            *,
            title: str | None = None,
            description: str | None = None,
            status: TaskStatus | str | None = None,
            completed_details: str | None = None,
            tool_recommendations: str | None = None,
            rule_recommendations: str | None = None,
    ) -> dict[str, Any]:
        """
        Apply a partial update. None means "leave unchanged".

        Status changes must follow VALID_STATUS_TRANSITIONS. A task can only end
        up done with non-empty completed details (given here or already stored);
        leaving done clears them. With auto-approve on the project, reaching
        done also approves the task.
        """
        async with self._op_lock:
            await self._reload()
            proj = self._get_project(project_id)
            self._ensure_not_completed(proj)
            task = self._get_task(proj, task_id)
            if task.approved:
                raise AppError("Cannot modify an approved task", ErrorCode.CANNOT_MODIFY_APPROVED_TASK)

            old_status = task.status
            new_status = old_status
            if status is not None:
                new_status = self._parse_status(status)
                if not can_transition(old_status, new_status):
                    raise AppError(
                        f"Invalid status transition from '{old_status}' to '{new_status}'",
                        ErrorCode.INVALID_ARGUMENT,
                    )

            details = task.completed_details if completed_details is None else completed_details
            if new_status == TaskStatus.DONE and not details.strip():
                raise AppError(
                    "completedDetails is required when setting status to 'done'",
                    ErrorCode.MISSING_PARAMETER,
                )

            fields_changed = any(
                v is not None
                for v in (title, description, completed_details, tool_recommendations, rule_recommendations)
            )

            if title is not None:
                task.title = title
            if description is not None:
                task.description = description
            if tool_recommendations is not None:
                task.tool_recommendations = tool_recommendations
            if rule_recommendations is not None:
                task.rule_recommendations = rule_recommendations
            task.status = new_status
            task.completed_details = details if new_status == TaskStatus.DONE else ""
            if new_status == TaskStatus.DONE and proj.auto_approve:
                task.approved = True

            await self._save()

            status_changed = new_status != old_status
            if status_changed or (fields_changed and new_status != TaskStatus.NOT_STARTED):
                await self._notify_task(proj, task)

            logger.info(
                "Task updated project=%s task=%s status=%s->%s approved=%s",
                project_id,
                task_id,
                old_status.value,
                new_status.value,
                task.approved,
            )
            return task.to_dict()

    async def delete_task(self, project_id: str, task_id: str) -> dict[str, Any]:
        async with self._op_lock:
            await self._reload()
            proj = self._get_project(project_id)
            self._ensure_not_completed(proj)
            task = self._get_task(proj, task_id)
            if task.approved:
                raise AppError("Cannot delete an approved task", ErrorCode.CANNOT_MODIFY_APPROVED_TASK)

            proj.tasks.remove(task)
            await self._save()

        logger.info("Task deleted project=%s task=%s", project_id, task_id)
        return {"message": f"Task {task_id} deleted from project {project_id}"}

    async def approve_task_completion(self, project_id: str, task_id: str) -> dict[str, Any]:
        """
        Latch approved=True on a done task.

        Approving an already approved task is a no-op success: nothing is
        written and the current state is returned.
        """
        async with self._op_lock:
            await self._reload()
            proj = self._get_project(project_id)
            task = self._get_task(proj, task_id)

            if task.status != TaskStatus.DONE:
                raise AppError("Task not done yet", ErrorCode.TASK_NOT_DONE)

            if task.approved:
                logger.info("Task %s in %s is already approved; nothing to do", task_id, project_id)
            else:
                task.approved = True
                await self._save()
                logger.info("Task approved project=%s task=%s", project_id, task_id)

            return {
                "projectId": proj.project_id,
                "task": {
                    "id": task.id,
                    "title": task.title,
                    "description": task.description,
                    "completedDetails": task.completed_details,
                    "approved": task.approved,
                },
            }

    async def get_next_task(self, project_id: str) -> dict[str, Any]:
        """First task (in insertion order) that is not done-and-approved."""
        async with self._op_lock:
            await self._reload()
            proj = self._get_project(project_id)
            self._ensure_not_completed(proj)

            if not proj.tasks:
                raise AppError("Project has no tasks", ErrorCode.TASK_NOT_FOUND)

            for task in proj.tasks:
                if not task.is_finished:
                    return {"projectId": proj.project_id, "task": task.to_dict()}

            return {"message": AWAITING_PROJECT_APPROVAL, "allTasksDone": True}

    async def open_task_details(self, task_id: str, project_id: str | None = None) -> dict[str, Any]:
        async with self._op_lock:
            await self._reload()
            if project_id is not None:
                proj = self._get_project(project_id)
                task = self._get_task(proj, task_id)
                return {"projectId": proj.project_id, "task": task.to_dict()}

            for proj in self._data.projects:
                found = proj.find_task(task_id)
                if found is not None:
                    return {"projectId": proj.project_id, "task": found.to_dict()}
            raise AppError(f"Task {task_id} not found", ErrorCode.TASK_NOT_FOUND)

    async def list_tasks(
            self,
            project_id: str | None = None,
            state: TaskState | str | None = None,
    ) -> dict[str, Any]:
        flt = self._parse_state(state)
        async with self._op_lock:
            await self._reload()
            if project_id:
                tasks: Sequence[Task] = list(self._get_project(project_id).tasks)
            else:
                tasks = [t for p in self._data.projects for t in p.tasks]

            selected = [t for t in tasks if t.matches_state(flt)]
            scope = f" for project {project_id}" if project_id else ""
            return {
                "message": f"Tasks in the system{scope}:\n{len(selected)} tasks found.",
                "tasks": [t.to_dict() for t in selected],
            }

    # ---- plan generation ----

    async def generate_project_plan(
            self,
            prompt: str,
            *,
            provider: str | None = None,
            model: str | None = None,
            attachments: Sequence[str] = (),
    ) -> dict[str, Any]:
        """Ask the plan generator for a task list, then create a project from it."""
        if self._planner is None:
            raise AppError("Plan generation is not configured", ErrorCode.CONFIGURATION_ERROR)

        contents = [await self._store.read_side_file(name) for name in attachments]

        try:
            plan = await self._planner.generate_plan(
                prompt=prompt,
                attachments=contents,
                provider=provider,
                model=model,
            )
        except AppError:
            raise
        except Exception as e:
            raise AppError(
                "Failed to generate project plan due to an unexpected error",
                ErrorCode.LLM_GENERATION_ERROR,
                e,
            ) from e

        logger.info("Generated plan with %d tasks (provider=%s model=%s)", len(plan.tasks), provider, model)
        return await self.create_project(prompt, plan.tasks, plan.project_plan)
