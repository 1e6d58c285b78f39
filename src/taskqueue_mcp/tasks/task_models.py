# src/taskqueue_mcp/tasks/task_models.py

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

PROJECT_ID_PREFIX = "proj-"
TASK_ID_PREFIX = "task-"


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    The literal values are the on-disk representation and must not change.
    """

    NOT_STARTED = "not started"
    IN_PROGRESS = "in progress"
    DONE = "done"

    @classmethod
    def parse(cls, raw: Any) -> TaskStatus:
        """Strict parse for caller input. Raises ValueError on unknown values."""
        if isinstance(raw, TaskStatus):
            return raw
        return cls(str(raw).strip().lower())

    @classmethod
    def from_file(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.NOT_STARTED
        try:
            return cls.parse(raw)
        except ValueError:
            return cls.NOT_STARTED


VALID_STATUS_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.NOT_STARTED: frozenset({TaskStatus.IN_PROGRESS}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.DONE, TaskStatus.NOT_STARTED}),
    TaskStatus.DONE: frozenset({TaskStatus.IN_PROGRESS}),
}


def can_transition(current: TaskStatus, new: TaskStatus) -> bool:
    # Re-asserting the current status is not a transition.
    if current == new:
        return True
    return new in VALID_STATUS_TRANSITIONS[current]


class TaskState(StrEnum):
    """Listing filter for projects and tasks."""

    ALL = "all"
    OPEN = "open"
    COMPLETED = "completed"
    PENDING_APPROVAL = "pending_approval"


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


@dataclass(slots=True)
class TaskDefinition:
    """Input shape for new tasks (create_project / add_tasks_to_project)."""

    title: str
    description: str
    tool_recommendations: str | None = None
    rule_recommendations: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TaskDefinition:
        return cls(
            title=str(data.get("title", "")),
            description=str(data.get("description", "")),
            tool_recommendations=_opt_str(
                data.get("toolRecommendations", data.get("tool_recommendations"))
            ),
            rule_recommendations=_opt_str(
                data.get("ruleRecommendations", data.get("rule_recommendations"))
            ),
        )

    @classmethod
    def coerce(cls, value: TaskDefinition | Mapping[str, Any]) -> TaskDefinition:
        if isinstance(value, TaskDefinition):
            return value
        return cls.from_dict(value)


@dataclass(slots=True)
class Task:
    id: str
    title: str
    description: str
    status: TaskStatus = TaskStatus.NOT_STARTED
    approved: bool = False
    completed_details: str = ""
    tool_recommendations: str | None = None
    rule_recommendations: str | None = None

    @property
    def is_done(self) -> bool:
        return self.status == TaskStatus.DONE

    @property
    def is_finished(self) -> bool:
        """Done and approved: nothing left to do for this task."""
        return self.status == TaskStatus.DONE and self.approved

    def matches_state(self, state: TaskState) -> bool:
        if state == TaskState.OPEN:
            return not self.approved
        if state == TaskState.COMPLETED:
            return self.is_finished
        if state == TaskState.PENDING_APPROVAL:
            return self.is_done and not self.approved
        return True

    def summary(self) -> dict[str, str]:
        return {"id": self.id, "title": self.title, "description": self.description}

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "approved": self.approved,
            "completedDetails": self.completed_details,
        }
        if self.tool_recommendations is not None:
            out["toolRecommendations"] = self.tool_recommendations
        if self.rule_recommendations is not None:
            out["ruleRecommendations"] = self.rule_recommendations
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Task:
        return cls(
            id=str(data.get("id", "")),
            title=str(data.get("title", "")),
            description=str(data.get("description", "")),
            status=TaskStatus.from_file(data.get("status")),
            approved=bool(data.get("approved", False)),
            completed_details=str(data.get("completedDetails") or ""),
            tool_recommendations=_opt_str(data.get("toolRecommendations")),
            rule_recommendations=_opt_str(data.get("ruleRecommendations")),
        )


@dataclass(slots=True)
class Project:
    project_id: str
    initial_prompt: str
    project_plan: str
    tasks: list[Task] = field(default_factory=list)
    completed: bool = False
    auto_approve: bool = False

    def find_task(self, task_id: str) -> Task | None:
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None

    def all_done(self) -> bool:
        return all(t.is_done for t in self.tasks)

    def all_approved(self) -> bool:
        return all(t.is_finished for t in self.tasks)

    def count_done(self) -> int:
        return sum(1 for t in self.tasks if t.is_done)

    def count_approved(self) -> int:
        return sum(1 for t in self.tasks if t.approved)

    def count_finished(self) -> int:
        return sum(1 for t in self.tasks if t.is_finished)

    def matches_state(self, state: TaskState) -> bool:
        if state == TaskState.OPEN:
            return not self.completed
        if state == TaskState.COMPLETED:
            return self.completed
        if state == TaskState.PENDING_APPROVAL:
            return not self.completed and self.all_done()
        return True

    def summary(self) -> dict[str, Any]:
        return {
            "projectId": self.project_id,
            "initialPrompt": self.initial_prompt,
            "totalTasks": len(self.tasks),
            "completedTasks": self.count_done(),
            "approvedTasks": self.count_approved(),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "projectId": self.project_id,
            "initialPrompt": self.initial_prompt,
            "projectPlan": self.project_plan,
            "tasks": [t.to_dict() for t in self.tasks],
            "completed": self.completed,
            "autoApprove": self.auto_approve,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Project:
        initial_prompt = str(data.get("initialPrompt", ""))
        plan = data.get("projectPlan")
        raw_tasks = data.get("tasks") or []
        return cls(
            project_id=str(data.get("projectId", "")),
            initial_prompt=initial_prompt,
            project_plan=initial_prompt if plan is None else str(plan),
            tasks=[Task.from_dict(t) for t in raw_tasks if isinstance(t, Mapping)],
            completed=bool(data.get("completed", False)),
            auto_approve=bool(data.get("autoApprove", False)),
        )


@dataclass(slots=True)
class TaskFile:
    """The whole on-disk document: {"projects": [...]}."""

    projects: list[Project] = field(default_factory=list)

    def find_project(self, project_id: str) -> Project | None:
        for p in self.projects:
            if p.project_id == project_id:
                return p
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"projects": [p.to_dict() for p in self.projects]}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TaskFile:
        raw_projects = data.get("projects") or []
        return cls(projects=[Project.from_dict(p) for p in raw_projects if isinstance(p, Mapping)])
