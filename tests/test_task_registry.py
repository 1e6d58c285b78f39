# tests/test_task_registry.py

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from taskqueue_mcp.core.errors import AppError, ErrorCode
from taskqueue_mcp.tasks.task_models import TaskStatus
from taskqueue_mcp.tasks.task_registry import AWAITING_PROJECT_APPROVAL, TaskRegistry
from taskqueue_mcp.tasks.task_store import TaskFileStore

from .fakes import RecordingStatusSink

ONE_TASK = [{"title": "T1", "description": "D1"}]
TWO_TASKS = [{"title": "T1", "description": "D1"}, {"title": "T2", "description": "D2"}]


async def _expect(code: ErrorCode, coro) -> AppError:
    with pytest.raises(AppError) as ei:
        await coro
    assert ei.value.code == code
    return ei.value


async def _finish(registry: TaskRegistry, project_id: str, task_id: str) -> None:
    await registry.update_task(project_id, task_id, status="in progress")
    await registry.update_task(project_id, task_id, status="done", completed_details="x")


# ---- scenarios ----


@pytest.mark.asyncio
async def test_create_project_and_next_task(registry: TaskRegistry, tasks_path: Path) -> None:
    created = await registry.create_project("P", ONE_TASK)
    assert created["projectId"] == "proj-1"
    assert created["totalTasks"] == 1
    assert created["tasks"] == [{"id": "task-1", "title": "T1", "description": "D1"}]

    project = await registry.read_project("proj-1")
    assert project["projectPlan"] == "P"
    assert project["completed"] is False
    task = project["tasks"][0]
    assert task["status"] == "not started"
    assert task["approved"] is False

    nxt = await registry.get_next_task("proj-1")
    assert nxt["task"]["id"] == "task-1"

    on_disk = json.loads(tasks_path.read_text("utf-8"))
    assert on_disk["projects"][0]["tasks"][0]["completedDetails"] == ""


@pytest.mark.asyncio
async def test_full_approval_flow(registry: TaskRegistry, sink: RecordingStatusSink) -> None:
    await registry.create_project("P", ONE_TASK)
    await _finish(registry, "proj-1", "task-1")

    approved = await registry.approve_task_completion("proj-1", "task-1")
    assert approved["task"]["approved"] is True
    assert approved["task"]["completedDetails"] == "x"

    done = await registry.approve_project_completion("proj-1")
    assert done["projectId"] == "proj-1"
    assert (await registry.read_project("proj-1"))["completed"] is True
    assert sink.clears == 1

    await _expect(ErrorCode.PROJECT_ALREADY_COMPLETED, registry.approve_project_completion("proj-1"))


@pytest.mark.asyncio
async def test_done_requires_completed_details(registry: TaskRegistry) -> None:
    await registry.create_project("P", ONE_TASK)
    await registry.update_task("proj-1", "task-1", status="in progress")

    await _expect(ErrorCode.MISSING_PARAMETER, registry.update_task("proj-1", "task-1", status="done"))
    await _expect(
        ErrorCode.MISSING_PARAMETER,
        registry.update_task("proj-1", "task-1", status="done", completed_details="   "),
    )
    # nothing persisted
    assert (await registry.read_project("proj-1"))["tasks"][0]["status"] == "in progress"


@pytest.mark.asyncio
async def test_auto_approve_on_done(registry: TaskRegistry) -> None:
    await registry.create_project("P", ONE_TASK, auto_approve=True)
    await registry.update_task("proj-1", "task-1", status="in progress")
    task = await registry.update_task("proj-1", "task-1", status="done", completed_details="ok")

    assert task["approved"] is True
    await registry.approve_project_completion("proj-1")


@pytest.mark.asyncio
async def test_two_instances_never_reuse_ids(tasks_path: Path) -> None:
    a = TaskRegistry(TaskFileStore(tasks_path))
    b = TaskRegistry(TaskFileStore(tasks_path))

    first = await a.create_project("A", ONE_TASK)
    second = await b.create_project("B", TWO_TASKS)
    third = await a.create_project("C", ONE_TASK)

    assert first["projectId"] == "proj-1"
    assert second["projectId"] == "proj-2"
    assert [t["id"] for t in second["tasks"]] == ["task-2", "task-3"]
    assert third["projectId"] == "proj-3"
    assert third["tasks"][0]["id"] == "task-4"


@pytest.mark.asyncio
async def test_delete_task_rules(registry: TaskRegistry) -> None:
    await registry.create_project("P", TWO_TASKS)
    await _finish(registry, "proj-1", "task-1")
    await registry.approve_task_completion("proj-1", "task-1")

    await _expect(ErrorCode.CANNOT_MODIFY_APPROVED_TASK, registry.delete_task("proj-1", "task-1"))

    await registry.delete_task("proj-1", "task-2")
    listed = await registry.list_tasks("proj-1")
    assert [t["id"] for t in listed["tasks"]] == ["task-1"]


# ---- transitions and invariants ----


@pytest.mark.asyncio
async def test_transition_table(registry: TaskRegistry) -> None:
    await registry.create_project("P", ONE_TASK)

    await _expect(
        ErrorCode.INVALID_ARGUMENT,
        registry.update_task("proj-1", "task-1", status="done", completed_details="x"),
    )

    await registry.update_task("proj-1", "task-1", status="in progress")
    await registry.update_task("proj-1", "task-1", status="done", completed_details="x")
    back = await registry.update_task("proj-1", "task-1", status="in progress")
    assert back["completedDetails"] == ""
    again = await registry.update_task("proj-1", "task-1", status="done", completed_details="y")
    assert again["completedDetails"] == "y"

    # done -> not started skips a step
    await _expect(ErrorCode.INVALID_ARGUMENT, registry.update_task("proj-1", "task-1", status="not started"))


@pytest.mark.asyncio
async def test_unknown_status_is_invalid_argument(registry: TaskRegistry) -> None:
    await registry.create_project("P", ONE_TASK)
    await _expect(ErrorCode.INVALID_ARGUMENT, registry.update_task("proj-1", "task-1", status="finished"))


@pytest.mark.asyncio
async def test_done_keeps_stored_details_when_not_provided(registry: TaskRegistry) -> None:
    await registry.create_project("P", ONE_TASK)
    await _finish(registry, "proj-1", "task-1")

    task = await registry.update_task("proj-1", "task-1", title="Renamed")
    assert task["title"] == "Renamed"
    assert task["completedDetails"] == "x"


@pytest.mark.asyncio
async def test_approved_task_is_immutable(registry: TaskRegistry) -> None:
    await registry.create_project("P", ONE_TASK)
    await _finish(registry, "proj-1", "task-1")
    await registry.approve_task_completion("proj-1", "task-1")

    await _expect(
        ErrorCode.CANNOT_MODIFY_APPROVED_TASK,
        registry.update_task("proj-1", "task-1", description="changed"),
    )
    await _expect(
        ErrorCode.CANNOT_MODIFY_APPROVED_TASK,
        registry.update_task("proj-1", "task-1", status="in progress"),
    )
    task = (await registry.read_project("proj-1"))["tasks"][0]
    assert task["description"] == "D1"
    assert task["status"] == "done"


@pytest.mark.asyncio
async def test_double_approval_is_a_noop(registry: TaskRegistry, tasks_path: Path) -> None:
    await registry.create_project("P", ONE_TASK)
    await _finish(registry, "proj-1", "task-1")
    await registry.approve_task_completion("proj-1", "task-1")
    before = tasks_path.stat().st_mtime_ns

    again = await registry.approve_task_completion("proj-1", "task-1")
    assert again["task"]["approved"] is True
    assert tasks_path.stat().st_mtime_ns == before


@pytest.mark.asyncio
async def test_approve_requires_done(registry: TaskRegistry) -> None:
    await registry.create_project("P", ONE_TASK)
    await _expect(ErrorCode.TASK_NOT_DONE, registry.approve_task_completion("proj-1", "task-1"))


@pytest.mark.asyncio
async def test_project_completion_preconditions(registry: TaskRegistry) -> None:
    await registry.create_project("P", TWO_TASKS)
    await _finish(registry, "proj-1", "task-1")

    await _expect(ErrorCode.TASKS_NOT_ALL_DONE, registry.approve_project_completion("proj-1"))

    await _finish(registry, "proj-1", "task-2")
    await registry.approve_task_completion("proj-1", "task-1")
    await _expect(ErrorCode.TASKS_NOT_ALL_APPROVED, registry.approve_project_completion("proj-1"))

    await registry.approve_task_completion("proj-1", "task-2")
    await registry.approve_project_completion("proj-1")


@pytest.mark.asyncio
async def test_completed_project_rejects_mutations(registry: TaskRegistry) -> None:
    await registry.create_project("P", ONE_TASK, auto_approve=True)
    await _finish(registry, "proj-1", "task-1")
    await registry.approve_project_completion("proj-1")

    code = ErrorCode.PROJECT_ALREADY_COMPLETED
    await _expect(code, registry.add_tasks_to_project("proj-1", ONE_TASK))
    await _expect(code, registry.update_project("proj-1", initial_prompt="new"))
    await _expect(code, registry.get_next_task("proj-1"))
    await _expect(code, registry.delete_task("proj-1", "task-1"))


@pytest.mark.asyncio
async def test_lookup_misses(registry: TaskRegistry) -> None:
    await registry.create_project("P", ONE_TASK)

    await _expect(ErrorCode.PROJECT_NOT_FOUND, registry.read_project("proj-9"))
    await _expect(ErrorCode.PROJECT_NOT_FOUND, registry.update_task("proj-9", "task-1", title="x"))
    await _expect(ErrorCode.TASK_NOT_FOUND, registry.update_task("proj-1", "task-9", title="x"))
    await _expect(ErrorCode.TASK_NOT_FOUND, registry.open_task_details("task-9"))
    await _expect(ErrorCode.PROJECT_NOT_FOUND, registry.delete_project("proj-9"))


# ---- next task ----


@pytest.mark.asyncio
async def test_next_task_skips_finished_tasks(registry: TaskRegistry) -> None:
    await registry.create_project("P", TWO_TASKS)
    await _finish(registry, "proj-1", "task-1")

    # done but unapproved still counts as next
    assert (await registry.get_next_task("proj-1"))["task"]["id"] == "task-1"

    await registry.approve_task_completion("proj-1", "task-1")
    assert (await registry.get_next_task("proj-1"))["task"]["id"] == "task-2"

    await _finish(registry, "proj-1", "task-2")
    await registry.approve_task_completion("proj-1", "task-2")
    result = await registry.get_next_task("proj-1")
    assert result == {"message": AWAITING_PROJECT_APPROVAL, "allTasksDone": True}


@pytest.mark.asyncio
async def test_next_task_on_empty_project(registry: TaskRegistry) -> None:
    await registry.create_project("Empty", [])
    err = await _expect(ErrorCode.TASK_NOT_FOUND, registry.get_next_task("proj-1"))
    assert err.message == "Project has no tasks"


# ---- listing ----


@pytest.mark.asyncio
async def test_list_filters(registry: TaskRegistry) -> None:
    await registry.create_project("open one", TWO_TASKS)
    await registry.create_project("pending", ONE_TASK)
    await registry.create_project("finished", ONE_TASK, auto_approve=True)

    await _finish(registry, "proj-1", "task-1")
    await registry.approve_task_completion("proj-1", "task-1")
    await _finish(registry, "proj-2", "task-3")
    await _finish(registry, "proj-3", "task-4")
    await registry.approve_project_completion("proj-3")

    async def project_ids(state: str | None) -> list[str]:
        return [p["projectId"] for p in (await registry.list_projects(state))["projects"]]

    assert await project_ids(None) == ["proj-1", "proj-2", "proj-3"]
    assert await project_ids("open") == ["proj-1", "proj-2"]
    assert await project_ids("completed") == ["proj-3"]
    assert await project_ids("pending_approval") == ["proj-2"]

    async def task_ids(project_id: str | None, state: str | None) -> list[str]:
        return [t["id"] for t in (await registry.list_tasks(project_id, state))["tasks"]]

    assert await task_ids(None, "all") == ["task-1", "task-2", "task-3", "task-4"]
    assert await task_ids(None, "open") == ["task-2", "task-3"]
    assert await task_ids(None, "completed") == ["task-1", "task-4"]
    assert await task_ids(None, "pending_approval") == ["task-3"]
    assert await task_ids("proj-1", "open") == ["task-2"]

    summary = (await registry.list_projects())["projects"][0]
    assert summary == {
        "projectId": "proj-1",
        "initialPrompt": "open one",
        "totalTasks": 2,
        "completedTasks": 1,
        "approvedTasks": 1,
    }

    listed = await registry.list_tasks("proj-1")
    assert listed["message"] == "Tasks in the system for project proj-1:\n2 tasks found."


@pytest.mark.asyncio
async def test_unknown_filter_is_invalid_state(registry: TaskRegistry) -> None:
    await _expect(ErrorCode.INVALID_STATE, registry.list_projects("archived"))
    await _expect(ErrorCode.INVALID_STATE, registry.list_tasks(None, "archived"))


# ---- project and task edits ----


@pytest.mark.asyncio
async def test_update_and_delete_project(registry: TaskRegistry) -> None:
    await registry.create_project("P", ONE_TASK, project_plan="plan v1")

    updated = await registry.update_project("proj-1", project_plan="plan v2")
    assert updated["projectPlan"] == "plan v2"
    assert updated["initialPrompt"] == "P"

    await _expect(ErrorCode.INVALID_ARGUMENT, registry.update_project("proj-1"))

    deleted = await registry.delete_project("proj-1")
    assert deleted["status"] == "project_deleted"
    assert (await registry.list_projects())["projects"] == []

    # counters come from the file, so ids restart after the only project is gone
    recreated = await registry.create_project("Q", ONE_TASK)
    assert recreated["projectId"] == "proj-1"


@pytest.mark.asyncio
async def test_project_plan_can_be_cleared(registry: TaskRegistry) -> None:
    await registry.create_project("P", ONE_TASK, project_plan="plan v1")

    updated = await registry.update_project("proj-1", project_plan="")

    assert updated["projectPlan"] == ""
    assert (await registry.read_project("proj-1"))["projectPlan"] == ""


@pytest.mark.asyncio
async def test_add_tasks_and_open_details(registry: TaskRegistry) -> None:
    await registry.create_project("P", ONE_TASK)
    added = await registry.add_tasks_to_project(
        "proj-1",
        [{"title": "T2", "description": "D2", "toolRecommendations": "pytest"}],
    )
    assert added["newTasks"] == [{"id": "task-2", "title": "T2", "description": "D2"}]

    details = await registry.open_task_details("task-2")
    assert details["projectId"] == "proj-1"
    assert details["task"]["toolRecommendations"] == "pytest"
    assert "ruleRecommendations" not in details["task"]

    scoped = await registry.open_task_details("task-1", "proj-1")
    assert scoped["task"]["title"] == "T1"


@pytest.mark.asyncio
async def test_registry_sees_writes_from_other_instances(tasks_path: Path) -> None:
    writer = TaskRegistry(TaskFileStore(tasks_path))
    reader = TaskRegistry(TaskFileStore(tasks_path))

    await writer.create_project("P", ONE_TASK)
    assert (await reader.read_project("proj-1"))["tasks"][0]["id"] == "task-1"

    await writer.update_task("proj-1", "task-1", status="in progress")
    assert (await reader.get_next_task("proj-1"))["task"]["status"] == "in progress"


@pytest.mark.asyncio
async def test_concurrent_creates_get_unique_ids(registry: TaskRegistry) -> None:
    results = await asyncio.gather(*(registry.create_project(f"P{i}", ONE_TASK) for i in range(5)))

    assert sorted(r["projectId"] for r in results) == [f"proj-{i}" for i in range(1, 6)]
    task_ids = {r["tasks"][0]["id"] for r in results}
    assert len(task_ids) == 5
    assert len((await registry.list_projects())["projects"]) == 5


# ---- status notifications ----


@pytest.mark.asyncio
async def test_status_sink_notifications(registry: TaskRegistry, sink: RecordingStatusSink) -> None:
    await registry.create_project("P", ONE_TASK)

    # field edit while not started: no notification
    await registry.update_task("proj-1", "task-1", title="T1b")
    assert sink.updates == []

    await registry.update_task("proj-1", "task-1", status="in progress")
    await registry.update_task("proj-1", "task-1", description="more")
    await registry.update_task("proj-1", "task-1", status="in progress")

    assert [u.status for u in sink.updates] == [TaskStatus.IN_PROGRESS, TaskStatus.IN_PROGRESS]


@pytest.mark.asyncio
async def test_failed_update_does_not_notify(registry: TaskRegistry, sink: RecordingStatusSink) -> None:
    await registry.create_project("P", ONE_TASK)
    await _expect(ErrorCode.INVALID_ARGUMENT, registry.update_task("proj-1", "task-1", status="done"))
    assert sink.updates == []
