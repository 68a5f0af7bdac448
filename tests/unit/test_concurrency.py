"""Tests for lost write races between the engine and a concurrent writer."""

import pytest

from docflow.contracts import (
    CompleteTaskRequest,
    CreateInstanceRequest,
    ReassignTaskRequest,
    TaskStatus,
    WorkflowStatus,
)
from docflow.history import HistoryAction
from docflow.outcomes import OutcomeKind


async def _start(engine, definition, **kwargs):
    outcome = await engine.create_instance(
        definition.id, "owner", CreateInstanceRequest(**kwargs)
    )
    assert outcome.ok, outcome.message
    return outcome.value


def rival_instance_write(repo, monkeypatch):
    """Save the stored instance once more right before the next engine write."""
    original = repo.update_instance
    armed = [True]

    async def update_instance(instance):
        if armed:
            armed.clear()
            rival = await repo.get_instance(instance.id)
            await original(rival)
        await original(instance)

    monkeypatch.setattr(repo, "update_instance", update_instance)


def rival_task_completion(repo, monkeypatch, user="quinn"):
    """Complete the task behind the engine's back right before its next write."""
    original = repo.update_task
    armed = [True]

    async def update_task(task, expected_status=None):
        if armed:
            armed.clear()
            rival = await repo.get_task(task.id)
            rival.status = TaskStatus.COMPLETED
            rival.completed_by = user
            await original(rival, expected_status=TaskStatus.PENDING)
        await original(task, expected_status=expected_status)

    monkeypatch.setattr(repo, "update_task", update_task)


@pytest.mark.asyncio
async def test_create_instance_conflict_creates_no_task(
    engine, repo, make_definition, monkeypatch
):
    definition = await make_definition()
    rival_instance_write(repo, monkeypatch)

    outcome = await engine.create_instance(
        definition.id, "owner", CreateInstanceRequest(assigned_to="alice")
    )
    assert outcome.kind is OutcomeKind.CONFLICT

    (stored,) = await repo.list_instances()
    assert stored.current_state == "s1"
    assert await repo.list_tasks(instance_id=stored.id) == []
    history = await engine.history.timeline(stored.id)
    assert [h.action for h in history] == [HistoryAction.CREATED]


@pytest.mark.asyncio
async def test_execute_step_conflict_leaves_instance_in_place(
    engine, repo, make_definition, monkeypatch
):
    definition = await make_definition()
    instance = await _start(engine, definition, assigned_to="alice")
    before = await engine.history.timeline(instance.id)
    rival_instance_write(repo, monkeypatch)

    outcome = await engine.execute_step(instance.id, "e1", "owner")
    assert outcome.kind is OutcomeKind.CONFLICT

    stored = await repo.get_instance(instance.id)
    assert stored.status is WorkflowStatus.ACTIVE
    assert stored.current_state == "t1"
    assert await engine.history.timeline(instance.id) == before


@pytest.mark.asyncio
async def test_pause_conflict_records_nothing(engine, repo, make_definition, monkeypatch):
    definition = await make_definition()
    instance = await _start(engine, definition, assigned_to="alice")
    before = await engine.history.timeline(instance.id)
    rival_instance_write(repo, monkeypatch)

    outcome = await engine.pause(instance.id, "owner")
    assert outcome.kind is OutcomeKind.CONFLICT

    stored = await repo.get_instance(instance.id)
    assert stored.status is WorkflowStatus.ACTIVE
    assert await engine.history.timeline(instance.id) == before
    assert (await engine.pause(instance.id, "owner")).ok


@pytest.mark.asyncio
async def test_complete_task_conflict_when_task_closed_concurrently(
    engine, repo, make_definition, monkeypatch
):
    definition = await make_definition()
    instance = await _start(engine, definition, assigned_to="alice")
    (task,) = await engine.tasks.tasks_for_instance(instance.id)
    rival_task_completion(repo, monkeypatch)

    outcome = await engine.tasks.complete_task(
        task.id, "alice", CompleteTaskRequest(action="approve")
    )
    assert outcome.kind is OutcomeKind.CONFLICT

    stored = await repo.get_task(task.id)
    assert stored.completed_by == "quinn"
    actions = [h.action for h in await engine.history.timeline(instance.id)]
    assert "TaskCompleted:approve" not in actions
    assert (await repo.get_instance(instance.id)).current_state == "t1"


@pytest.mark.asyncio
async def test_reassign_conflict_keeps_assignee(engine, repo, make_definition, monkeypatch):
    definition = await make_definition()
    instance = await _start(engine, definition, assigned_to="alice")
    (task,) = await engine.tasks.tasks_for_instance(instance.id)
    rival_task_completion(repo, monkeypatch, user="alice")

    outcome = await engine.tasks.reassign_task(
        task.id, "owner", ReassignTaskRequest(assigned_to="bob")
    )
    assert outcome.kind is OutcomeKind.CONFLICT

    stored = await repo.get_task(task.id)
    assert stored.assigned_to == "alice"
    actions = [h.action for h in await engine.history.timeline(instance.id)]
    assert HistoryAction.TASK_REASSIGNED not in actions


@pytest.mark.asyncio
async def test_sweep_settles_completion_that_lost_instance_write(
    engine, repo, make_definition, monkeypatch
):
    definition = await make_definition()
    instance = await _start(engine, definition, assigned_to="alice")
    (task,) = await engine.tasks.tasks_for_instance(instance.id)
    rival_instance_write(repo, monkeypatch)

    outcome = await engine.tasks.complete_task(
        task.id, "alice", CompleteTaskRequest(action="approve")
    )
    assert outcome.kind is OutcomeKind.CONFLICT
    assert (await repo.get_task(task.id)).status is TaskStatus.COMPLETED
    stuck = await repo.get_instance(instance.id)
    assert stuck.status is WorkflowStatus.ACTIVE
    assert stuck.current_state == "t1"

    report = await engine.process_pending_steps()
    assert report.errors == 0

    settled = await repo.get_instance(instance.id)
    assert settled.status is WorkflowStatus.COMPLETED
    assert settled.current_state == "completed"
    assert settled.context["last_action"] == "approve"


@pytest.mark.asyncio
async def test_completion_during_pause_is_settled_after_resume(
    engine, repo, make_definition, monkeypatch
):
    definition = await make_definition()
    instance = await _start(engine, definition, assigned_to="alice")
    (task,) = await engine.tasks.tasks_for_instance(instance.id)

    original = repo.update_task
    armed = [True]

    async def update_task(task, expected_status=None):
        if armed and task.status is TaskStatus.COMPLETED:
            armed.clear()
            assert (await engine.pause(instance.id, "owner")).ok
        await original(task, expected_status=expected_status)

    monkeypatch.setattr(repo, "update_task", update_task)

    completed = await engine.tasks.complete_task(
        task.id, "alice", CompleteTaskRequest(action="approve")
    )
    assert completed.ok
    assert completed.value.status is WorkflowStatus.PAUSED
    assert (await repo.get_instance(instance.id)).current_state == "t1"

    # Paused instances are left alone by the sweep.
    assert (await engine.process_pending_steps()).scanned == 0

    resumed = await engine.resume(instance.id, "owner")
    assert resumed.ok
    assert resumed.value.current_state == "t1"

    report = await engine.process_pending_steps()
    assert report.errors == 0
    settled = await repo.get_instance(instance.id)
    assert settled.status is WorkflowStatus.COMPLETED
    assert settled.current_state == "completed"
    assert settled.context["t1.action"] == "approve"

    actions = [h.action for h in await engine.history.timeline(instance.id)]
    resume_at = actions.index(HistoryAction.RESUME)
    assert actions[resume_at + 1 :] == [HistoryAction.ADVANCED, HistoryAction.COMPLETED]
