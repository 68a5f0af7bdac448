"""End-to-end document approval on the SQLite backend."""

from datetime import timedelta

import pytest

from docflow import (
    AnalyticsService,
    CompleteTaskRequest,
    CreateDefinitionRequest,
    CreateInstanceRequest,
    DefinitionService,
    DocflowConfig,
    ExecutionEngine,
    PermissionType,
    ReassignTaskRequest,
    TaskStatus,
    WorkflowStatus,
)
from docflow.graph import parse_graph
from docflow.history import HistoryAction
from docflow.persistence import SQLiteWorkflowRepository
from docflow.security import StaticRoleResolver


@pytest.mark.asyncio
async def test_document_approval_end_to_end(tmp_path, approval, clock):
    repo = SQLiteWorkflowRepository(tmp_path / "docflow.db")
    roles = StaticRoleResolver({"rita": ["reviewer"]})
    engine = ExecutionEngine(repo, roles, DocflowConfig(), clock=clock)
    definitions = DefinitionService(repo, engine.policy, clock=clock)

    definition = await definitions.create_definition(
        "acme",
        "owner",
        CreateDefinitionRequest(name="Contract approval", graph=parse_graph(approval)),
    )
    await engine.policy.grant_permission(
        definition.id, "owner", role="reviewer", permission_type=PermissionType.VIEW
    )
    await engine.policy.grant_permission(
        definition.id, "owner", user_id="clerk", permission_type=PermissionType.EXECUTE
    )

    started = await engine.create_instance(
        definition.id,
        "clerk",
        CreateInstanceRequest(document_id="contract-7", context={"amount": 1200}),
    )
    assert started.ok, started.message
    instance = started.value
    assert instance.current_state == "review"

    (review,) = await engine.tasks.pending_tasks("rita", "acme")
    assert review.due_date == clock() + timedelta(hours=24)

    clock.advance(hours=1)
    done = await engine.tasks.complete_task(
        review.id,
        "rita",
        CompleteTaskRequest(action="approve", task_data={"reviewed_pages": 12}),
    )
    assert done.ok
    assert done.value.current_state == "publish"
    assert done.value.context["reviewed_pages"] == 12

    (publish,) = await engine.tasks.pending_tasks("publisher", "acme")
    moved = await engine.tasks.reassign_task(
        publish.id, "owner", ReassignTaskRequest(assigned_to="pat", reason="cover")
    )
    assert moved.ok

    clock.advance(hours=1)
    finished = await engine.tasks.complete_task(
        publish.id, "pat", CompleteTaskRequest(action="published")
    )
    assert finished.value.status is WorkflowStatus.COMPLETED
    assert finished.value.current_state == "completed"

    details = (await engine.get_instance(instance.id, "rita")).value
    assert [t.status for t in details.tasks] == [TaskStatus.COMPLETED, TaskStatus.COMPLETED]
    actions = [h.action for h in details.history]
    assert actions[0] == HistoryAction.CREATED
    assert "TaskCompleted:approve" in actions
    assert HistoryAction.TASK_REASSIGNED in actions
    assert actions[-1] == HistoryAction.COMPLETED

    summary = await AnalyticsService(repo, clock=clock).get_analytics("acme")
    assert summary.completed_instances == 1
    assert summary.success_rate == 100.0
    assert summary.average_completion_hours == pytest.approx(2.0)

    deleted = await definitions.delete_definition(definition.id, "owner")
    assert deleted.ok
