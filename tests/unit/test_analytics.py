from datetime import timedelta

import pytest

from docflow.analytics import AnalyticsService
from docflow.contracts import CompleteTaskRequest, CreateInstanceRequest


async def _run(engine, definition, complete_with=None, clock=None, hours=0, **kwargs):
    instance = (
        await engine.create_instance(
            definition.id, "owner", CreateInstanceRequest(assigned_to="alice", **kwargs)
        )
    ).value
    if complete_with is not None:
        if hours:
            clock.advance(hours=hours)
        (task,) = await engine.tasks.tasks_for_instance(instance.id)
        await engine.tasks.complete_task(
            task.id, "alice", CompleteTaskRequest(action=complete_with)
        )
    return instance


@pytest.mark.asyncio
async def test_tenant_summary(repo, engine, make_definition, clock, approval):
    linear = await make_definition()
    routed = await make_definition(approval, name="Approval")
    await make_definition(name="Dormant", is_active=False)

    await _run(engine, linear, "done", clock, hours=2)
    await _run(engine, linear, "done", clock, hours=4)
    await _run(engine, linear, due_date=clock() - timedelta(hours=1))
    failed = (
        await engine.create_instance(routed.id, "owner", CreateInstanceRequest())
    ).value
    (review,) = await engine.tasks.tasks_for_instance(failed.id)
    await engine.tasks.complete_task(review.id, "rita", CompleteTaskRequest(action="maybe"))

    analytics = AnalyticsService(repo, clock=clock)
    summary = await analytics.get_analytics("acme")
    assert summary.total_definitions == 2
    assert summary.completed_instances == 2
    assert summary.failed_instances == 1
    assert summary.active_instances == 1
    assert summary.pending_tasks == 1
    assert summary.overdue_tasks == 1
    assert summary.success_rate == pytest.approx(200 / 3)
    assert summary.average_completion_hours == pytest.approx(3.0)

    only_linear = await analytics.get_analytics("acme", definition_id=linear.id)
    assert only_linear.total_definitions == 1
    assert only_linear.failed_instances == 0
    assert only_linear.success_rate == 100.0


@pytest.mark.asyncio
async def test_window_excludes_old_instances(repo, engine, make_definition, clock):
    definition = await make_definition()
    await _run(engine, definition, "done")
    clock.advance(days=45)

    analytics = AnalyticsService(repo, clock=clock)
    summary = await analytics.get_analytics("acme")
    assert summary.completed_instances == 0
    assert summary.success_rate == 0.0

    wide = await analytics.get_analytics("acme", start=clock() - timedelta(days=60))
    assert wide.completed_instances == 1


@pytest.mark.asyncio
async def test_performance_metrics_busiest_first(repo, engine, make_definition, clock):
    quiet = await make_definition(name="Quiet")
    busy = await make_definition(name="Busy")
    await _run(engine, quiet, "done")
    for _ in range(3):
        await _run(engine, busy, "done", clock, hours=1)

    metrics = await AnalyticsService(repo, clock=clock).get_performance_metrics("acme")
    assert [m.name for m in metrics] == ["Busy", "Quiet"]
    assert metrics[0].execution_count == 3
    assert metrics[0].successful == 3
    assert metrics[0].average_completion_hours == pytest.approx(1.0)
    assert metrics[0].last_executed is not None
