"""Command line interface for docflow."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from docflow import (
    AnalyticsService,
    CompleteTaskRequest,
    CreateDefinitionRequest,
    CreateInstanceRequest,
    DefinitionService,
    ExecutionEngine,
    Outcome,
    PermissionType,
    Priority,
    ReassignTaskRequest,
    ValidationResult,
    WorkflowStatus,
    WorkflowTask,
    get_repository,
    load_config,
    validate_graph,
)
from docflow.cli_utils.loader import graph_payload, load_document, load_graph
from docflow.constants import DEFAULT_ANALYTICS_WINDOW_DAYS, DEFAULT_CATEGORY
from docflow.contracts import utcnow
from docflow.errors import GraphParseError
from docflow.graph import parse_graph
from docflow.security import get_role_resolver

app = typer.Typer(help="CLI for docflow workflows")

# Command groups
definition_app = typer.Typer(help="Commands for managing workflow definitions")
instance_app = typer.Typer(help="Commands for running workflow instances")
task_app = typer.Typer(help="Commands for working on tasks")
permission_app = typer.Typer(help="Commands for sharing definitions")
engine_app = typer.Typer(help="Commands for the background engine")
analytics_app = typer.Typer(help="Commands for workflow reporting")

app.add_typer(definition_app, name="definition")
app.add_typer(instance_app, name="instance")
app.add_typer(task_app, name="task")
app.add_typer(permission_app, name="permission")
app.add_typer(engine_app, name="engine")
app.add_typer(analytics_app, name="analytics")


@dataclass
class _Services:
    engine: ExecutionEngine
    definitions: DefinitionService
    analytics: AnalyticsService


def _services() -> _Services:
    config = load_config()
    repository = get_repository()
    engine = ExecutionEngine(repository, get_role_resolver(config), config)
    return _Services(
        engine=engine,
        definitions=DefinitionService(repository, engine.policy),
        analytics=AnalyticsService(repository),
    )


def _json_option(value: Optional[str], name: str) -> Dict[str, Any]:
    if not value:
        return {}
    try:
        data = json.loads(value)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"{name} is not valid JSON: {exc}")
    if not isinstance(data, dict):
        raise typer.BadParameter(f"{name} must be a JSON object")
    return data


def _echo_validation(result: ValidationResult) -> None:
    for issue in result.errors:
        typer.secho(f"error {issue.code}: {issue.message}", fg=typer.colors.RED)
    for issue in result.warnings:
        typer.secho(f"warning {issue.code}: {issue.message}", fg=typer.colors.YELLOW)


def _unwrap(outcome: Outcome) -> Any:
    """Return the outcome value or print its message and exit with code 1."""
    if not outcome.ok:
        typer.secho(outcome.message, fg=typer.colors.RED)
        if outcome.validation is not None:
            _echo_validation(outcome.validation)
        raise typer.Exit(code=1)
    return outcome.value


def _echo_task(task: WorkflowTask) -> None:
    assignee = task.assigned_to or (
        f"role:{task.assigned_role}" if task.assigned_role else "-"
    )
    due = task.due_date.isoformat() if task.due_date else "-"
    typer.echo(
        f"{task.id}\t{task.name}\t{task.status.value}\t{task.priority.value}"
        f"\t{assignee}\tdue {due}"
    )


@app.callback()
def main() -> None:
    """docflow CLI entry point."""
    config = load_config()
    logging.basicConfig(level=config.logging.level.upper())


# ----------------------------------------------------------------------
# Definitions
@definition_app.command("create")
def definition_create(
    path: Path,
    tenant: str = typer.Option(..., help="Owning tenant"),
    user: str = typer.Option(..., help="Creating user"),
    name: Optional[str] = typer.Option(None, help="Overrides the name in the file"),
    category: Optional[str] = None,
) -> None:
    """
    Create a workflow definition from a JSON or YAML file.

    The file holds either a bare graph or a definition document with a
    nested ``graph`` key.

    Example:
        docflow definition create ./approval.yaml --tenant acme --user alice
    """
    try:
        document = load_document(path)
        graph = parse_graph(graph_payload(document))
    except (GraphParseError, OSError) as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    request = CreateDefinitionRequest(
        name=name or document.get("name") or path.stem,
        description=document.get("description"),
        graph=graph,
        category=category or document.get("category") or DEFAULT_CATEGORY,
        tags=document.get("tags") or [],
    )
    services = _services()
    definition = asyncio.run(
        services.definitions.create_definition(tenant, user, request)
    )
    typer.echo(f"Created definition {definition.id} ({definition.name} v{definition.version})")
    _echo_validation(validate_graph(definition.graph))


@definition_app.command("list")
def definition_list(
    tenant: str = typer.Option(...),
    category: Optional[str] = None,
    search: Optional[str] = None,
    include_inactive: bool = typer.Option(False, "--all", help="Include inactive"),
) -> None:
    """List workflow definitions of a tenant ordered by name."""
    services = _services()
    definitions = asyncio.run(
        services.definitions.list_definitions(
            tenant, category=category, search=search, include_inactive=include_inactive
        )
    )
    if not definitions:
        typer.echo("No definitions found")
        return
    for d in definitions:
        state = "active" if d.is_active else "inactive"
        typer.echo(f"{d.id}\t{d.name}\tv{d.version}\t{d.category}\t{state}")


@definition_app.command("show")
def definition_show(definition_id: str, user: str = typer.Option(...)) -> None:
    """Show a definition with its nodes and connections."""
    services = _services()
    definition = _unwrap(
        asyncio.run(services.definitions.get_definition(definition_id, user))
    )
    typer.echo(f"Definition {definition.id}: {definition.name} v{definition.version}")
    if definition.description:
        typer.echo(definition.description)
    for node in definition.graph.nodes:
        typer.echo(f"- {node.id} [{node.type.value}] {node.name}")
    for conn in definition.graph.connections:
        condition = f" if {conn.condition}" if conn.condition else ""
        typer.echo(f"  {conn.source_node_id} -> {conn.target_node_id}{condition}")


@definition_app.command("validate")
def definition_validate(path: Path) -> None:
    """
    Validate a graph file without storing it.

    Exits with code 1 when the graph has errors. Warnings are printed but do
    not fail the command.
    """
    try:
        graph = load_graph(path)
    except (GraphParseError, OSError) as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    result = validate_graph(graph)
    _echo_validation(result)
    if not result.is_valid:
        raise typer.Exit(code=1)
    typer.echo("Definition is valid")


# ----------------------------------------------------------------------
# Instances
@instance_app.command("start")
def instance_start(
    definition_id: str,
    user: str = typer.Option(...),
    document: Optional[str] = typer.Option(None, help="Document the instance is about"),
    assign: Optional[str] = typer.Option(None, help="Default assignee for tasks"),
    priority: Priority = Priority.NORMAL,
    due_in_hours: Optional[float] = None,
    context: Optional[str] = typer.Option(None, help="Initial context as JSON"),
) -> None:
    """
    Start an instance of a definition.

    Example:
        docflow instance start 5f0c... --user alice --document doc-42 \\
            --context '{"amount": 1200}'
    """
    due_date = utcnow() + timedelta(hours=due_in_hours) if due_in_hours else None
    request = CreateInstanceRequest(
        document_id=document,
        assigned_to=assign,
        priority=priority,
        due_date=due_date,
        context=_json_option(context, "--context"),
    )
    services = _services()
    instance = _unwrap(
        asyncio.run(services.engine.create_instance(definition_id, user, request))
    )
    typer.echo(f"Started instance {instance.id}: {instance.status.value} at {instance.current_state}")


@instance_app.command("list")
def instance_list(
    tenant: str = typer.Option(...),
    user: str = typer.Option(...),
    definition: Optional[str] = None,
    status: Optional[WorkflowStatus] = None,
    mine: bool = typer.Option(False, help="Only instances assigned to the user"),
) -> None:
    """List instances of a tenant, newest first."""
    services = _services()
    instances = asyncio.run(
        services.engine.list_instances(
            tenant,
            user,
            definition_id=definition,
            status=status,
            assigned_to_me=mine,
        )
    )
    if not instances:
        typer.echo("No instances found")
        return
    for i in instances:
        typer.echo(f"{i.id}\t{i.status.value}\t{i.current_state}\t{i.started_at.isoformat()}")


@instance_app.command("show")
def instance_show(instance_id: str, user: str = typer.Option(...)) -> None:
    """Show an instance with its tasks and history."""
    services = _services()
    details = _unwrap(asyncio.run(services.engine.get_instance(instance_id, user)))
    instance = details.instance
    typer.echo(f"Instance {instance.id}: {instance.status.value}")
    typer.echo(f"Definition: {instance.definition_id} v{instance.definition_version}")
    typer.echo(f"Current state: {instance.current_state}")
    if instance.context:
        typer.echo(f"Context: {json.dumps(instance.context, default=str)}")
    if details.tasks:
        typer.echo("Tasks:")
        for task in details.tasks:
            _echo_task(task)
    typer.echo("History:")
    for entry in details.history:
        comment = f" ({entry.comments})" if entry.comments else ""
        typer.echo(
            f"- {entry.timestamp.isoformat()} {entry.action}: "
            f"{entry.from_state} -> {entry.to_state} by {entry.actor}{comment}"
        )


@instance_app.command("pause")
def instance_pause(instance_id: str, user: str = typer.Option(...)) -> None:
    services = _services()
    instance = _unwrap(asyncio.run(services.engine.pause(instance_id, user)))
    typer.echo(f"Instance {instance.id}: {instance.status.value}")


@instance_app.command("resume")
def instance_resume(instance_id: str, user: str = typer.Option(...)) -> None:
    services = _services()
    instance = _unwrap(asyncio.run(services.engine.resume(instance_id, user)))
    typer.echo(f"Instance {instance.id}: {instance.status.value}")


@instance_app.command("cancel")
def instance_cancel(
    instance_id: str,
    user: str = typer.Option(...),
    reason: Optional[str] = None,
) -> None:
    services = _services()
    instance = _unwrap(asyncio.run(services.engine.cancel(instance_id, user, reason)))
    typer.echo(f"Instance {instance.id}: {instance.status.value}")


# ----------------------------------------------------------------------
# Tasks
@task_app.command("pending")
def task_pending(user: str = typer.Option(...), tenant: str = typer.Option(...)) -> None:
    """List pending tasks the user can complete."""
    services = _services()
    tasks = asyncio.run(services.engine.tasks.pending_tasks(user, tenant))
    if not tasks:
        typer.echo("No pending tasks")
        return
    for task in tasks:
        _echo_task(task)


@task_app.command("overdue")
def task_overdue(tenant: str = typer.Option(...)) -> None:
    services = _services()
    tasks = asyncio.run(services.engine.tasks.overdue_tasks(tenant))
    if not tasks:
        typer.echo("No overdue tasks")
        return
    for task in tasks:
        _echo_task(task)


@task_app.command("complete")
def task_complete(
    task_id: str,
    user: str = typer.Option(...),
    action: str = typer.Option(..., help="Outcome such as approve or reject"),
    comments: Optional[str] = None,
    data: Optional[str] = typer.Option(None, help="Task data as JSON"),
) -> None:
    """
    Complete a task and let the instance continue.

    Example:
        docflow task complete 9a1b... --user bob --action approve \\
            --data '{"decision": "approve"}'
    """
    request = CompleteTaskRequest(
        action=action, comments=comments, task_data=_json_option(data, "--data")
    )
    services = _services()
    instance = _unwrap(
        asyncio.run(services.engine.tasks.complete_task(task_id, user, request))
    )
    typer.echo(f"Task {task_id} completed")
    typer.echo(f"Instance {instance.id}: {instance.status.value} at {instance.current_state}")


@task_app.command("reassign")
def task_reassign(
    task_id: str,
    user: str = typer.Option(...),
    to: str = typer.Option(..., help="New assignee"),
    reason: Optional[str] = None,
) -> None:
    request = ReassignTaskRequest(assigned_to=to, reason=reason)
    services = _services()
    task = _unwrap(asyncio.run(services.engine.tasks.reassign_task(task_id, user, request)))
    typer.echo(f"Task {task.id} assigned to {task.assigned_to}")


# ----------------------------------------------------------------------
# Permissions
@permission_app.command("grant")
def permission_grant(
    definition_id: str,
    user: str = typer.Option(..., help="Granting user, needs Admin"),
    to_user: Optional[str] = None,
    role: Optional[str] = None,
    permission: PermissionType = typer.Option(PermissionType.VIEW, "--type"),
) -> None:
    services = _services()
    grant = _unwrap(
        asyncio.run(
            services.engine.policy.grant_permission(
                definition_id,
                user,
                user_id=to_user,
                role=role,
                permission_type=permission,
            )
        )
    )
    typer.echo(f"Granted {grant.permission_type.value} ({grant.id})")


@permission_app.command("revoke")
def permission_revoke(permission_id: str, user: str = typer.Option(...)) -> None:
    services = _services()
    grant = _unwrap(
        asyncio.run(services.engine.policy.revoke_permission(permission_id, user))
    )
    typer.echo(f"Revoked {grant.id}")


@permission_app.command("list")
def permission_list(definition_id: str, user: str = typer.Option(...)) -> None:
    services = _services()
    grants = _unwrap(
        asyncio.run(services.engine.policy.list_permissions(definition_id, user))
    )
    for grant in grants:
        subject = f"user:{grant.user_id}" if grant.user_id else f"role:{grant.role}"
        state = "active" if grant.is_active else "revoked"
        typer.echo(f"{grant.id}\t{subject}\t{grant.permission_type.value}\t{state}")


# ----------------------------------------------------------------------
# Engine
@engine_app.command("sweep")
def engine_sweep(
    lifespan: Optional[float] = typer.Option(
        None, help="Keep sweeping for this many seconds"
    ),
    interval: Optional[float] = typer.Option(
        None, help="Seconds between sweeps (default: engine.sweep_interval)"
    ),
) -> None:
    """
    Run the periodic sweep that flags overdue tasks and expires instances.

    Without ``--lifespan`` a single pass is made.

    Example:
        docflow engine sweep
        docflow engine sweep --lifespan 3600 --interval 30
    """
    services = _services()
    if lifespan is None:
        report = asyncio.run(services.engine.process_pending_steps())
        typer.echo(
            f"Scanned {report.scanned} instances, flagged {report.tasks_flagged} "
            f"overdue tasks, failed {report.instances_failed} instances"
        )
        if report.errors:
            typer.secho(f"{report.errors} instances raised errors", fg=typer.colors.RED)
        return
    sweeps = asyncio.run(services.engine.run_sweeper(interval, lifespan))
    typer.echo(f"Completed {sweeps} sweeps")


# ----------------------------------------------------------------------
# Analytics
@analytics_app.command("summary")
def analytics_summary(
    tenant: str = typer.Option(...),
    definition: Optional[str] = None,
    days: int = typer.Option(DEFAULT_ANALYTICS_WINDOW_DAYS, help="Window length in days"),
) -> None:
    services = _services()
    end = utcnow()
    summary = asyncio.run(
        services.analytics.get_analytics(
            tenant, end - timedelta(days=days), end, definition_id=definition
        )
    )
    typer.echo(f"Definitions: {summary.total_definitions}")
    typer.echo(
        f"Instances: {summary.active_instances} active, "
        f"{summary.completed_instances} completed, {summary.failed_instances} failed"
    )
    typer.echo(f"Tasks: {summary.pending_tasks} pending, {summary.overdue_tasks} overdue")
    typer.echo(f"Average completion: {summary.average_completion_hours:.2f}h")
    typer.echo(f"Success rate: {summary.success_rate:.1f}%")


@analytics_app.command("performance")
def analytics_performance(
    tenant: str = typer.Option(...),
    days: int = typer.Option(DEFAULT_ANALYTICS_WINDOW_DAYS, help="Window length in days"),
) -> None:
    services = _services()
    end = utcnow()
    metrics = asyncio.run(
        services.analytics.get_performance_metrics(
            tenant, end - timedelta(days=days), end
        )
    )
    for m in metrics:
        typer.echo(
            f"{m.definition_id}\t{m.name}\t{m.execution_count} runs"
            f"\t{m.success_rate:.1f}%\t{m.average_completion_hours:.2f}h"
        )


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
