"""Execution engine: instance lifecycle and graph traversal."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel

from .config import DocflowConfig, load_config
from .constants import COMPLETED_STATE, DEFAULT_PAGE_SIZE, MAX_TRAVERSAL_STEPS
from .contracts import (
    CompleteTaskRequest,
    CreateInstanceRequest,
    DecisionNodeConfig,
    EndNodeConfig,
    InstanceDetails,
    NodeType,
    PermissionType,
    StartNodeConfig,
    TaskNodeConfig,
    TaskStatus,
    WorkflowInstance,
    WorkflowNode,
    WorkflowStatus,
    WorkflowTask,
    utcnow,
)
from .errors import ConcurrentModificationError
from .graph import select_connection, validate_graph
from .history import HistoryAction, HistoryRecorder
from .outcomes import Outcome
from .persistence import WorkflowRepository, get_repository
from .security import PermissionEvaluator, RoleResolver, StaticRoleResolver
from .tasks import TaskManager, paginate

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"

# Instances the sweep looks at and that interactive steps may drive.
_RUNNABLE = (WorkflowStatus.ACTIVE, WorkflowStatus.WAITING)


class SweepReport(BaseModel):
    """Summary of one :meth:`ExecutionEngine.process_pending_steps` pass."""

    scanned: int = 0
    tasks_flagged: int = 0
    instances_failed: int = 0
    errors: int = 0


class ExecutionEngine:
    """Drives workflow instances through their definition graph.

    Lifecycle: ``Active -> Paused | Completed | Cancelled | Failed`` and
    ``Paused -> Active | Cancelled``. Completed, Cancelled and Failed are
    terminal. Every write of an instance is a compare-and-swap on its
    revision; a lost race surfaces as a ``CONFLICT`` outcome.
    """

    def __init__(
        self,
        repository: WorkflowRepository | None = None,
        roles: RoleResolver | None = None,
        config: DocflowConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository or get_repository()
        self._settings = (config or load_config()).engine
        self._clock = clock
        roles = roles or StaticRoleResolver()
        self.history = HistoryRecorder(self._repository)
        self.policy = PermissionEvaluator(self._repository, roles, clock=clock)
        self.tasks = TaskManager(
            self._repository, self.history, self.policy, roles, clock=clock
        )
        self.tasks.set_completion_hook(self._after_task_completed)

    # ------------------------------------------------------------------
    # Instance creation and reads
    async def create_instance(
        self, definition_id: str, user_id: str, request: CreateInstanceRequest
    ) -> Outcome[WorkflowInstance]:
        """Start a new instance of an active definition."""
        definition = await self._repository.get_definition(definition_id)
        if definition is None:
            return Outcome.not_found(f"Workflow definition {definition_id} not found")
        if not await self.policy.has_permission(
            user_id, definition_id, PermissionType.EXECUTE, definition
        ):
            logger.warning(f"User {user_id} refused execute on {definition_id}")
            return Outcome.unauthorized(
                "Insufficient permissions to execute this workflow"
            )
        if not definition.is_active:
            return Outcome.invalid_state(
                f"Workflow definition {definition_id} is inactive"
            )

        validation = validate_graph(definition.graph)
        if not validation.is_valid:
            return Outcome.validation_failed(
                "Workflow definition graph is invalid", validation
            )
        start = definition.graph.nodes_of_type(NodeType.START)[0]

        instance = WorkflowInstance(
            definition_id=definition.id,
            definition_version=definition.version,
            tenant_id=definition.tenant_id,
            graph=definition.graph.model_copy(deep=True),
            document_id=request.document_id,
            current_state=start.id,
            context=dict(request.context),
            started_by=user_id,
            assigned_to=request.assigned_to,
            priority=request.priority,
            due_date=request.due_date,
            started_at=self._clock(),
        )
        await self._repository.create_instance(instance)
        await self.history.append(
            instance.id,
            HistoryAction.CREATED,
            None,
            start.id,
            user_id,
            action_data={
                "definition_id": definition.id,
                "definition_version": definition.version,
                "document_id": request.document_id,
            },
        )
        logger.info(
            f"Created workflow instance {instance.id} from definition "
            f"{definition.id} v{definition.version}"
        )

        if self._settings.auto_advance_start:
            try:
                await self._run(instance, start, user_id)
            except ConcurrentModificationError as exc:
                return Outcome.conflict(str(exc))
        return Outcome.success(instance)

    async def get_instance(
        self, instance_id: str, user_id: str
    ) -> Outcome[InstanceDetails]:
        """Return the instance with its tasks and full timeline."""
        instance = await self._repository.get_instance(instance_id)
        if instance is None:
            return Outcome.not_found(f"Workflow instance {instance_id} not found")
        tasks = await self.tasks.tasks_for_instance(instance_id)
        can_view = (
            instance.started_by == user_id
            or instance.assigned_to == user_id
            or any(t.assigned_to == user_id for t in tasks)
            or await self.policy.has_permission(
                user_id, instance.definition_id, PermissionType.VIEW
            )
        )
        if not can_view:
            return Outcome.unauthorized(
                "Insufficient permissions to view this workflow instance"
            )
        history = await self.history.timeline(instance_id)
        return Outcome.success(
            InstanceDetails(instance=instance, tasks=tasks, history=history)
        )

    async def list_instances(
        self,
        tenant_id: str,
        user_id: str,
        definition_id: Optional[str] = None,
        status: Optional[WorkflowStatus] = None,
        assigned_to_me: bool = False,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> list[WorkflowInstance]:
        instances = await self._repository.list_instances(
            tenant_id=tenant_id,
            definition_id=definition_id,
            statuses=[status] if status is not None else None,
        )
        if assigned_to_me:
            instances = [i for i in instances if i.assigned_to == user_id]
        instances.sort(key=lambda i: i.started_at, reverse=True)
        return paginate(instances, page, page_size)

    # ------------------------------------------------------------------
    # Stepping
    async def execute_step(
        self,
        instance_id: str,
        node_id: str,
        actor_id: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Outcome[WorkflowInstance]:
        """Execute ``node_id`` on the instance and follow automatic transitions."""
        instance = await self._repository.get_instance(instance_id)
        if instance is None:
            return Outcome.not_found(f"Workflow instance {instance_id} not found")
        node = instance.graph.node(node_id)
        if node is None:
            return Outcome.not_found(f"Step {node_id} not found in workflow definition")
        if not await self.policy.has_permission(
            actor_id, instance.definition_id, PermissionType.EXECUTE
        ):
            return Outcome.unauthorized(
                "Insufficient permissions to execute this workflow"
            )
        if instance.status not in _RUNNABLE:
            return Outcome.invalid_state(
                f"Workflow instance {instance_id} is {instance.status.value}"
            )

        try:
            from_state = instance.current_state
            if from_state != node.id:
                instance.current_state = node.id
                await self._save(instance)
            await self.history.append(
                instance.id,
                HistoryAction.STEP_EXECUTED,
                from_state,
                node.id,
                actor_id,
                action_data={"node_id": node.id, "data": dict(data or {})},
            )
            await self._run(instance, node, actor_id, data)
        except ConcurrentModificationError as exc:
            return Outcome.conflict(str(exc))
        return Outcome.success(instance)

    async def advance_workflow(
        self, instance: WorkflowInstance, finished_node: WorkflowNode, actor: str
    ) -> None:
        """Move past ``finished_node`` along its first outgoing connection."""
        await self._follow(instance, self._first_target(instance, finished_node), actor)

    async def _run(
        self,
        instance: WorkflowInstance,
        node: WorkflowNode,
        actor: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        target = await self._execute_node(instance, node, actor, data)
        await self._follow(instance, target, actor)

    async def _follow(
        self, instance: WorkflowInstance, target_id: Optional[str], actor: str
    ) -> None:
        steps = 0
        while target_id is not None:
            steps += 1
            if steps > MAX_TRAVERSAL_STEPS:
                await self._fail(
                    instance, actor, "Traversal step limit exceeded; the graph loops"
                )
                return
            node = instance.graph.node(target_id)
            if node is None:
                await self._fail(
                    instance, actor, f"Connection target {target_id} is not in the graph"
                )
                return
            from_state = instance.current_state
            instance.current_state = node.id
            await self._save(instance)
            await self.history.append(
                instance.id, HistoryAction.ADVANCED, from_state, node.id, actor
            )
            target_id = await self._execute_node(instance, node, actor)

    async def _execute_node(
        self,
        instance: WorkflowInstance,
        node: WorkflowNode,
        actor: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        """Run ``node`` and return the id of the node to move to, if any."""
        config = node.config
        if isinstance(config, StartNodeConfig):
            return self._first_target(instance, node)
        if isinstance(config, TaskNodeConfig):
            # Parks the instance; CompleteTask resumes traversal.
            await self.tasks.create_task_for_node(instance, node, actor, data)
            return None
        if isinstance(config, DecisionNodeConfig):
            return await self._decide(instance, node, config, actor)
        if isinstance(config, EndNodeConfig):
            await self._complete(
                instance, actor, {"node_id": node.id, "outcome": config.outcome}
            )
            return None
        raise TypeError(f"unhandled node configuration {type(config).__name__}")

    def _first_target(
        self, instance: WorkflowInstance, node: WorkflowNode
    ) -> Optional[str]:
        outgoing = instance.graph.outgoing(node.id)
        if not outgoing:
            logger.warning(
                f"Instance {instance.id} reached dead-end node {node.id}; waiting"
            )
            return None
        return outgoing[0].target_node_id

    async def _decide(
        self,
        instance: WorkflowInstance,
        node: WorkflowNode,
        config: DecisionNodeConfig,
        actor: str,
    ) -> Optional[str]:
        """Take the first outgoing connection whose condition holds.

        Falls back to ``default_target``; with neither the instance fails.
        """
        connection = select_connection(instance.graph.outgoing(node.id), instance.context)
        if connection is not None:
            target: Optional[str] = connection.target_node_id
            condition = connection.condition
        else:
            target = config.default_target
            condition = None

        if target is None:
            await self.history.append(
                instance.id,
                HistoryAction.DECISION_UNMATCHED,
                node.id,
                node.id,
                actor,
                action_data={"node_id": node.id},
            )
            await self._fail(instance, actor, f"No branch of decision {node.id} matched")
            return None

        await self.history.append(
            instance.id,
            HistoryAction.DECISION_TAKEN,
            node.id,
            target,
            actor,
            action_data={
                "node_id": node.id,
                "condition": condition,
                "default": connection is None,
            },
        )
        return target

    # ------------------------------------------------------------------
    # Task completion
    async def _after_task_completed(
        self,
        instance: WorkflowInstance,
        task: WorkflowTask,
        actor: str,
        request: CompleteTaskRequest,
    ) -> Outcome[WorkflowInstance]:
        """Resume traversal after a task and apply the all-tasks-done rule.

        Once every task of the instance is Completed or Cancelled the instance
        is completed, wherever it stands in the graph. A completion that lands
        while the instance is paused is settled by the next sweep after it
        resumes.
        """
        fresh = await self._repository.get_instance(instance.id)
        if fresh is None:
            return Outcome.not_found(f"Workflow instance {instance.id} not found")
        instance = fresh
        if instance.status not in _RUNNABLE:
            logger.info(
                f"Instance {instance.id} is {instance.status.value}; "
                f"task {task.id} will be settled when it runs again"
            )
            return Outcome.success(instance)

        try:
            await self._settle_tasks(instance, actor, task)
        except ConcurrentModificationError as exc:
            return Outcome.conflict(str(exc))
        return Outcome.success(instance)

    async def _settle_tasks(
        self,
        instance: WorkflowInstance,
        actor: str,
        completed: Optional[WorkflowTask] = None,
    ) -> None:
        """Advance past a completed task the instance still sits on.

        Without ``completed`` the Completed task of the current node is looked
        up, if any. Afterwards an instance whose tasks are all terminal is
        completed.
        """
        tasks = await self.tasks.tasks_for_instance(instance.id)
        if completed is None:
            completed = next(
                (
                    t
                    for t in tasks
                    if t.node_id == instance.current_state
                    and t.status is TaskStatus.COMPLETED
                ),
                None,
            )

        if completed is not None:
            action = completed.completion_action or ""
            instance.context.update(completed.task_data)
            instance.context["last_action"] = action
            instance.context[f"{completed.node_id}.action"] = action
            await self._save(instance)

            node = instance.graph.node(completed.node_id)
            if node is not None and instance.current_state == node.id:
                await self.advance_workflow(instance, node, actor)
            tasks = await self.tasks.tasks_for_instance(instance.id)

        if instance.status.is_terminal or not tasks:
            return
        if all(t.status.is_terminal for t in tasks):
            await self._complete(instance, actor, {"reason": "all_tasks_terminal"})

    # ------------------------------------------------------------------
    # Lifecycle
    async def pause(self, instance_id: str, user_id: str) -> Outcome[WorkflowInstance]:
        return await self._transition(
            instance_id,
            user_id,
            PermissionType.EXECUTE,
            allowed_from=(WorkflowStatus.ACTIVE,),
            to=WorkflowStatus.PAUSED,
            action=HistoryAction.PAUSE,
            refusal="Only active workflows can be paused",
        )

    async def resume(self, instance_id: str, user_id: str) -> Outcome[WorkflowInstance]:
        return await self._transition(
            instance_id,
            user_id,
            PermissionType.EXECUTE,
            allowed_from=(WorkflowStatus.PAUSED,),
            to=WorkflowStatus.ACTIVE,
            action=HistoryAction.RESUME,
            refusal="Only paused workflows can be resumed",
        )

    async def cancel(
        self, instance_id: str, user_id: str, reason: Optional[str] = None
    ) -> Outcome[WorkflowInstance]:
        outcome = await self._transition(
            instance_id,
            user_id,
            PermissionType.CANCEL,
            allowed_from=(
                WorkflowStatus.ACTIVE,
                WorkflowStatus.WAITING,
                WorkflowStatus.PAUSED,
            ),
            to=WorkflowStatus.CANCELLED,
            action=HistoryAction.CANCEL,
            refusal="Only running workflows can be cancelled",
            comments=reason,
        )
        if outcome.ok and outcome.value is not None:
            await self.tasks.cancel_open_tasks(outcome.value, user_id, reason)
        return outcome

    async def _transition(
        self,
        instance_id: str,
        user_id: str,
        permission: PermissionType,
        allowed_from: tuple[WorkflowStatus, ...],
        to: WorkflowStatus,
        action: str,
        refusal: str,
        comments: Optional[str] = None,
    ) -> Outcome[WorkflowInstance]:
        instance = await self._repository.get_instance(instance_id)
        if instance is None:
            return Outcome.not_found(f"Workflow instance {instance_id} not found")
        if not await self.policy.has_permission(
            user_id, instance.definition_id, permission
        ):
            logger.warning(f"User {user_id} refused {action} on instance {instance_id}")
            return Outcome.unauthorized(
                f"Insufficient permissions to {action.lower()} this workflow instance"
            )
        if instance.status not in allowed_from:
            return Outcome.invalid_state(refusal)

        previous = instance.status
        instance.status = to
        if to.is_terminal:
            instance.completed_at = self._clock()
        try:
            await self._save(instance)
        except ConcurrentModificationError as exc:
            return Outcome.conflict(str(exc))

        to_state = to.value.lower() if to.is_terminal else instance.current_state
        await self.history.append(
            instance.id,
            action,
            instance.current_state,
            to_state,
            user_id,
            comments=comments,
            action_data={"from_status": previous.value, "to_status": to.value},
        )
        logger.info(
            f"Workflow instance {instance.id} {previous.value} -> {to.value} by {user_id}"
        )
        return Outcome.success(instance)

    async def _complete(
        self, instance: WorkflowInstance, actor: str, action_data: Dict[str, Any]
    ) -> None:
        from_state = instance.current_state
        instance.status = WorkflowStatus.COMPLETED
        instance.completed_at = self._clock()
        instance.current_state = COMPLETED_STATE
        await self._save(instance)
        await self.history.append(
            instance.id,
            HistoryAction.COMPLETED,
            from_state,
            COMPLETED_STATE,
            actor,
            action_data=action_data,
        )
        logger.info(f"Workflow instance {instance.id} completed")

    async def _fail(
        self,
        instance: WorkflowInstance,
        actor: str,
        reason: str,
        action: str = HistoryAction.FAILED,
    ) -> None:
        instance.status = WorkflowStatus.FAILED
        instance.completed_at = self._clock()
        await self._save(instance)
        await self.history.append(
            instance.id,
            action,
            instance.current_state,
            instance.current_state,
            actor,
            comments=reason,
        )
        logger.error(f"Workflow instance {instance.id} failed: {reason}")

    async def _save(self, instance: WorkflowInstance) -> None:
        await self._repository.update_instance(instance)

    # ------------------------------------------------------------------
    # Periodic sweep
    async def process_pending_steps(
        self, now: Optional[datetime] = None
    ) -> SweepReport:
        """Apply time-based transitions to every Active or Waiting instance."""
        now = now or self._clock()
        report = SweepReport()
        instances = await self._repository.list_instances(statuses=list(_RUNNABLE))
        for instance in instances:
            report.scanned += 1
            try:
                await self._sweep_instance(instance, now, report)
            except Exception:
                logger.exception(f"Error processing workflow instance {instance.id}")
                report.errors += 1
        logger.info(
            f"Sweep scanned {report.scanned} instances, flagged "
            f"{report.tasks_flagged} tasks, failed {report.instances_failed}"
        )
        return report

    async def _sweep_instance(
        self, instance: WorkflowInstance, now: datetime, report: SweepReport
    ) -> None:
        flagged = await self.tasks.flag_overdue_tasks(instance, SYSTEM_ACTOR, now)
        report.tasks_flagged += len(flagged)
        try:
            await self._settle_tasks(instance, SYSTEM_ACTOR)
        except ConcurrentModificationError:
            logger.info(f"Instance {instance.id} changed during sweep; skipped")
            return
        if instance.status.is_terminal:
            return

        if not self._settings.fail_overdue_instances or instance.due_date is None:
            return
        grace = timedelta(seconds=self._settings.overdue_grace)
        if instance.due_date + grace >= now:
            return
        try:
            await self._fail(
                instance,
                SYSTEM_ACTOR,
                f"Due date {instance.due_date.isoformat()} expired",
                action=HistoryAction.DUE_DATE_EXPIRED,
            )
        except ConcurrentModificationError:
            logger.info(f"Instance {instance.id} changed during sweep; skipped")
            return
        await self.tasks.cancel_open_tasks(instance, SYSTEM_ACTOR, "Due date expired")
        report.instances_failed += 1

    async def run_sweeper(
        self, interval: Optional[float] = None, lifespan: Optional[float] = None
    ) -> int:
        """Run :meth:`process_pending_steps` periodically.

        Args:
            interval: Seconds between sweeps, defaults to ``engine.sweep_interval``.
            lifespan: Stop once this many seconds have passed; run forever if unset.

        Returns:
            The number of sweeps performed.
        """
        interval = interval if interval is not None else self._settings.sweep_interval
        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan is not None else None
        sweeps = 0
        while True:
            await self.process_pending_steps()
            sweeps += 1
            if deadline is not None and loop.time() + interval > deadline:
                return sweeps
            await asyncio.sleep(interval)
