"""Task materialization, completion and reassignment."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, TypeVar

from .constants import DEFAULT_PAGE_SIZE
from .contracts import (
    CompleteTaskRequest,
    PermissionType,
    ReassignTaskRequest,
    TaskNodeConfig,
    TaskStatus,
    WorkflowInstance,
    WorkflowNode,
    WorkflowStatus,
    WorkflowTask,
    utcnow,
)
from .errors import ConcurrentModificationError
from .history import HistoryAction, HistoryRecorder
from .outcomes import Outcome
from .persistence import WorkflowRepository
from .security import PermissionEvaluator, RoleResolver, StaticRoleResolver

logger = logging.getLogger(__name__)

T = TypeVar("T")

CompletionHook = Callable[
    [WorkflowInstance, WorkflowTask, str, CompleteTaskRequest],
    Awaitable[Outcome[WorkflowInstance]],
]

_NO_DUE_DATE = datetime.max.replace(tzinfo=timezone.utc)


def _queue_order(task: WorkflowTask) -> tuple:
    """Earliest due date first, then most urgent, then oldest."""
    return (task.due_date or _NO_DUE_DATE, -task.priority.rank, task.created_at)


def _can_complete(task: WorkflowTask, user_id: str, roles: set[str]) -> bool:
    """A named assignee takes precedence over the assigned role."""
    if task.assigned_to is not None:
        return task.assigned_to == user_id
    return task.assigned_role is not None and task.assigned_role in roles


def _initial_assignee(
    config: TaskNodeConfig, instance: WorkflowInstance
) -> Optional[str]:
    """The node assignee, else the instance assignee unless the node names a role."""
    if config.assignee is not None:
        return config.assignee
    if config.assignee_role is not None:
        return None
    return instance.assigned_to


def paginate(items: Sequence[T], page: int, page_size: int) -> list[T]:
    page = max(page, 1)
    start = (page - 1) * page_size
    return list(items[start : start + page_size])


class TaskManager:
    """Creates and drives :class:`WorkflowTask` records.

    Completing a task hands control back to the execution engine through the
    completion hook registered with :meth:`set_completion_hook`.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        history: HistoryRecorder,
        policy: PermissionEvaluator,
        roles: RoleResolver | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._history = history
        self._policy = policy
        self._roles = roles or StaticRoleResolver()
        self._clock = clock
        self._on_completed: Optional[CompletionHook] = None

    def set_completion_hook(self, hook: CompletionHook) -> None:
        self._on_completed = hook

    # ------------------------------------------------------------------
    async def create_task_for_node(
        self,
        instance: WorkflowInstance,
        node: WorkflowNode,
        actor: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> tuple[WorkflowTask, bool]:
        """Return the task for ``node``, creating it on first execution.

        Returns:
            The task and whether this call created it.
        """
        if not isinstance(node.config, TaskNodeConfig):
            raise TypeError(f"node {node.id} is not a task node")

        existing = await self._repository.find_task(instance.id, node.name)
        if existing is not None:
            return existing, False

        config = node.config
        due_date = instance.due_date
        if config.due_in_hours is not None:
            due_date = self._clock() + timedelta(hours=config.due_in_hours)

        task = WorkflowTask(
            instance_id=instance.id,
            tenant_id=instance.tenant_id,
            node_id=node.id,
            name=node.name,
            description=node.description,
            task_type=config.task_type,
            assigned_to=_initial_assignee(config, instance),
            assigned_role=config.assignee_role,
            priority=instance.priority,
            due_date=due_date,
            created_at=self._clock(),
            task_data=dict(data or {}),
        )
        stored = await self._repository.create_task(task)
        created = stored.id == task.id
        if created:
            await self._history.append(
                instance.id,
                HistoryAction.TASK_CREATED,
                instance.current_state,
                instance.current_state,
                actor,
                action_data={
                    "task_id": stored.id,
                    "node_id": node.id,
                    "assigned_to": stored.assigned_to,
                    "assigned_role": stored.assigned_role,
                },
            )
            logger.info(
                f"Created task {stored.id} ({node.name}) for instance {instance.id}"
            )
        return stored, created

    async def complete_task(
        self, task_id: str, user_id: str, request: CompleteTaskRequest
    ) -> Outcome[WorkflowInstance]:
        task = await self._repository.get_task(task_id)
        if task is None:
            return Outcome.not_found(f"Task {task_id} not found")
        if not await self._is_assignee(task, user_id):
            logger.warning(f"User {user_id} is not assigned to task {task_id}")
            return Outcome.unauthorized("You are not assigned to this task")
        if task.status is not TaskStatus.PENDING:
            return Outcome.invalid_state(
                f"Task {task_id} is {task.status.value}, not Pending"
            )

        instance = await self._repository.get_instance(task.instance_id)
        if instance is None:
            return Outcome.not_found(f"Workflow instance {task.instance_id} not found")
        if instance.status.is_terminal or instance.status is WorkflowStatus.PAUSED:
            return Outcome.invalid_state(
                f"Workflow instance {instance.id} is {instance.status.value}"
            )

        task.status = TaskStatus.COMPLETED
        task.completed_at = self._clock()
        task.completed_by = user_id
        task.completion_notes = request.comments
        task.completion_action = request.action
        task.task_data = {**task.task_data, **request.task_data}
        try:
            await self._repository.update_task(task, expected_status=TaskStatus.PENDING)
        except ConcurrentModificationError as exc:
            return Outcome.conflict(str(exc))

        await self._history.append(
            instance.id,
            HistoryAction.task_completed(request.action),
            instance.current_state,
            instance.current_state,
            user_id,
            comments=request.comments,
            action_data={"task_id": task.id, "action": request.action},
        )
        logger.info(f"Task {task.id} completed by {user_id} with {request.action!r}")

        if self._on_completed is None:
            return Outcome.success(instance)
        return await self._on_completed(instance, task, user_id, request)

    async def reassign_task(
        self, task_id: str, caller_id: str, request: ReassignTaskRequest
    ) -> Outcome[WorkflowTask]:
        task = await self._repository.get_task(task_id)
        if task is None:
            return Outcome.not_found(f"Task {task_id} not found")
        instance = await self._repository.get_instance(task.instance_id)
        if instance is None:
            return Outcome.not_found(f"Workflow instance {task.instance_id} not found")
        if not await self._policy.has_permission(
            caller_id, instance.definition_id, PermissionType.REASSIGN
        ):
            logger.warning(f"User {caller_id} refused reassignment of task {task_id}")
            return Outcome.unauthorized("Insufficient permissions to reassign this task")
        if task.status is not TaskStatus.PENDING:
            return Outcome.invalid_state(
                f"Task {task_id} is {task.status.value}, not Pending"
            )

        old_assignee = task.assigned_to
        task.assigned_to = request.assigned_to
        try:
            await self._repository.update_task(task, expected_status=TaskStatus.PENDING)
        except ConcurrentModificationError as exc:
            return Outcome.conflict(str(exc))

        await self._history.append(
            instance.id,
            HistoryAction.TASK_REASSIGNED,
            instance.current_state,
            instance.current_state,
            caller_id,
            comments=request.reason,
            action_data={
                "task_id": task.id,
                "old_assignee": old_assignee,
                "new_assignee": request.assigned_to,
            },
        )
        logger.info(
            f"Task {task.id} reassigned from {old_assignee} to {request.assigned_to}"
        )
        return Outcome.success(task)

    async def cancel_open_tasks(
        self, instance: WorkflowInstance, actor: str, reason: Optional[str] = None
    ) -> list[WorkflowTask]:
        """Move every pending task of ``instance`` to Cancelled."""
        cancelled: list[WorkflowTask] = []
        pending = await self._repository.list_tasks(
            instance_id=instance.id, statuses=[TaskStatus.PENDING]
        )
        for task in pending:
            task.status = TaskStatus.CANCELLED
            try:
                await self._repository.update_task(
                    task, expected_status=TaskStatus.PENDING
                )
            except ConcurrentModificationError:
                logger.info(f"Task {task.id} left Pending before it could be cancelled")
                continue
            await self._history.append(
                instance.id,
                HistoryAction.TASK_CANCELLED,
                instance.current_state,
                instance.current_state,
                actor,
                comments=reason,
                action_data={"task_id": task.id},
            )
            cancelled.append(task)
        return cancelled

    async def flag_overdue_tasks(
        self, instance: WorkflowInstance, actor: str, now: Optional[datetime] = None
    ) -> list[WorkflowTask]:
        """Record a ``TaskOverdue`` entry once for each newly overdue task."""
        now = now or self._clock()
        flagged: list[WorkflowTask] = []
        pending = await self._repository.list_tasks(
            instance_id=instance.id, statuses=[TaskStatus.PENDING]
        )
        for task in pending:
            if task.due_date is None or task.due_date >= now:
                continue
            if task.overdue_recorded_at is not None:
                continue
            task.overdue_recorded_at = now
            try:
                await self._repository.update_task(
                    task, expected_status=TaskStatus.PENDING
                )
            except ConcurrentModificationError:
                logger.info(f"Task {task.id} left Pending before it was flagged overdue")
                continue
            await self._history.append(
                instance.id,
                HistoryAction.TASK_OVERDUE,
                instance.current_state,
                instance.current_state,
                actor,
                action_data={
                    "task_id": task.id,
                    "due_date": task.due_date.isoformat(),
                },
            )
            flagged.append(task)
        return flagged

    # ------------------------------------------------------------------
    # Queries
    async def tasks_for_instance(self, instance_id: str) -> list[WorkflowTask]:
        return await self._repository.list_tasks(instance_id=instance_id)

    async def pending_tasks(
        self,
        user_id: str,
        tenant_id: str,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> list[WorkflowTask]:
        """Pending tasks in ``tenant_id`` the user can complete."""
        roles = set(await self._roles.roles_for(user_id))
        tasks = await self._repository.list_tasks(
            tenant_id=tenant_id, statuses=[TaskStatus.PENDING]
        )
        mine = [t for t in tasks if _can_complete(t, user_id, roles)]
        return paginate(sorted(mine, key=_queue_order), page, page_size)

    async def overdue_tasks(
        self,
        tenant_id: str,
        now: Optional[datetime] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> list[WorkflowTask]:
        now = now or self._clock()
        tasks = await self._repository.list_tasks(
            tenant_id=tenant_id, statuses=[TaskStatus.PENDING]
        )
        overdue = [t for t in tasks if t.due_date is not None and t.due_date < now]
        return paginate(sorted(overdue, key=_queue_order), page, page_size)

    async def _is_assignee(self, task: WorkflowTask, user_id: str) -> bool:
        roles: set[str] = set()
        if task.assigned_to is None and task.assigned_role is not None:
            roles = set(await self._roles.roles_for(user_id))
        return _can_complete(task, user_id, roles)
