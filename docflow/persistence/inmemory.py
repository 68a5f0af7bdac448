"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from ..contracts import (
    TaskStatus,
    WorkflowDefinition,
    WorkflowHistoryEntry,
    WorkflowInstance,
    WorkflowPermission,
    WorkflowStatus,
    WorkflowTask,
)
from ..errors import ConcurrentModificationError
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out so callers never share mutable state with the store.
    """

    def __init__(self) -> None:
        self._definitions: Dict[str, WorkflowDefinition] = {}
        self._instances: Dict[str, WorkflowInstance] = {}
        self._tasks: Dict[str, WorkflowTask] = {}
        self._history: List[WorkflowHistoryEntry] = []
        self._permissions: Dict[str, WorkflowPermission] = {}

    # ------------------------------------------------------------------
    async def create_definition(self, definition: WorkflowDefinition) -> None:
        self._definitions[definition.id] = definition.model_copy(deep=True)

    async def update_definition(self, definition: WorkflowDefinition) -> None:
        if definition.id in self._definitions:
            self._definitions[definition.id] = definition.model_copy(deep=True)

    async def delete_definition(self, definition_id: str) -> bool:
        return self._definitions.pop(definition_id, None) is not None

    async def get_definition(self, definition_id: str) -> WorkflowDefinition | None:
        definition = self._definitions.get(definition_id)
        return definition.model_copy(deep=True) if definition else None

    async def list_definitions(
        self, tenant_id: Optional[str] = None
    ) -> list[WorkflowDefinition]:
        return [
            d.model_copy(deep=True)
            for d in self._definitions.values()
            if tenant_id is None or d.tenant_id == tenant_id
        ]

    # ------------------------------------------------------------------
    async def create_instance(self, instance: WorkflowInstance) -> None:
        self._instances[instance.id] = instance.model_copy(deep=True)

    async def update_instance(self, instance: WorkflowInstance) -> None:
        stored = self._instances.get(instance.id)
        if stored is None or stored.revision != instance.revision:
            raise ConcurrentModificationError(
                "instance",
                instance.id,
                f"expected revision {instance.revision}",
            )
        instance.revision += 1
        self._instances[instance.id] = instance.model_copy(deep=True)

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        instance = self._instances.get(instance_id)
        return instance.model_copy(deep=True) if instance else None

    async def list_instances(
        self,
        tenant_id: Optional[str] = None,
        definition_id: Optional[str] = None,
        statuses: Optional[Iterable[WorkflowStatus]] = None,
    ) -> list[WorkflowInstance]:
        wanted = set(statuses) if statuses is not None else None
        return [
            i.model_copy(deep=True)
            for i in self._instances.values()
            if (tenant_id is None or i.tenant_id == tenant_id)
            and (definition_id is None or i.definition_id == definition_id)
            and (wanted is None or i.status in wanted)
        ]

    # ------------------------------------------------------------------
    async def create_task(self, task: WorkflowTask) -> WorkflowTask:
        existing = await self.find_task(task.instance_id, task.name)
        if existing is not None:
            return existing
        self._tasks[task.id] = task.model_copy(deep=True)
        return task.model_copy(deep=True)

    async def update_task(
        self, task: WorkflowTask, expected_status: Optional[TaskStatus] = None
    ) -> None:
        stored = self._tasks.get(task.id)
        if stored is None:
            return
        if expected_status is not None and stored.status is not expected_status:
            raise ConcurrentModificationError(
                "task", task.id, f"status is {stored.status.value}"
            )
        self._tasks[task.id] = task.model_copy(deep=True)

    async def get_task(self, task_id: str) -> WorkflowTask | None:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    async def find_task(self, instance_id: str, name: str) -> WorkflowTask | None:
        for task in self._tasks.values():
            if task.instance_id == instance_id and task.name == name:
                return task.model_copy(deep=True)
        return None

    async def list_tasks(
        self,
        instance_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        statuses: Optional[Iterable[TaskStatus]] = None,
    ) -> list[WorkflowTask]:
        wanted = set(statuses) if statuses is not None else None
        return [
            t.model_copy(deep=True)
            for t in self._tasks.values()
            if (instance_id is None or t.instance_id == instance_id)
            and (tenant_id is None or t.tenant_id == tenant_id)
            and (wanted is None or t.status in wanted)
        ]

    # ------------------------------------------------------------------
    async def append_history(self, entry: WorkflowHistoryEntry) -> None:
        self._history.append(entry)

    async def list_history(self, instance_id: str) -> list[WorkflowHistoryEntry]:
        return [e for e in self._history if e.instance_id == instance_id]

    # ------------------------------------------------------------------
    async def add_permission(self, permission: WorkflowPermission) -> None:
        self._permissions[permission.id] = permission.model_copy(deep=True)

    async def update_permission(self, permission: WorkflowPermission) -> None:
        if permission.id in self._permissions:
            self._permissions[permission.id] = permission.model_copy(deep=True)

    async def get_permission(self, permission_id: str) -> WorkflowPermission | None:
        permission = self._permissions.get(permission_id)
        return permission.model_copy(deep=True) if permission else None

    async def list_permissions(self, definition_id: str) -> list[WorkflowPermission]:
        return [
            p.model_copy(deep=True)
            for p in self._permissions.values()
            if p.definition_id == definition_id
        ]
