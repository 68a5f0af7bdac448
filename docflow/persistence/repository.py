"""Repository abstraction for workflow state persistence."""

from __future__ import annotations

from typing import Iterable, Optional, Protocol

from ..contracts import (
    TaskStatus,
    WorkflowDefinition,
    WorkflowHistoryEntry,
    WorkflowInstance,
    WorkflowPermission,
    WorkflowStatus,
    WorkflowTask,
)


class WorkflowRepository(Protocol):
    """Protocol for workflow state persistence backends.

    History is append-only: backends expose no way to change or remove an
    entry once written.
    """

    # Definitions -------------------------------------------------------
    async def create_definition(self, definition: WorkflowDefinition) -> None:
        """Persist a new definition."""

    async def update_definition(self, definition: WorkflowDefinition) -> None:
        """Replace a stored definition."""

    async def delete_definition(self, definition_id: str) -> bool:
        """Remove a definition, returning ``False`` if it did not exist."""

    async def get_definition(self, definition_id: str) -> WorkflowDefinition | None:
        """Retrieve a definition by id."""

    async def list_definitions(
        self, tenant_id: Optional[str] = None
    ) -> list[WorkflowDefinition]:
        """Return definitions, optionally restricted to a tenant."""

    # Instances ---------------------------------------------------------
    async def create_instance(self, instance: WorkflowInstance) -> None:
        """Persist a new instance."""

    async def update_instance(self, instance: WorkflowInstance) -> None:
        """Compare-and-swap write of ``instance``.

        Succeeds only when the stored revision equals ``instance.revision``;
        the stored and the passed revision are then incremented.

        Raises:
            ConcurrentModificationError: If another writer got there first.
        """

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        """Retrieve an instance by id."""

    async def list_instances(
        self,
        tenant_id: Optional[str] = None,
        definition_id: Optional[str] = None,
        statuses: Optional[Iterable[WorkflowStatus]] = None,
    ) -> list[WorkflowInstance]:
        """Return instances matching all given filters."""

    # Tasks -------------------------------------------------------------
    async def create_task(self, task: WorkflowTask) -> WorkflowTask:
        """Insert ``task`` unless one with the same instance and name exists.

        Returns the stored task, which is the pre-existing one on a duplicate.
        """

    async def update_task(
        self, task: WorkflowTask, expected_status: Optional[TaskStatus] = None
    ) -> None:
        """Replace a stored task.

        Raises:
            ConcurrentModificationError: If ``expected_status`` is given and
                the stored task is no longer in it.
        """

    async def get_task(self, task_id: str) -> WorkflowTask | None:
        """Retrieve a task by id."""

    async def find_task(self, instance_id: str, name: str) -> WorkflowTask | None:
        """Look a task up by its owning instance and node-derived name."""

    async def list_tasks(
        self,
        instance_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        statuses: Optional[Iterable[TaskStatus]] = None,
    ) -> list[WorkflowTask]:
        """Return tasks matching all given filters in creation order."""

    # History -----------------------------------------------------------
    async def append_history(self, entry: WorkflowHistoryEntry) -> None:
        """Append an audit entry."""

    async def list_history(self, instance_id: str) -> list[WorkflowHistoryEntry]:
        """Return the timeline of an instance in append order."""

    # Permissions -------------------------------------------------------
    async def add_permission(self, permission: WorkflowPermission) -> None:
        """Persist a new grant."""

    async def update_permission(self, permission: WorkflowPermission) -> None:
        """Replace a stored grant."""

    async def get_permission(self, permission_id: str) -> WorkflowPermission | None:
        """Retrieve a grant by id."""

    async def list_permissions(self, definition_id: str) -> list[WorkflowPermission]:
        """Return every grant recorded for a definition."""
