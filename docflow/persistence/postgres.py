"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

from typing import Any, Iterable, Optional

import asyncpg

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


def _affected(status: str) -> int:
    """Row count from an asyncpg command tag such as ``UPDATE 1``."""
    try:
        return int(status.split()[-1])
    except (IndexError, ValueError):
        return 0


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflow state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS docflow_definitions (
                id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                body JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS docflow_instances (
                id TEXT PRIMARY KEY,
                definition_id TEXT NOT NULL,
                tenant_id TEXT NOT NULL,
                status TEXT NOT NULL,
                revision INTEGER NOT NULL,
                body JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS docflow_tasks (
                seq SERIAL PRIMARY KEY,
                id TEXT NOT NULL UNIQUE,
                instance_id TEXT NOT NULL,
                tenant_id TEXT NOT NULL,
                name TEXT NOT NULL,
                status TEXT NOT NULL,
                body JSONB NOT NULL,
                UNIQUE (instance_id, name)
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS docflow_history (
                seq SERIAL PRIMARY KEY,
                id TEXT NOT NULL UNIQUE,
                instance_id TEXT NOT NULL,
                body JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS docflow_permissions (
                id TEXT PRIMARY KEY,
                definition_id TEXT NOT NULL,
                body JSONB NOT NULL
            )
            """
        )

    # ------------------------------------------------------------------
    async def _execute(self, query: str, *params: Any) -> int:
        conn = await self._connect()
        try:
            status = await conn.execute(query, *params)
        finally:
            await conn.close()
        return _affected(status)

    async def _fetch(self, query: str, *params: Any) -> list[asyncpg.Record]:
        conn = await self._connect()
        try:
            return await conn.fetch(query, *params)
        finally:
            await conn.close()

    async def _fetchval(self, query: str, *params: Any) -> Any:
        conn = await self._connect()
        try:
            return await conn.fetchval(query, *params)
        finally:
            await conn.close()

    @staticmethod
    def _filters(
        columns: dict[str, Any], statuses: Optional[Iterable[Any]]
    ) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in columns.items():
            if value is not None:
                params.append(value)
                clauses.append(f"{column} = ${len(params)}")
        if statuses is not None:
            params.append([s.value for s in statuses])
            clauses.append(f"status = ANY(${len(params)}::text[])")
        where = " WHERE " + " AND ".join(clauses) if clauses else ""
        return where, params

    # ------------------------------------------------------------------
    async def create_definition(self, definition: WorkflowDefinition) -> None:
        await self._execute(
            "INSERT INTO docflow_definitions (id, tenant_id, body) VALUES ($1, $2, $3)",
            definition.id,
            definition.tenant_id,
            definition.model_dump_json(),
        )

    async def update_definition(self, definition: WorkflowDefinition) -> None:
        await self._execute(
            "UPDATE docflow_definitions SET tenant_id = $1, body = $2 WHERE id = $3",
            definition.tenant_id,
            definition.model_dump_json(),
            definition.id,
        )

    async def delete_definition(self, definition_id: str) -> bool:
        deleted = await self._execute(
            "DELETE FROM docflow_definitions WHERE id = $1", definition_id
        )
        return deleted > 0

    async def get_definition(self, definition_id: str) -> WorkflowDefinition | None:
        body = await self._fetchval(
            "SELECT body FROM docflow_definitions WHERE id = $1", definition_id
        )
        return WorkflowDefinition.model_validate_json(body) if body else None

    async def list_definitions(
        self, tenant_id: Optional[str] = None
    ) -> list[WorkflowDefinition]:
        where, params = self._filters({"tenant_id": tenant_id}, None)
        rows = await self._fetch(f"SELECT body FROM docflow_definitions{where}", *params)
        return [WorkflowDefinition.model_validate_json(r["body"]) for r in rows]

    # ------------------------------------------------------------------
    async def create_instance(self, instance: WorkflowInstance) -> None:
        await self._execute(
            """
            INSERT INTO docflow_instances
                (id, definition_id, tenant_id, status, revision, body)
            VALUES ($1, $2, $3, $4, $5, $6)
            """,
            instance.id,
            instance.definition_id,
            instance.tenant_id,
            instance.status.value,
            instance.revision,
            instance.model_dump_json(),
        )

    async def update_instance(self, instance: WorkflowInstance) -> None:
        stored = instance.model_copy(update={"revision": instance.revision + 1})
        updated = await self._execute(
            """
            UPDATE docflow_instances SET status = $1, revision = $2, body = $3
            WHERE id = $4 AND revision = $5
            """,
            stored.status.value,
            stored.revision,
            stored.model_dump_json(),
            instance.id,
            instance.revision,
        )
        if updated == 0:
            raise ConcurrentModificationError(
                "instance", instance.id, f"expected revision {instance.revision}"
            )
        instance.revision = stored.revision

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        body = await self._fetchval(
            "SELECT body FROM docflow_instances WHERE id = $1", instance_id
        )
        return WorkflowInstance.model_validate_json(body) if body else None

    async def list_instances(
        self,
        tenant_id: Optional[str] = None,
        definition_id: Optional[str] = None,
        statuses: Optional[Iterable[WorkflowStatus]] = None,
    ) -> list[WorkflowInstance]:
        where, params = self._filters(
            {"tenant_id": tenant_id, "definition_id": definition_id}, statuses
        )
        rows = await self._fetch(f"SELECT body FROM docflow_instances{where}", *params)
        return [WorkflowInstance.model_validate_json(r["body"]) for r in rows]

    # ------------------------------------------------------------------
    async def create_task(self, task: WorkflowTask) -> WorkflowTask:
        await self._execute(
            """
            INSERT INTO docflow_tasks (id, instance_id, tenant_id, name, status, body)
            VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (instance_id, name) DO NOTHING
            """,
            task.id,
            task.instance_id,
            task.tenant_id,
            task.name,
            task.status.value,
            task.model_dump_json(),
        )
        stored = await self.find_task(task.instance_id, task.name)
        return stored if stored is not None else task

    async def update_task(
        self, task: WorkflowTask, expected_status: Optional[TaskStatus] = None
    ) -> None:
        query = "UPDATE docflow_tasks SET status = $1, body = $2 WHERE id = $3"
        params: list[Any] = [task.status.value, task.model_dump_json(), task.id]
        if expected_status is not None:
            query += " AND status = $4"
            params.append(expected_status.value)
        updated = await self._execute(query, *params)
        if updated == 0 and expected_status is not None:
            raise ConcurrentModificationError(
                "task", task.id, f"status is no longer {expected_status.value}"
            )

    async def get_task(self, task_id: str) -> WorkflowTask | None:
        body = await self._fetchval(
            "SELECT body FROM docflow_tasks WHERE id = $1", task_id
        )
        return WorkflowTask.model_validate_json(body) if body else None

    async def find_task(self, instance_id: str, name: str) -> WorkflowTask | None:
        body = await self._fetchval(
            "SELECT body FROM docflow_tasks WHERE instance_id = $1 AND name = $2",
            instance_id,
            name,
        )
        return WorkflowTask.model_validate_json(body) if body else None

    async def list_tasks(
        self,
        instance_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        statuses: Optional[Iterable[TaskStatus]] = None,
    ) -> list[WorkflowTask]:
        where, params = self._filters(
            {"instance_id": instance_id, "tenant_id": tenant_id}, statuses
        )
        rows = await self._fetch(
            f"SELECT body FROM docflow_tasks{where} ORDER BY seq", *params
        )
        return [WorkflowTask.model_validate_json(r["body"]) for r in rows]

    # ------------------------------------------------------------------
    async def append_history(self, entry: WorkflowHistoryEntry) -> None:
        await self._execute(
            "INSERT INTO docflow_history (id, instance_id, body) VALUES ($1, $2, $3)",
            entry.id,
            entry.instance_id,
            entry.model_dump_json(),
        )

    async def list_history(self, instance_id: str) -> list[WorkflowHistoryEntry]:
        rows = await self._fetch(
            "SELECT body FROM docflow_history WHERE instance_id = $1 ORDER BY seq",
            instance_id,
        )
        return [WorkflowHistoryEntry.model_validate_json(r["body"]) for r in rows]

    # ------------------------------------------------------------------
    async def add_permission(self, permission: WorkflowPermission) -> None:
        await self._execute(
            "INSERT INTO docflow_permissions (id, definition_id, body) VALUES ($1, $2, $3)",
            permission.id,
            permission.definition_id,
            permission.model_dump_json(),
        )

    async def update_permission(self, permission: WorkflowPermission) -> None:
        await self._execute(
            "UPDATE docflow_permissions SET body = $1 WHERE id = $2",
            permission.model_dump_json(),
            permission.id,
        )

    async def get_permission(self, permission_id: str) -> WorkflowPermission | None:
        body = await self._fetchval(
            "SELECT body FROM docflow_permissions WHERE id = $1", permission_id
        )
        return WorkflowPermission.model_validate_json(body) if body else None

    async def list_permissions(self, definition_id: str) -> list[WorkflowPermission]:
        rows = await self._fetch(
            "SELECT body FROM docflow_permissions WHERE definition_id = $1",
            definition_id,
        )
        return [WorkflowPermission.model_validate_json(r["body"]) for r in rows]
