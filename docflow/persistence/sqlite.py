"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path
from typing import Any, Iterable, Optional

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


def _placeholders(values: list[Any]) -> str:
    return ", ".join("?" for _ in values)


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow state using SQLite.

    Each entity is stored as a JSON document next to the columns needed to
    filter on it.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS definitions (
                id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                body TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS instances (
                id TEXT PRIMARY KEY,
                definition_id TEXT NOT NULL,
                tenant_id TEXT NOT NULL,
                status TEXT NOT NULL,
                revision INTEGER NOT NULL,
                body TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS tasks (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                instance_id TEXT NOT NULL,
                tenant_id TEXT NOT NULL,
                name TEXT NOT NULL,
                status TEXT NOT NULL,
                body TEXT NOT NULL,
                UNIQUE (instance_id, name)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS history (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                instance_id TEXT NOT NULL,
                body TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS permissions (
                id TEXT PRIMARY KEY,
                definition_id TEXT NOT NULL,
                body TEXT NOT NULL
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS history_instance ON history (instance_id)"
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()
        return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    async def _body(self, query: str, *params: Any) -> str | None:
        row = await asyncio.to_thread(self._fetchone, query, *params)
        return row["body"] if row else None

    # ------------------------------------------------------------------
    # Definitions
    async def create_definition(self, definition: WorkflowDefinition) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO definitions (id, tenant_id, body) VALUES (?, ?, ?)",
            definition.id,
            definition.tenant_id,
            definition.model_dump_json(),
        )

    async def update_definition(self, definition: WorkflowDefinition) -> None:
        await asyncio.to_thread(
            self._execute,
            "UPDATE definitions SET tenant_id = ?, body = ? WHERE id = ?",
            definition.tenant_id,
            definition.model_dump_json(),
            definition.id,
        )

    async def delete_definition(self, definition_id: str) -> bool:
        deleted = await asyncio.to_thread(
            self._execute, "DELETE FROM definitions WHERE id = ?", definition_id
        )
        return deleted > 0

    async def get_definition(self, definition_id: str) -> WorkflowDefinition | None:
        body = await self._body(
            "SELECT body FROM definitions WHERE id = ?", definition_id
        )
        return WorkflowDefinition.model_validate_json(body) if body else None

    async def list_definitions(
        self, tenant_id: Optional[str] = None
    ) -> list[WorkflowDefinition]:
        if tenant_id is None:
            rows = await asyncio.to_thread(self._fetchall, "SELECT body FROM definitions")
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT body FROM definitions WHERE tenant_id = ?",
                tenant_id,
            )
        return [WorkflowDefinition.model_validate_json(r["body"]) for r in rows]

    # ------------------------------------------------------------------
    # Instances
    async def create_instance(self, instance: WorkflowInstance) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO instances (id, definition_id, tenant_id, status, revision, body)
            VALUES (?, ?, ?, ?, ?, ?)
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
        updated = await asyncio.to_thread(
            self._execute,
            """
            UPDATE instances SET status = ?, revision = ?, body = ?
            WHERE id = ? AND revision = ?
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
        body = await self._body("SELECT body FROM instances WHERE id = ?", instance_id)
        return WorkflowInstance.model_validate_json(body) if body else None

    async def list_instances(
        self,
        tenant_id: Optional[str] = None,
        definition_id: Optional[str] = None,
        statuses: Optional[Iterable[WorkflowStatus]] = None,
    ) -> list[WorkflowInstance]:
        clauses: list[str] = []
        params: list[Any] = []
        if tenant_id is not None:
            clauses.append("tenant_id = ?")
            params.append(tenant_id)
        if definition_id is not None:
            clauses.append("definition_id = ?")
            params.append(definition_id)
        if statuses is not None:
            values = [s.value for s in statuses]
            if not values:
                return []
            clauses.append(f"status IN ({_placeholders(values)})")
            params.extend(values)
        query = "SELECT body FROM instances"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [WorkflowInstance.model_validate_json(r["body"]) for r in rows]

    # ------------------------------------------------------------------
    # Tasks
    async def create_task(self, task: WorkflowTask) -> WorkflowTask:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO tasks (id, instance_id, tenant_id, name, status, body)
            VALUES (?, ?, ?, ?, ?, ?)
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
        query = "UPDATE tasks SET status = ?, body = ? WHERE id = ?"
        params: list[Any] = [task.status.value, task.model_dump_json(), task.id]
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status.value)
        updated = await asyncio.to_thread(self._execute, query, *params)
        if updated == 0 and expected_status is not None:
            raise ConcurrentModificationError(
                "task", task.id, f"status is no longer {expected_status.value}"
            )

    async def get_task(self, task_id: str) -> WorkflowTask | None:
        body = await self._body("SELECT body FROM tasks WHERE id = ?", task_id)
        return WorkflowTask.model_validate_json(body) if body else None

    async def find_task(self, instance_id: str, name: str) -> WorkflowTask | None:
        body = await self._body(
            "SELECT body FROM tasks WHERE instance_id = ? AND name = ?",
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
        clauses: list[str] = []
        params: list[Any] = []
        if instance_id is not None:
            clauses.append("instance_id = ?")
            params.append(instance_id)
        if tenant_id is not None:
            clauses.append("tenant_id = ?")
            params.append(tenant_id)
        if statuses is not None:
            values = [s.value for s in statuses]
            if not values:
                return []
            clauses.append(f"status IN ({_placeholders(values)})")
            params.extend(values)
        query = "SELECT body FROM tasks"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY seq"
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [WorkflowTask.model_validate_json(r["body"]) for r in rows]

    # ------------------------------------------------------------------
    # History
    async def append_history(self, entry: WorkflowHistoryEntry) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO history (id, instance_id, body) VALUES (?, ?, ?)",
            entry.id,
            entry.instance_id,
            entry.model_dump_json(),
        )

    async def list_history(self, instance_id: str) -> list[WorkflowHistoryEntry]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT body FROM history WHERE instance_id = ? ORDER BY seq",
            instance_id,
        )
        return [WorkflowHistoryEntry.model_validate_json(r["body"]) for r in rows]

    # ------------------------------------------------------------------
    # Permissions
    async def add_permission(self, permission: WorkflowPermission) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO permissions (id, definition_id, body) VALUES (?, ?, ?)",
            permission.id,
            permission.definition_id,
            permission.model_dump_json(),
        )

    async def update_permission(self, permission: WorkflowPermission) -> None:
        await asyncio.to_thread(
            self._execute,
            "UPDATE permissions SET body = ? WHERE id = ?",
            permission.model_dump_json(),
            permission.id,
        )

    async def get_permission(self, permission_id: str) -> WorkflowPermission | None:
        body = await self._body(
            "SELECT body FROM permissions WHERE id = ?", permission_id
        )
        return WorkflowPermission.model_validate_json(body) if body else None

    async def list_permissions(self, definition_id: str) -> list[WorkflowPermission]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT body FROM permissions WHERE definition_id = ?",
            definition_id,
        )
        return [WorkflowPermission.model_validate_json(r["body"]) for r in rows]
