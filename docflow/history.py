"""Append-only audit trail for workflow instances."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .contracts import WorkflowHistoryEntry
from .persistence import WorkflowRepository

logger = logging.getLogger(__name__)


class HistoryAction:
    """Action names written to the audit trail."""

    CREATED = "Created"
    STEP_EXECUTED = "StepExecuted"
    ADVANCED = "Advanced"
    TASK_CREATED = "TaskCreated"
    TASK_REASSIGNED = "TaskReassigned"
    TASK_CANCELLED = "TaskCancelled"
    TASK_OVERDUE = "TaskOverdue"
    DECISION_TAKEN = "DecisionTaken"
    DECISION_UNMATCHED = "DecisionUnmatched"
    PAUSE = "Pause"
    RESUME = "Resume"
    CANCEL = "Cancel"
    COMPLETED = "Completed"
    FAILED = "Failed"
    DUE_DATE_EXPIRED = "DueDateExpired"

    @staticmethod
    def task_completed(action: str) -> str:
        return f"TaskCompleted:{action}"


class HistoryRecorder:
    """Writes immutable history entries. There is no update or delete."""

    def __init__(self, repository: WorkflowRepository) -> None:
        self._repository = repository

    async def append(
        self,
        instance_id: str,
        action: str,
        from_state: Optional[str],
        to_state: Optional[str],
        actor: str,
        comments: Optional[str] = None,
        action_data: Optional[Dict[str, Any]] = None,
    ) -> WorkflowHistoryEntry:
        entry = WorkflowHistoryEntry(
            instance_id=instance_id,
            action=action,
            from_state=from_state,
            to_state=to_state,
            actor=actor,
            comments=comments,
            action_data=dict(action_data or {}),
        )
        await self._repository.append_history(entry)
        logger.debug(
            f"History {action} for instance {instance_id}: {from_state} -> {to_state}"
        )
        return entry

    async def timeline(self, instance_id: str) -> list[WorkflowHistoryEntry]:
        """Return every entry recorded for ``instance_id`` in append order."""
        return await self._repository.list_history(instance_id)
