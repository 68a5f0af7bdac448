"""Read-side aggregates over instances and tasks."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from pydantic import BaseModel

from .constants import DEFAULT_ANALYTICS_WINDOW_DAYS
from .contracts import TaskStatus, WorkflowInstance, WorkflowStatus, utcnow
from .persistence import WorkflowRepository

logger = logging.getLogger(__name__)


class WorkflowAnalytics(BaseModel):
    tenant_id: str
    definition_id: Optional[str] = None
    period_start: datetime
    period_end: datetime
    total_definitions: int = 0
    active_instances: int = 0
    completed_instances: int = 0
    failed_instances: int = 0
    pending_tasks: int = 0
    overdue_tasks: int = 0
    average_completion_hours: float = 0.0
    success_rate: float = 0.0


class DefinitionPerformance(BaseModel):
    definition_id: str
    name: str
    execution_count: int = 0
    successful: int = 0
    failed: int = 0
    last_executed: Optional[datetime] = None
    average_completion_hours: float = 0.0
    success_rate: float = 0.0


def _completion_hours(instances: Iterable[WorkflowInstance]) -> float:
    """Mean started-to-completed duration of Completed instances, in hours."""
    durations = [
        (i.completed_at - i.started_at).total_seconds() / 3600
        for i in instances
        if i.status is WorkflowStatus.COMPLETED and i.completed_at is not None
    ]
    return sum(durations) / len(durations) if durations else 0.0


def _success_rate(completed: int, failed: int) -> float:
    finished = completed + failed
    return completed / finished * 100 if finished else 0.0


class AnalyticsService:
    """Aggregate counts and timings for a tenant over a date window.

    The window defaults to the last thirty days and selects instances by
    their start time.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._clock = clock

    def _window(
        self, start: Optional[datetime], end: Optional[datetime]
    ) -> tuple[datetime, datetime]:
        end = end or self._clock()
        start = start or end - timedelta(days=DEFAULT_ANALYTICS_WINDOW_DAYS)
        return start, end

    async def _instances(
        self,
        tenant_id: str,
        start: datetime,
        end: datetime,
        definition_id: Optional[str] = None,
    ) -> list[WorkflowInstance]:
        instances = await self._repository.list_instances(
            tenant_id=tenant_id, definition_id=definition_id
        )
        return [i for i in instances if start <= i.started_at <= end]

    async def get_analytics(
        self,
        tenant_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        definition_id: Optional[str] = None,
    ) -> WorkflowAnalytics:
        start, end = self._window(start, end)
        instances = await self._instances(tenant_id, start, end, definition_id)
        instance_ids = {i.id for i in instances}

        definitions = await self._repository.list_definitions(tenant_id)
        active_definitions = [
            d
            for d in definitions
            if d.is_active and (definition_id is None or d.id == definition_id)
        ]

        pending = await self._repository.list_tasks(
            tenant_id=tenant_id, statuses=[TaskStatus.PENDING]
        )
        pending = [t for t in pending if t.instance_id in instance_ids]
        now = self._clock()
        overdue = [t for t in pending if t.due_date is not None and t.due_date < now]

        completed = sum(1 for i in instances if i.status is WorkflowStatus.COMPLETED)
        failed = sum(1 for i in instances if i.status is WorkflowStatus.FAILED)
        return WorkflowAnalytics(
            tenant_id=tenant_id,
            definition_id=definition_id,
            period_start=start,
            period_end=end,
            total_definitions=len(active_definitions),
            active_instances=sum(
                1 for i in instances if i.status is WorkflowStatus.ACTIVE
            ),
            completed_instances=completed,
            failed_instances=failed,
            pending_tasks=len(pending),
            overdue_tasks=len(overdue),
            average_completion_hours=_completion_hours(instances),
            success_rate=_success_rate(completed, failed),
        )

    async def get_performance_metrics(
        self,
        tenant_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[DefinitionPerformance]:
        """Per active definition figures, busiest first."""
        start, end = self._window(start, end)
        instances = await self._instances(tenant_id, start, end)
        definitions = await self._repository.list_definitions(tenant_id)

        metrics: list[DefinitionPerformance] = []
        for definition in definitions:
            if not definition.is_active:
                continue
            runs = [i for i in instances if i.definition_id == definition.id]
            completed = sum(1 for i in runs if i.status is WorkflowStatus.COMPLETED)
            failed = sum(1 for i in runs if i.status is WorkflowStatus.FAILED)
            metrics.append(
                DefinitionPerformance(
                    definition_id=definition.id,
                    name=definition.name,
                    execution_count=len(runs),
                    successful=completed,
                    failed=failed,
                    last_executed=max((i.started_at for i in runs), default=None),
                    average_completion_hours=_completion_hours(runs),
                    success_rate=_success_rate(completed, failed),
                )
            )
        metrics.sort(key=lambda m: m.execution_count, reverse=True)
        logger.debug(f"Computed performance metrics for {len(metrics)} definitions")
        return metrics
