"""Workflow definition lifecycle."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from .constants import DEFAULT_PAGE_SIZE
from .contracts import (
    RUNNING_STATUSES,
    CreateDefinitionRequest,
    PermissionType,
    UpdateDefinitionRequest,
    ValidationResult,
    WorkflowDefinition,
    WorkflowPermission,
    utcnow,
)
from .graph import parse_graph, validate_graph
from .outcomes import Outcome
from .persistence import WorkflowRepository
from .security import PermissionEvaluator
from .tasks import paginate

logger = logging.getLogger(__name__)


class DefinitionService:
    """Create, edit, remove and read workflow definitions."""

    def __init__(
        self,
        repository: WorkflowRepository,
        policy: PermissionEvaluator,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._policy = policy
        self._clock = clock

    async def create_definition(
        self, tenant_id: str, user_id: str, request: CreateDefinitionRequest
    ) -> WorkflowDefinition:
        """Persist a new definition at version 1 and grant its creator ``Admin``."""
        now = self._clock()
        definition = WorkflowDefinition(
            tenant_id=tenant_id,
            name=request.name,
            description=request.description,
            graph=parse_graph(request.graph),
            category=request.category,
            tags=list(request.tags),
            is_active=request.is_active,
            created_by=user_id,
            created_at=now,
            updated_at=now,
        )
        await self._repository.create_definition(definition)
        await self._repository.add_permission(
            WorkflowPermission(
                definition_id=definition.id,
                user_id=user_id,
                permission_type=PermissionType.ADMIN,
                granted_by=user_id,
            )
        )
        logger.info(f"Created workflow definition {definition.id} ({definition.name})")
        return definition

    async def update_definition(
        self, definition_id: str, user_id: str, request: UpdateDefinitionRequest
    ) -> Outcome[WorkflowDefinition]:
        definition = await self._repository.get_definition(definition_id)
        if definition is None:
            return Outcome.not_found(f"Workflow definition {definition_id} not found")
        if not await self._policy.has_permission(
            user_id, definition_id, PermissionType.EDIT, definition
        ):
            logger.warning(f"User {user_id} refused edit of definition {definition_id}")
            return Outcome.unauthorized("Insufficient permissions to edit this workflow")

        definition.name = request.name
        definition.description = request.description
        definition.graph = parse_graph(request.graph)
        definition.category = request.category
        definition.tags = list(request.tags)
        definition.is_active = request.is_active
        definition.version += 1
        definition.updated_by = user_id
        definition.updated_at = self._clock()
        await self._repository.update_definition(definition)
        logger.info(
            f"Updated workflow definition {definition.id} to v{definition.version}"
        )
        return Outcome.success(definition)

    async def delete_definition(
        self, definition_id: str, user_id: str
    ) -> Outcome[WorkflowDefinition]:
        definition = await self._repository.get_definition(definition_id)
        if definition is None:
            return Outcome.not_found(f"Workflow definition {definition_id} not found")
        if not await self._policy.has_permission(
            user_id, definition_id, PermissionType.DELETE, definition
        ):
            logger.warning(
                f"User {user_id} refused delete of definition {definition_id}"
            )
            return Outcome.unauthorized(
                "Insufficient permissions to delete this workflow"
            )

        running = await self._repository.list_instances(
            definition_id=definition_id, statuses=list(RUNNING_STATUSES)
        )
        if running:
            return Outcome.invalid_state(
                f"Cannot delete workflow with {len(running)} active instances"
            )
        await self._repository.delete_definition(definition_id)
        logger.info(f"Deleted workflow definition {definition_id}")
        return Outcome.success(definition)

    async def get_definition(
        self, definition_id: str, user_id: str
    ) -> Outcome[WorkflowDefinition]:
        definition = await self._repository.get_definition(definition_id)
        if definition is None:
            return Outcome.not_found(f"Workflow definition {definition_id} not found")
        if not await self._policy.has_permission(
            user_id, definition_id, PermissionType.VIEW, definition
        ):
            return Outcome.unauthorized("Insufficient permissions to view this workflow")
        return Outcome.success(definition)

    async def list_definitions(
        self,
        tenant_id: str,
        category: Optional[str] = None,
        search: Optional[str] = None,
        include_inactive: bool = False,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> list[WorkflowDefinition]:
        """Definitions of a tenant ordered by name.

        ``search`` matches name or description case-insensitively.
        """
        definitions = await self._repository.list_definitions(tenant_id)
        if not include_inactive:
            definitions = [d for d in definitions if d.is_active]
        if category:
            definitions = [d for d in definitions if d.category == category]
        if search:
            needle = search.lower()
            definitions = [
                d
                for d in definitions
                if needle in d.name.lower()
                or needle in (d.description or "").lower()
            ]
        definitions.sort(key=lambda d: d.name)
        return paginate(definitions, page, page_size)

    async def validate_definition(
        self, definition_id: str, user_id: str
    ) -> Outcome[ValidationResult]:
        outcome = await self.get_definition(definition_id, user_id)
        if not outcome.ok:
            return Outcome(kind=outcome.kind, message=outcome.message)
        result = validate_graph(outcome.unwrap().graph)
        if not result.is_valid:
            return Outcome.validation_failed("Workflow definition is invalid", result)
        return Outcome.success(result)

