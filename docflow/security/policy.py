"""Permission evaluation for workflow definitions."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional

from ..contracts import (
    PermissionType,
    ReservedPermissionRules,
    WorkflowDefinition,
    WorkflowPermission,
    utcnow,
)
from ..outcomes import Outcome
from ..persistence import WorkflowRepository
from .identity import RoleResolver, StaticRoleResolver

logger = logging.getLogger(__name__)


class PermissionEvaluator:
    """Decides whether a user may act on a workflow definition.

    The creator of a definition always holds ``Admin``. Everyone else needs an
    active, unexpired grant, either to them directly or to one of their roles,
    for the requested type or for ``Admin``. The ``reserved`` payload of a
    grant is never consulted.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        roles: RoleResolver | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._roles = roles or StaticRoleResolver()
        self._clock = clock

    async def has_permission(
        self,
        user_id: str,
        definition_id: str,
        permission_type: PermissionType,
        definition: Optional[WorkflowDefinition] = None,
    ) -> bool:
        """Return ``True`` if ``user_id`` holds ``permission_type`` on the definition."""
        if definition is None or definition.id != definition_id:
            definition = await self._repository.get_definition(definition_id)
        if definition is not None and definition.created_by == user_id:
            return True

        grants = await self._repository.list_permissions(definition_id)
        if not grants:
            return False
        roles = set(await self._roles.roles_for(user_id))
        now = self._clock()
        for grant in grants:
            if not grant.is_effective(now):
                continue
            if grant.permission_type not in (permission_type, PermissionType.ADMIN):
                continue
            if grant.user_id == user_id or (grant.role is not None and grant.role in roles):
                return True
        return False

    async def grant_permission(
        self,
        definition_id: str,
        granted_by: str,
        user_id: Optional[str] = None,
        role: Optional[str] = None,
        permission_type: PermissionType = PermissionType.VIEW,
        actions: Optional[Iterable[str]] = None,
        conditions: Optional[Dict[str, Any]] = None,
        expires_at: Optional[datetime] = None,
    ) -> Outcome[WorkflowPermission]:
        """Record a grant. The caller must already hold ``Admin``."""
        definition = await self._repository.get_definition(definition_id)
        if definition is None:
            return Outcome.not_found(f"Workflow definition {definition_id} not found")
        if not await self.has_permission(
            granted_by, definition_id, PermissionType.ADMIN, definition
        ):
            logger.warning(
                f"User {granted_by} refused grant on definition {definition_id}"
            )
            return Outcome.unauthorized(
                "Insufficient permissions to manage this workflow"
            )
        if user_id is None and role is None:
            return Outcome.validation_failed("Either user_id or role must be specified")

        permission = WorkflowPermission(
            definition_id=definition_id,
            user_id=user_id,
            role=role,
            permission_type=permission_type,
            reserved=ReservedPermissionRules(
                actions=list(actions or []), conditions=conditions
            ),
            expires_at=expires_at,
            granted_by=granted_by,
        )
        await self._repository.add_permission(permission)
        logger.info(
            f"Granted {permission_type.value} on definition {definition_id} "
            f"to {'user ' + user_id if user_id else 'role ' + str(role)}"
        )
        return Outcome.success(permission)

    async def revoke_permission(
        self, permission_id: str, revoked_by: str
    ) -> Outcome[WorkflowPermission]:
        """Deactivate a grant. The caller must hold ``Admin`` on its definition."""
        permission = await self._repository.get_permission(permission_id)
        if permission is None:
            return Outcome.not_found(f"Permission {permission_id} not found")
        if not await self.has_permission(
            revoked_by, permission.definition_id, PermissionType.ADMIN
        ):
            logger.warning(f"User {revoked_by} refused revoke of {permission_id}")
            return Outcome.unauthorized(
                "Insufficient permissions to manage this workflow"
            )
        permission.is_active = False
        await self._repository.update_permission(permission)
        logger.info(f"Revoked permission {permission_id}")
        return Outcome.success(permission)

    async def list_permissions(
        self, definition_id: str, user_id: str
    ) -> Outcome[list[WorkflowPermission]]:
        if await self._repository.get_definition(definition_id) is None:
            return Outcome.not_found(f"Workflow definition {definition_id} not found")
        if not await self.has_permission(user_id, definition_id, PermissionType.ADMIN):
            return Outcome.unauthorized(
                "Insufficient permissions to manage this workflow"
            )
        return Outcome.success(await self._repository.list_permissions(definition_id))
