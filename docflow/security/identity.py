"""Role resolution for calling users."""

from __future__ import annotations

from typing import Dict, Iterable, Mapping, Optional, Protocol

from ..config import DocflowConfig, load_config


class RoleResolver(Protocol):
    """Maps a user id to the roles that user currently holds."""

    async def roles_for(self, user_id: str) -> list[str]:
        """Return the roles held by ``user_id``."""


class StaticRoleResolver(RoleResolver):
    """Resolve roles from a fixed in-process mapping."""

    def __init__(self, roles: Optional[Mapping[str, Iterable[str]]] = None) -> None:
        self._roles: Dict[str, set[str]] = {
            user: set(user_roles) for user, user_roles in (roles or {}).items()
        }

    def assign(self, user_id: str, role: str) -> None:
        self._roles.setdefault(user_id, set()).add(role)

    def remove(self, user_id: str, role: str) -> None:
        self._roles.get(user_id, set()).discard(role)

    async def roles_for(self, user_id: str) -> list[str]:
        return sorted(self._roles.get(user_id, set()))


def get_role_resolver(config: Optional[DocflowConfig] = None) -> StaticRoleResolver:
    """Build the role resolver described by ``identity.roles`` in the config."""
    config = config or load_config()
    return StaticRoleResolver(config.identity.roles)
