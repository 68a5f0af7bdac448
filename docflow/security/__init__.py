"""Identity and authorization for docflow."""

from .identity import RoleResolver, StaticRoleResolver, get_role_resolver
from .policy import PermissionEvaluator

__all__ = [
    "PermissionEvaluator",
    "RoleResolver",
    "StaticRoleResolver",
    "get_role_resolver",
]
