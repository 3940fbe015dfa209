from hms.auth.roles import Role, ROLE_LABELS, SUPER_ROLE, parse_role
from hms.auth.permissions import (
    Action, Module, MODULE_LABELS, PermissionGrant, index_grants,
    parse_action, parse_module,
)
from hms.auth.defaults import DEFAULT_PERMISSIONS, default_permissions_for
from hms.auth.resolver import (
    PermissionSource, can_all, can_any, effective_matrix,
    effective_permissions, permission_source, resolve,
)

__all__ = [
    "Role", "ROLE_LABELS", "SUPER_ROLE", "parse_role",
    "Action", "Module", "MODULE_LABELS", "PermissionGrant", "index_grants",
    "parse_action", "parse_module",
    "DEFAULT_PERMISSIONS", "default_permissions_for",
    "PermissionSource", "can_all", "can_any", "effective_matrix",
    "effective_permissions", "permission_source", "resolve",
]
