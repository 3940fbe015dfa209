"""
Permission resolution — override first, then defaults, then deny.

    resolve(role, module, action, grants)

1. Unknown role / module / action        → False (fail closed, never raises)
2. SUPER_ADMIN                           → True
3. Grant row exists for (role, module)   → that row's flag for action
4. Otherwise                             → default table value, else False

Everything here is a pure function of its arguments; it performs no I/O and
is cheap enough to call on every render.
"""

from enum import Enum

from hms.auth.defaults import DEFAULT_PERMISSIONS
from hms.auth.permissions import Action, GrantIndex, Module, parse_action, parse_module
from hms.auth.roles import SUPER_ROLE, parse_role

_NO_GRANTS: GrantIndex = {}


class PermissionSource(str, Enum):
    SUPER = "super"
    GRANT = "grant"
    DEFAULT = "default"
    NONE = "none"


def resolve(role, module, action, grants: GrantIndex | None = None) -> bool:
    """Effective permission for (role, module, action) under ``grants``."""
    r = parse_role(role)
    m = parse_module(module)
    a = parse_action(action)
    if r is None or m is None or a is None:
        return False
    if r is SUPER_ROLE:
        return True

    grant = (grants or _NO_GRANTS).get((r, m))
    if grant is not None:
        return grant.allows(a)

    return DEFAULT_PERMISSIONS.get(r, {}).get(m, {}).get(a, False)


def permission_source(role, module, grants: GrantIndex | None = None) -> PermissionSource:
    """Which tier decides permissions for (role, module)."""
    r = parse_role(role)
    m = parse_module(module)
    if r is None or m is None:
        return PermissionSource.NONE
    if r is SUPER_ROLE:
        return PermissionSource.SUPER
    if (r, m) in (grants or _NO_GRANTS):
        return PermissionSource.GRANT
    if m in DEFAULT_PERMISSIONS.get(r, {}):
        return PermissionSource.DEFAULT
    return PermissionSource.NONE


def effective_permissions(role, module, grants: GrantIndex | None = None) -> dict[Action, bool]:
    """All eight action flags for (role, module)."""
    return {a: resolve(role, module, a, grants) for a in Action}


def effective_matrix(role, grants: GrantIndex | None = None) -> dict[Module, dict[Action, bool]]:
    """The full module × action matrix for ``role``."""
    return {m: effective_permissions(role, m, grants) for m in Module}


def can_any(role, module, actions, grants: GrantIndex | None = None) -> bool:
    return any(resolve(role, module, a, grants) for a in actions)


def can_all(role, module, actions, grants: GrantIndex | None = None) -> bool:
    return all(resolve(role, module, a, grants) for a in actions)
