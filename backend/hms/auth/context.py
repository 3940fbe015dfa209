"""
RequestContext — "who is asking, what role do they hold, what may they do".

Every authenticated API request gets a RequestContext carrying the caller's
identity, role and the explicit grant rows for that role. Permission checks
go through the same resolver the client uses, so the server and UI always
agree on what a role can do.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from fastapi import HTTPException

from hms.auth.permissions import Action, GrantIndex, Module
from hms.auth.resolver import resolve
from hms.auth.roles import SUPER_ROLE, Role


@dataclass
class RequestContext:
    user_id: str = "anonymous"
    role: Role | None = None
    email: str | None = None
    grants: GrantIndex = field(default_factory=dict)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id != "anonymous" and self.role is not None

    @property
    def is_super(self) -> bool:
        return self.role is SUPER_ROLE

    def can(self, module: Module, action: Action) -> bool:
        if self.role is None:
            return False
        return resolve(self.role, module, action, self.grants)

    def require(self, module: Module, action: Action) -> None:
        """Raise 403 if the caller lacks (module, action)."""
        if not self.can(module, action):
            raise HTTPException(
                status_code=403,
                detail=f"Insufficient permissions: requires {module.value}:{action.value}",
            )

    def require_any(self, module: Module, *actions: Action) -> None:
        """Raise 403 if the caller lacks ALL of the given actions on module."""
        if not any(self.can(module, a) for a in actions):
            needed = ", ".join(a.value for a in actions)
            raise HTTPException(
                status_code=403,
                detail=f"Insufficient permissions: requires one of {module.value}:[{needed}]",
            )

    @property
    def actor(self) -> str:
        """Identity string for audit logging."""
        role = self.role.value if self.role else "unknown"
        return f"{role}:{self.user_id}"
