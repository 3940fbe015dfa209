"""
Permission Matrix Store — persisted grant rows for (role, module) pairs.

Grant rows are overrides: writing one replaces the default table for that
pair entirely, resetting deletes the row so the defaults apply again.
SUPER_ADMIN can never be overridden because the resolver bypasses grants
for it; attempts to write one are rejected.
"""

import logging
from typing import Mapping

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hms.auth.permissions import Action, GrantIndex, Module, PermissionGrant, index_grants
from hms.auth.roles import SUPER_ROLE, Role
from hms.middleware.metrics import permission_changes_total
from hms.models import RolePermission
from hms.services.audit_service import AuditService

logger = logging.getLogger(__name__)


class PermissionStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_row(self, role: Role, module: Module) -> RolePermission | None:
        result = await self.session.execute(
            select(RolePermission).where(
                RolePermission.role == role.value,
                RolePermission.module == module.value,
            )
        )
        return result.scalar_one_or_none()

    async def list_grants(self, role: Role | None = None) -> list[PermissionGrant]:
        """Grant rows, optionally for a single role. Rows with unknown keys are skipped."""
        query = select(RolePermission)
        if role is not None:
            query = query.where(RolePermission.role == role.value)
        query = query.order_by(RolePermission.role, RolePermission.module)
        rows = (await self.session.execute(query)).scalars()

        grants = []
        for row in rows:
            grant = row.to_grant()
            if grant is None:
                logger.warning("Ignoring grant row %s with unknown role/module %s/%s",
                               row.id, row.role, row.module)
                continue
            grants.append(grant)
        return grants

    async def grant_index(self, role: Role) -> GrantIndex:
        return index_grants(await self.list_grants(role))

    async def get_grant(self, role: Role, module: Module) -> PermissionGrant | None:
        row = await self._get_row(role, module)
        return row.to_grant() if row else None

    async def upsert_grant(self, role: Role, module: Module,
                           actions: Mapping[Action, bool], actor: str) -> PermissionGrant:
        """
        Create or replace the grant row for (role, module).

        Actions missing from ``actions`` are stored as False.
        """
        if role is SUPER_ROLE:
            raise ValueError("SUPER_ADMIN permissions cannot be overridden")

        grant = PermissionGrant.from_actions(role, module, actions)
        row = await self._get_row(role, module)
        existing = row.to_grant() if row else None
        before = existing.to_dict() if existing else None

        if row is None:
            row = RolePermission(role=role.value, module=module.value)
            self.session.add(row)
        for action in Action:
            setattr(row, action.field, grant.allows(action))
        row.updated_by = actor
        await self.session.flush()

        await AuditService(self.session).log_permission_granted(
            role.value, module.value, before, grant.to_dict(), actor,
        )
        permission_changes_total.labels(role=role.value, change="grant").inc()
        logger.info("Grant set for %s/%s by %s", role.value, module.value, actor)
        return grant

    async def reset_grant(self, role: Role, module: Module, actor: str) -> bool:
        """Delete the grant row so the default table applies. Returns False if none existed."""
        row = await self._get_row(role, module)
        if row is None:
            return False

        before = {a.field: getattr(row, a.field) for a in Action}
        await self.session.delete(row)
        await self.session.flush()

        await AuditService(self.session).log_permission_reset(role.value, module.value, before, actor)
        permission_changes_total.labels(role=role.value, change="reset").inc()
        logger.info("Grant reset for %s/%s by %s", role.value, module.value, actor)
        return True
