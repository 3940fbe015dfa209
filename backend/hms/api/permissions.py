"""
Permissions API — grant-fetch endpoint and permission matrix administration.

GET  /api/permissions/current          caller's role and its explicit grant rows
GET  /api/permissions/catalog          roles, modules and actions with labels
GET  /api/permissions                  all grant rows (optionally ?role=)
GET  /api/permissions/matrix/{role}    effective matrix for a role, with source tier
GET  /api/permissions/history          audited grant changes and chain integrity
PUT  /api/permissions/{role}/{module}  write an explicit grant row
DELETE /api/permissions/{role}/{module} drop the grant row, defaults apply again

Writes are committed and then broadcast ``permissions_updated`` to every
socket of the affected role so live sessions refresh their permission context.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from hms.api.deps import get_db, get_hub, get_request_context, require
from hms.auth.context import RequestContext
from hms.auth.permissions import Action, Module, parse_module
from hms.auth.resolver import effective_permissions, permission_source
from hms.auth.roles import ROLE_LABELS, Role, parse_role
from hms.services.audit_service import AuditService, entry_to_dict
from hms.services.notification_hub import NotificationHub
from hms.services.permission_store import PermissionStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/permissions", tags=["permissions"])


# ── Schemas ──

class GrantUpdate(BaseModel):
    can_view: bool = False
    can_create: bool = False
    can_edit: bool = False
    can_delete: bool = False
    can_approve: bool = False
    can_lock: bool = False
    can_unlock: bool = False
    can_export: bool = False

    def to_actions(self) -> dict[Action, bool]:
        return {a: getattr(self, a.field) for a in Action}


class CurrentPermissionsResponse(BaseModel):
    role: str | None
    permissions: list[dict]


# ── Helpers ──

def _parse_role_or_400(value: str) -> Role:
    role = parse_role(value)
    if role is None:
        raise HTTPException(status_code=400, detail=f"Unknown role: {value}")
    return role


def _parse_module_or_400(value: str) -> Module:
    module = parse_module(value)
    if module is None:
        raise HTTPException(status_code=400, detail=f"Unknown module: {value}")
    return module


# ── GET /api/permissions/current ──

@router.get("/current", response_model=CurrentPermissionsResponse)
async def current_permissions(ctx: RequestContext = Depends(get_request_context)):
    """Return the caller's role and the explicit grant rows for it."""
    return CurrentPermissionsResponse(
        role=ctx.role.value if ctx.role else None,
        permissions=[g.to_dict() for g in ctx.grants.values()],
    )


# ── GET /api/permissions/catalog ──

@router.get("/catalog")
async def permission_catalog(ctx: RequestContext = Depends(get_request_context)):
    return {
        "roles": [{"value": r.value, "label": ROLE_LABELS[r]} for r in Role],
        "modules": [{"value": m.value, "label": m.label} for m in Module],
        "actions": [{"value": a.value, "label": a.label} for a in Action],
    }


# ── GET /api/permissions ──

@router.get("")
async def list_grants(role: str | None = None,
                      ctx: RequestContext = Depends(require(Module.USERS, Action.VIEW)),
                      db: AsyncSession = Depends(get_db)):
    parsed = _parse_role_or_400(role) if role else None
    grants = await PermissionStore(db).list_grants(parsed)
    return [g.to_dict() for g in grants]


# ── GET /api/permissions/matrix/{role} ──

@router.get("/matrix/{role}")
async def role_matrix(role: str,
                      ctx: RequestContext = Depends(require(Module.USERS, Action.VIEW)),
                      db: AsyncSession = Depends(get_db)):
    """Effective permissions for every module of ``role`` and which tier decided them."""
    parsed = _parse_role_or_400(role)
    grants = await PermissionStore(db).grant_index(parsed)
    modules = []
    for module in Module:
        flags = effective_permissions(parsed, module, grants)
        modules.append({
            "module": module.value,
            "label": module.label,
            "source": permission_source(parsed, module, grants).value,
            "actions": {a.value: allowed for a, allowed in flags.items()},
        })
    return {"role": parsed.value, "modules": modules}


# ── GET /api/permissions/history ──

@router.get("/history")
async def permission_history(role: str | None = None, module: str | None = None,
                             limit: int = 50, offset: int = 0,
                             ctx: RequestContext = Depends(require(Module.AUDIT_LOGS, Action.VIEW)),
                             db: AsyncSession = Depends(get_db)):
    """Audited grant changes, newest first, with the integrity of the audit chain."""
    parsed_role = _parse_role_or_400(role) if role else None
    parsed_module = _parse_module_or_400(module) if module else None
    audit = AuditService(db)
    entries = await audit.permission_history(
        role=parsed_role.value if parsed_role else None,
        module=parsed_module.value if parsed_module else None,
        limit=min(max(limit, 1), 200),
        offset=max(offset, 0),
    )
    return {
        "entries": [entry_to_dict(e) for e in entries],
        "chain": await audit.verify_chain_integrity(),
    }


# ── PUT /api/permissions/{role}/{module} ──

@router.put("/{role}/{module}")
async def upsert_grant(role: str, module: str, body: GrantUpdate,
                       ctx: RequestContext = Depends(require(Module.USERS, Action.EDIT)),
                       db: AsyncSession = Depends(get_db),
                       hub: NotificationHub = Depends(get_hub)):
    parsed_role = _parse_role_or_400(role)
    parsed_module = _parse_module_or_400(module)
    try:
        grant = await PermissionStore(db).upsert_grant(
            parsed_role, parsed_module, body.to_actions(), actor=ctx.actor,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    await db.commit()
    await hub.broadcast({"type": "permissions_updated", "role": parsed_role.value,
                         "module": parsed_module.value}, role=parsed_role.value)
    return grant.to_dict()


# ── DELETE /api/permissions/{role}/{module} ──

@router.delete("/{role}/{module}")
async def reset_grant(role: str, module: str,
                      ctx: RequestContext = Depends(require(Module.USERS, Action.EDIT)),
                      db: AsyncSession = Depends(get_db),
                      hub: NotificationHub = Depends(get_hub)):
    parsed_role = _parse_role_or_400(role)
    parsed_module = _parse_module_or_400(module)
    if not await PermissionStore(db).reset_grant(parsed_role, parsed_module, actor=ctx.actor):
        raise HTTPException(status_code=404,
                            detail=f"No explicit grant for {parsed_role.value}/{parsed_module.value}")

    await db.commit()
    await hub.broadcast({"type": "permissions_updated", "role": parsed_role.value,
                         "module": parsed_module.value}, role=parsed_role.value)
    return {"ok": True}
