"""
User notifications API — list, create, mark read, delete.

Read and delete are owner-only: a notification is only ever mutated by
requests from the user it was addressed to. Staff holding
NOTIFICATIONS:create may read other users' lists and create notifications.
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from hms.api.deps import get_db, get_hub, get_request_context, require
from hms.auth.context import RequestContext
from hms.auth.permissions import Action, Module
from hms.auth.roles import parse_role
from hms.models import UserNotification
from hms.services.notification_hub import NotificationHub
from hms.services.notification_service import NotificationService

router = APIRouter(prefix="/api/user-notifications", tags=["notifications"])


class NotificationCreate(BaseModel):
    user_id: str
    user_role: str
    type: str = "system"
    title: str
    message: str
    related_entity_type: str | None = None
    related_entity_id: str | None = None
    metadata: dict | None = None


def _can_manage(ctx: RequestContext) -> bool:
    return ctx.can(Module.NOTIFICATIONS, Action.CREATE)


async def _get_owned_or_error(service: NotificationService, notification_id: str,
                              ctx: RequestContext) -> UserNotification:
    notification = await service.get(notification_id)
    if notification is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    if notification.user_id != ctx.user_id:
        raise HTTPException(status_code=403, detail="Notification belongs to another user")
    return notification


# ── GET /api/user-notifications/role/{role} ──

@router.get("/role/{role}")
async def list_by_role(role: str,
                       ctx: RequestContext = Depends(require(Module.NOTIFICATIONS, Action.CREATE)),
                       db: AsyncSession = Depends(get_db),
                       hub: NotificationHub = Depends(get_hub)):
    parsed = parse_role(role)
    if parsed is None:
        raise HTTPException(status_code=400, detail=f"Unknown role: {role}")
    notifications = await NotificationService(db, hub).list_for_role(parsed.value)
    return [n.to_dict() for n in notifications]


# ── GET /api/user-notifications/notification/{id} ──

@router.get("/notification/{notification_id}")
async def get_notification(notification_id: str,
                           ctx: RequestContext = Depends(get_request_context),
                           db: AsyncSession = Depends(get_db),
                           hub: NotificationHub = Depends(get_hub)):
    notification = await NotificationService(db, hub).get(notification_id)
    if notification is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    if notification.user_id != ctx.user_id and not _can_manage(ctx):
        raise HTTPException(status_code=403, detail="Notification belongs to another user")
    return notification.to_dict()


# ── GET /api/user-notifications/{user_id} ──

@router.get("/{user_id}")
async def list_for_user(user_id: str,
                        ctx: RequestContext = Depends(get_request_context),
                        db: AsyncSession = Depends(get_db),
                        hub: NotificationHub = Depends(get_hub)):
    """Notification list endpoint: every notification for ``user_id``, newest first."""
    if user_id != ctx.user_id and not _can_manage(ctx):
        raise HTTPException(status_code=403, detail="Cannot read another user's notifications")
    notifications = await NotificationService(db, hub).list_for_user(user_id)
    return [n.to_dict() for n in notifications]


# ── POST /api/user-notifications ──

@router.post("", status_code=201)
async def create_notification(body: NotificationCreate,
                              ctx: RequestContext = Depends(require(Module.NOTIFICATIONS, Action.CREATE)),
                              db: AsyncSession = Depends(get_db),
                              hub: NotificationHub = Depends(get_hub)):
    role = parse_role(body.user_role)
    if role is None:
        raise HTTPException(status_code=400, detail=f"Unknown role: {body.user_role}")
    notification = await NotificationService(db, hub).create_and_push(
        user_id=body.user_id,
        user_role=role.value,
        type=body.type,
        title=body.title,
        message=body.message,
        related_entity_type=body.related_entity_type,
        related_entity_id=body.related_entity_id,
        metadata=body.metadata,
    )
    return notification.to_dict()


# ── PATCH /api/user-notifications/{id}/read ──

@router.patch("/{notification_id}/read")
async def mark_read(notification_id: str,
                    ctx: RequestContext = Depends(get_request_context),
                    db: AsyncSession = Depends(get_db),
                    hub: NotificationHub = Depends(get_hub)):
    service = NotificationService(db, hub)
    await _get_owned_or_error(service, notification_id, ctx)
    notification = await service.mark_read(notification_id)
    return notification.to_dict()


# ── PATCH /api/user-notifications/{user_id}/read-all ──

@router.patch("/{user_id}/read-all")
async def mark_all_read(user_id: str,
                        ctx: RequestContext = Depends(get_request_context),
                        db: AsyncSession = Depends(get_db),
                        hub: NotificationHub = Depends(get_hub)):
    if user_id != ctx.user_id:
        raise HTTPException(status_code=403, detail="Cannot modify another user's notifications")
    updated = await NotificationService(db, hub).mark_all_read(user_id)
    return {"success": True, "updated": updated}


# ── DELETE /api/user-notifications/{id} ──

@router.delete("/{notification_id}")
async def delete_notification(notification_id: str,
                              ctx: RequestContext = Depends(get_request_context),
                              db: AsyncSession = Depends(get_db),
                              hub: NotificationHub = Depends(get_hub)):
    service = NotificationService(db, hub)
    await _get_owned_or_error(service, notification_id, ctx)
    await service.delete(notification_id)
    return {"success": True}
