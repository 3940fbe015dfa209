"""
API Dependencies — DB session, auth context, permission guards.

``get_request_context``:
  1. Extracts the Bearer token from the Authorization header
  2. Decodes and validates the JWT
  3. Loads the explicit grant rows for the caller's role
  4. Returns a RequestContext that resolves permissions through the matrix

A token whose role is not one of the known roles still authenticates, but
every permission check on it fails closed.
"""

import logging
from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from hms.auth.context import RequestContext
from hms.auth.jwt import decode_access_token
from hms.auth.permissions import Action, Module
from hms.auth.roles import SUPER_ROLE, parse_role
from hms.database import async_session
from hms.services.notification_hub import NotificationHub
from hms.services.permission_store import PermissionStore

logger = logging.getLogger(__name__)


# ── Database session ─────────────────────────────────────────────────────────

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a DB session per request, commit on success, rollback on error."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Push hub ─────────────────────────────────────────────────────────────────

def get_hub(request: Request) -> NotificationHub:
    return request.app.state.hub


# ── Request context (JWT authentication) ──────────────────────────────────────

async def get_request_context(request: Request,
                              db: AsyncSession = Depends(get_db)) -> RequestContext:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")

    token = auth_header[7:]
    try:
        claims = decode_access_token(token)
    except JWTError as e:
        logger.debug("JWT decode failed: %s", e)
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    role = parse_role(claims.get("role"))
    if role is None:
        logger.warning("Token for %s carries unknown role %r", claims.get("sub"), claims.get("role"))

    grants = {}
    if role is not None and role is not SUPER_ROLE:
        grants = await PermissionStore(db).grant_index(role)

    ctx = RequestContext(
        user_id=str(claims.get("sub", "anonymous")),
        role=role,
        email=claims.get("email"),
        grants=grants,
    )
    request.state.actor = ctx.actor
    return ctx


# ── Permission guards ────────────────────────────────────────────────────────

def require(module: Module, action: Action):
    """
    FastAPI dependency that checks the caller may perform ``action`` on ``module``.

    Usage:
        @router.get("/permissions")
        async def list_grants(ctx: RequestContext = Depends(require(Module.USERS, Action.VIEW))):
            ...
    """
    async def _check(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
        ctx.require(module, action)
        return ctx
    return _check


def require_any(module: Module, *actions: Action):
    """FastAPI dependency that checks the caller has AT LEAST ONE of ``actions`` on ``module``."""
    async def _check(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
        ctx.require_any(module, *actions)
        return ctx
    return _check
