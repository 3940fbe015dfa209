"""Authentication API — login and current profile."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hms.api.deps import get_db, get_request_context
from hms.auth.context import RequestContext
from hms.auth.jwt import create_access_token
from hms.auth.passwords import verify_password
from hms.config import settings
from hms.models import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int = settings.access_token_expire_minutes * 60
    user: dict


def _user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "role": user.role,
    }


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Authenticate with email + password, receive a JWT access token."""
    user = (await db.execute(
        select(User).where(User.email == body.email)
    )).scalar_one_or_none()

    if not user or not verify_password(body.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is disabled")

    logger.info("Login: %s (%s)", user.email, user.role)
    return TokenResponse(
        access_token=create_access_token(user.id, user.email, user.role),
        user=_user_to_dict(user),
    )


@router.get("/me")
async def me(ctx: RequestContext = Depends(get_request_context),
             db: AsyncSession = Depends(get_db)):
    """Return the current authenticated user profile."""
    if not ctx.user_id.isdigit():
        raise HTTPException(status_code=404, detail="User not found")

    user = (await db.execute(
        select(User).where(User.id == int(ctx.user_id))
    )).scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    return _user_to_dict(user)
