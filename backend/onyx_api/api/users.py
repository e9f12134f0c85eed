"""
App user endpoints: sign-up for the authenticated caller and profile management.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from onyx_api.api.responses import envelope
from onyx_api.core.database import get_db
from onyx_api.core.security import AuthenticatedUser, get_current_user
from onyx_api.core.timeutil import utcnow
from onyx_api.models.app_user import AppUser, SubscriptionTier
from onyx_api.services.task_assist_service import create_onboarding_tasks

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/app_users", tags=["app_users"])


class AppUserCreate(BaseModel):
    email: Optional[str] = Field(None, max_length=255)
    auth_method: Optional[str] = Field(None, max_length=50)


class AppUserUpdate(BaseModel):
    email: Optional[str] = Field(None, max_length=255)
    auth_method: Optional[str] = Field(None, max_length=50)


class AppUserResponse(BaseModel):
    id: uuid.UUID
    user_id: str
    email: Optional[str]
    auth_method: Optional[str]
    subscription: Optional[str]
    subscription_updated_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


async def get_live_user(db: AsyncSession, user_id: str) -> AppUser:
    result = await db.execute(
        select(AppUser).where(AppUser.user_id == user_id, AppUser.deleted_at.is_(None))
    )
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.post("", status_code=201)
async def create_app_user(
    data: AppUserCreate,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Register the authenticated caller and seed the onboarding tasks.

    The issuer id comes from the verified token, never from the body.
    """
    existing = await db.scalar(select(AppUser.id).where(AppUser.user_id == user.issuer))
    if existing is not None:
        raise HTTPException(status_code=400, detail="User already exists")

    app_user = AppUser(
        user_id=user.issuer,
        email=data.email or user.email,
        auth_method=data.auth_method,
        subscription=SubscriptionTier.FREE.value,
    )
    db.add(app_user)
    await db.flush()

    tasks = await create_onboarding_tasks(db, user.issuer)
    await db.commit()
    await db.refresh(app_user)

    logger.info(f"Registered user {user.issuer} with {len(tasks)} onboarding tasks")
    return envelope(data=AppUserResponse.model_validate(app_user), message="User created successfully")


@router.get("/me")
async def get_me(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    app_user = await get_live_user(db, user.issuer)
    return envelope(data=AppUserResponse.model_validate(app_user))


@router.put("/me")
@router.patch("/me")
async def update_me(
    data: AppUserUpdate,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Update profile fields. Subscription changes only arrive through billing."""
    app_user = await get_live_user(db, user.issuer)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(app_user, field, value)
    await db.commit()
    await db.refresh(app_user)
    return envelope(data=AppUserResponse.model_validate(app_user), message="User updated successfully")


@router.delete("/me", status_code=204)
async def delete_me(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    app_user = await get_live_user(db, user.issuer)
    app_user.deleted_at = utcnow()
    await db.commit()
    logger.info(f"Soft deleted user {user.issuer}")
