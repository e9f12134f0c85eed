"""
Integration endpoints. Gmail routes are declared before ``/{integration_id}``
so they are not captured by it.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from onyx_api.api.deps import get_current_user_id
from onyx_api.api.responses import envelope
from onyx_api.core.database import get_db
from onyx_api.models.integration import Integration, IntegrationStatus
from onyx_api.services.integration_service import IntegrationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations", tags=["integrations"])


class IntegrationCreate(BaseModel):
    gmail: bool = False


class IntegrationUpdate(BaseModel):
    gmail: Optional[bool] = None
    status: Optional[IntegrationStatus] = None


class IntegrationResponse(BaseModel):
    id: uuid.UUID
    user_id: str
    gmail: bool
    status: str
    gmail_scope_granted: bool
    gmail_last_sync: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class GmailToggleRequest(BaseModel):
    enabled: bool


class GmailOAuthCallback(BaseModel):
    scope_granted: bool


# Gmail

@router.get("/gmail/permission")
async def gmail_permission(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return envelope(data=await IntegrationService(db).check_gmail_permission(user_id))


@router.get("/gmail/status")
async def gmail_status(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return envelope(data=await IntegrationService(db).get_gmail_status(user_id))


@router.post("/gmail/toggle")
async def toggle_gmail(
    body: GmailToggleRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Enable or disable Gmail. Enabling requires a premium or plaid subscription."""
    result = await IntegrationService(db).toggle_gmail(user_id, body.enabled)
    message = result.pop("message")
    return envelope(data=result, message=message)


@router.post("/gmail/oauth-callback")
async def gmail_oauth_callback(
    body: GmailOAuthCallback,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    integration = await IntegrationService(db).record_oauth_grant(user_id, body.scope_granted)
    return envelope(data=IntegrationResponse.model_validate(integration))


# Generic CRUD

async def get_owned_integration(db: AsyncSession, integration_id: uuid.UUID, user_id: str) -> Integration:
    result = await db.execute(
        select(Integration).where(Integration.id == integration_id, Integration.user_id == user_id)
    )
    integration = result.scalar_one_or_none()
    if not integration:
        raise HTTPException(status_code=404, detail="Integration not found")
    return integration


@router.get("")
async def list_integrations(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(Integration).where(Integration.user_id == user_id))
    return envelope(data=[IntegrationResponse.model_validate(i) for i in result.scalars().all()])


@router.get("/{integration_id}")
async def get_integration(
    integration_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    integration = await get_owned_integration(db, integration_id, user_id)
    return envelope(data=IntegrationResponse.model_validate(integration))


@router.post("", status_code=201)
async def create_integration(
    data: IntegrationCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Create the caller's integration record (one per user)."""
    service = IntegrationService(db)
    if await service.get_integration(user_id) is not None:
        raise HTTPException(status_code=400, detail="Integration already exists for this user")
    if data.gmail:
        permission = await service.check_gmail_permission(user_id)
        if not permission["can_use_gmail"]:
            raise HTTPException(status_code=403, detail=permission["reason"])

    integration = Integration(
        user_id=user_id,
        gmail=data.gmail,
        status=(IntegrationStatus.ACTIVE if data.gmail else IntegrationStatus.INACTIVE).value,
    )
    db.add(integration)
    await db.commit()
    await db.refresh(integration)
    return envelope(data=IntegrationResponse.model_validate(integration), message="Integration created successfully")


@router.put("/{integration_id}")
@router.patch("/{integration_id}")
async def update_integration(
    integration_id: uuid.UUID,
    data: IntegrationUpdate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    integration = await get_owned_integration(db, integration_id, user_id)
    update_data = data.model_dump(exclude_unset=True)

    if update_data.get("gmail") is not None:
        # Same tier gate as the toggle route
        await IntegrationService(db).toggle_gmail(user_id, update_data["gmail"])
        await db.refresh(integration)
    if update_data.get("status") is not None:
        integration.status = update_data["status"].value
        await db.commit()
        await db.refresh(integration)

    return envelope(data=IntegrationResponse.model_validate(integration), message="Integration updated successfully")


@router.delete("/{integration_id}", status_code=204)
async def delete_integration(
    integration_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    integration = await get_owned_integration(db, integration_id, user_id)
    await db.delete(integration)
    await db.commit()
    logger.info(f"Deleted integration {integration_id} for {user_id}")
