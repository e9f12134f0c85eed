"""
Suggested task endpoints. These rows have no deletion marker and are removed outright.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from onyx_api.api.deps import get_current_user_id
from onyx_api.api.responses import envelope
from onyx_api.core.database import get_db
from onyx_api.core.timeutil import utcnow
from onyx_api.models.suggested_task import SuggestedTask

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/suggested_tasks", tags=["suggested_tasks"])


class SuggestedTaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    suggestion_batch_id: Optional[uuid.UUID] = None


class SuggestedTaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    is_added: Optional[bool] = None


class SuggestedTaskResponse(BaseModel):
    id: uuid.UUID
    user_id: str
    suggestion_batch_id: Optional[uuid.UUID]
    title: str
    is_added: Optional[bool]
    suggested_at: datetime
    declined_at: Optional[datetime]

    class Config:
        from_attributes = True


async def get_owned_suggestion(db: AsyncSession, suggestion_id: uuid.UUID, user_id: str) -> SuggestedTask:
    result = await db.execute(
        select(SuggestedTask).where(
            SuggestedTask.id == suggestion_id,
            SuggestedTask.user_id == user_id,
        )
    )
    suggestion = result.scalar_one_or_none()
    if not suggestion:
        raise HTTPException(status_code=404, detail="Suggested task not found")
    return suggestion


@router.get("")
async def list_suggested_tasks(
    pending_only: bool = Query(False, description="Only undecided suggestions"),
    suggestion_batch_id: Optional[uuid.UUID] = Query(None),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    query = select(SuggestedTask).where(SuggestedTask.user_id == user_id)
    if pending_only:
        query = query.where(SuggestedTask.is_added.is_(None))
    if suggestion_batch_id:
        query = query.where(SuggestedTask.suggestion_batch_id == suggestion_batch_id)
    result = await db.execute(query.order_by(SuggestedTask.suggested_at.desc()))
    return envelope(data=[SuggestedTaskResponse.model_validate(s) for s in result.scalars().all()])


@router.get("/{suggestion_id}")
async def get_suggested_task(
    suggestion_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    suggestion = await get_owned_suggestion(db, suggestion_id, user_id)
    return envelope(data=SuggestedTaskResponse.model_validate(suggestion))


@router.post("", status_code=201)
async def create_suggested_task(
    data: SuggestedTaskCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    suggestion = SuggestedTask(
        user_id=user_id,
        title=data.title.strip(),
        suggestion_batch_id=data.suggestion_batch_id,
    )
    db.add(suggestion)
    await db.commit()
    await db.refresh(suggestion)
    return envelope(data=SuggestedTaskResponse.model_validate(suggestion), message="Suggested task created successfully")


@router.put("/{suggestion_id}")
@router.patch("/{suggestion_id}")
async def update_suggested_task(
    suggestion_id: uuid.UUID,
    data: SuggestedTaskUpdate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Accept (``is_added=true``) or decline (``is_added=false``) a suggestion."""
    suggestion = await get_owned_suggestion(db, suggestion_id, user_id)
    update_data = data.model_dump(exclude_unset=True)

    if update_data.get("title") is not None:
        suggestion.title = update_data["title"].strip()
    if "is_added" in update_data:
        suggestion.is_added = update_data["is_added"]
        suggestion.declined_at = utcnow() if update_data["is_added"] is False else None

    await db.commit()
    await db.refresh(suggestion)
    return envelope(data=SuggestedTaskResponse.model_validate(suggestion), message="Suggested task updated successfully")


@router.delete("/{suggestion_id}", status_code=204)
async def delete_suggested_task(
    suggestion_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    suggestion = await get_owned_suggestion(db, suggestion_id, user_id)
    await db.delete(suggestion)
    await db.commit()
    logger.info(f"Deleted suggested task {suggestion_id}")
