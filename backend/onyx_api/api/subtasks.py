"""
Subtask endpoints. Every operation re-checks that the parent task is owned.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from onyx_api.api.deps import get_current_user_id
from onyx_api.api.responses import envelope
from onyx_api.api.tasks import get_owned_task
from onyx_api.core.database import get_db
from onyx_api.core.timeutil import as_utc, utcnow
from onyx_api.models.subtask import Subtask

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subtasks", tags=["subtasks"])


class SubtaskCreate(BaseModel):
    task_id: uuid.UUID
    title: str = Field(..., min_length=1, max_length=200)

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Title is required and cannot be empty")
        return value


class SubtaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    completed_at: Optional[datetime] = None

    @field_validator("completed_at")
    @classmethod
    def _normalize_completed_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class SubtaskResponse(BaseModel):
    id: uuid.UUID
    task_id: uuid.UUID
    user_id: str
    title: str
    completed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


async def get_owned_subtask(db: AsyncSession, subtask_id: uuid.UUID, user_id: str) -> Subtask:
    result = await db.execute(
        select(Subtask).where(
            Subtask.id == subtask_id,
            Subtask.user_id == user_id,
            Subtask.deleted_at.is_(None),
        )
    )
    subtask = result.scalar_one_or_none()
    if not subtask:
        raise HTTPException(status_code=404, detail="Subtask not found")
    # The parent must still be live and owned
    await get_owned_task(db, subtask.task_id, user_id)
    return subtask


@router.get("")
async def list_subtasks(
    task_id: uuid.UUID = Query(..., description="Parent task"),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await get_owned_task(db, task_id, user_id)
    result = await db.execute(
        select(Subtask)
        .where(
            Subtask.task_id == task_id,
            Subtask.user_id == user_id,
            Subtask.deleted_at.is_(None),
        )
        .order_by(Subtask.created_at.asc())
    )
    return envelope(data=[SubtaskResponse.model_validate(s) for s in result.scalars().all()])


@router.get("/{subtask_id}")
async def get_subtask(
    subtask_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    subtask = await get_owned_subtask(db, subtask_id, user_id)
    return envelope(data=SubtaskResponse.model_validate(subtask))


@router.post("", status_code=201)
async def create_subtask(
    subtask_data: SubtaskCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await get_owned_task(db, subtask_data.task_id, user_id)
    subtask = Subtask(task_id=subtask_data.task_id, user_id=user_id, title=subtask_data.title)
    db.add(subtask)
    await db.commit()
    await db.refresh(subtask)
    logger.info(f"Created subtask {subtask.id} on task {subtask.task_id}")
    return envelope(data=SubtaskResponse.model_validate(subtask), message="Subtask created successfully")


@router.put("/{subtask_id}")
@router.patch("/{subtask_id}")
async def update_subtask(
    subtask_id: uuid.UUID,
    subtask_update: SubtaskUpdate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    subtask = await get_owned_subtask(db, subtask_id, user_id)
    update_data = subtask_update.model_dump(exclude_unset=True)
    if update_data.get("title") is not None:
        update_data["title"] = update_data["title"].strip()
        if not update_data["title"]:
            raise HTTPException(status_code=400, detail="Title cannot be empty")
    for field, value in update_data.items():
        setattr(subtask, field, value)
    await db.commit()
    await db.refresh(subtask)
    return envelope(data=SubtaskResponse.model_validate(subtask), message="Subtask updated successfully")


@router.patch("/{subtask_id}/toggle")
async def toggle_subtask(
    subtask_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    subtask = await get_owned_subtask(db, subtask_id, user_id)
    subtask.completed_at = None if subtask.completed_at else utcnow()
    await db.commit()
    await db.refresh(subtask)
    return envelope(data=SubtaskResponse.model_validate(subtask))


@router.delete("/{subtask_id}", status_code=204)
async def delete_subtask(
    subtask_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    subtask = await get_owned_subtask(db, subtask_id, user_id)
    subtask.deleted_at = utcnow()
    await db.commit()
    logger.info(f"Soft deleted subtask {subtask_id}")
