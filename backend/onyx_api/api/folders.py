"""
Folder CRUD API endpoints.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from onyx_api.api.deps import get_current_user_id
from onyx_api.api.responses import envelope
from onyx_api.core.database import get_db
from onyx_api.core.timeutil import utcnow
from onyx_api.models.folder import Folder
from onyx_api.models.task import Task

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/folders", tags=["folders"])


class FolderCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Folder name is required")
        return value


class FolderUpdate(FolderCreate):
    pass


class FolderResponse(BaseModel):
    id: uuid.UUID
    user_id: str
    name: str
    created_at: datetime
    updated_at: datetime
    task_count: Optional[int] = None

    class Config:
        from_attributes = True


async def get_owned_folder(db: AsyncSession, folder_id: uuid.UUID, user_id: str) -> Folder:
    result = await db.execute(
        select(Folder).where(
            Folder.id == folder_id,
            Folder.user_id == user_id,
            Folder.deleted_at.is_(None),
        )
    )
    folder = result.scalar_one_or_none()
    if not folder:
        raise HTTPException(status_code=404, detail="Folder not found")
    return folder


@router.get("")
async def list_folders(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """List folders with the number of live tasks in each."""
    task_counts = (
        select(Task.folder_id, func.count(Task.id).label("task_count"))
        .where(Task.user_id == user_id, Task.deleted_at.is_(None))
        .group_by(Task.folder_id)
        .subquery()
    )
    result = await db.execute(
        select(Folder, func.coalesce(task_counts.c.task_count, 0))
        .outerjoin(task_counts, task_counts.c.folder_id == Folder.id)
        .where(Folder.user_id == user_id, Folder.deleted_at.is_(None))
        .order_by(Folder.name)
    )

    folders = []
    for folder, count in result.all():
        item = FolderResponse.model_validate(folder)
        item.task_count = count
        folders.append(item)
    return envelope(data=folders)


@router.get("/{folder_id}")
async def get_folder(
    folder_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    folder = await get_owned_folder(db, folder_id, user_id)
    return envelope(data=FolderResponse.model_validate(folder))


@router.post("", status_code=201)
async def create_folder(
    folder_data: FolderCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    folder = Folder(user_id=user_id, name=folder_data.name)
    db.add(folder)
    await db.commit()
    await db.refresh(folder)
    logger.info(f"Created folder {folder.id} for {user_id}")
    return envelope(data=FolderResponse.model_validate(folder), message="Folder created successfully")


@router.put("/{folder_id}")
@router.patch("/{folder_id}")
async def update_folder(
    folder_id: uuid.UUID,
    folder_data: FolderUpdate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    folder = await get_owned_folder(db, folder_id, user_id)
    folder.name = folder_data.name
    await db.commit()
    await db.refresh(folder)
    return envelope(data=FolderResponse.model_validate(folder), message="Folder updated successfully")


@router.delete("/{folder_id}", status_code=204)
async def delete_folder(
    folder_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Soft delete a folder. Its tasks stay and become unfiled."""
    folder = await get_owned_folder(db, folder_id, user_id)
    folder.deleted_at = utcnow()
    await db.execute(
        update(Task)
        .where(Task.folder_id == folder_id, Task.user_id == user_id)
        .values(folder_id=None)
    )
    await db.commit()
    logger.info(f"Soft deleted folder {folder_id}")
