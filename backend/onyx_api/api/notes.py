"""
Note endpoints. Notes may be standalone or attached to an owned task.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from onyx_api.api.deps import get_current_user_id
from onyx_api.api.responses import envelope, pagination
from onyx_api.api.tasks import get_owned_task
from onyx_api.core.database import get_db
from onyx_api.core.timeutil import utcnow
from onyx_api.models.note import Note

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notes", tags=["notes"])


class NoteCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=10000)
    task_id: Optional[uuid.UUID] = None


class NoteUpdate(BaseModel):
    content: str = Field(..., min_length=1, max_length=10000)


class NoteResponse(BaseModel):
    id: uuid.UUID
    task_id: Optional[uuid.UUID]
    user_id: str
    content: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


async def get_owned_note(db: AsyncSession, note_id: uuid.UUID, user_id: str) -> Note:
    result = await db.execute(
        select(Note).where(
            Note.id == note_id,
            Note.user_id == user_id,
            Note.deleted_at.is_(None),
        )
    )
    note = result.scalar_one_or_none()
    if not note:
        raise HTTPException(status_code=404, detail="Note not found")
    return note


@router.get("")
async def list_notes(
    task_id: Optional[uuid.UUID] = Query(None, description="Only notes on this task"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """List notes, newest first."""
    filters = [Note.user_id == user_id, Note.deleted_at.is_(None)]
    if task_id:
        await get_owned_task(db, task_id, user_id)
        filters.append(Note.task_id == task_id)

    total = await db.scalar(select(func.count(Note.id)).where(*filters))
    result = await db.execute(
        select(Note)
        .where(*filters)
        .order_by(Note.created_at.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    return envelope(
        data=[NoteResponse.model_validate(n) for n in result.scalars().all()],
        pagination=pagination(page, limit, total or 0),
    )


@router.get("/{note_id}")
async def get_note(
    note_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    note = await get_owned_note(db, note_id, user_id)
    return envelope(data=NoteResponse.model_validate(note))


@router.post("", status_code=201)
async def create_note(
    note_data: NoteCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    content = note_data.content.strip()
    if not content:
        raise HTTPException(status_code=400, detail="Note content cannot be empty")
    if note_data.task_id:
        await get_owned_task(db, note_data.task_id, user_id)

    note = Note(user_id=user_id, task_id=note_data.task_id, content=content)
    db.add(note)
    await db.commit()
    await db.refresh(note)
    logger.info(f"Created note {note.id} for {user_id}")
    return envelope(data=NoteResponse.model_validate(note), message="Note created successfully")


@router.put("/{note_id}")
@router.patch("/{note_id}")
async def update_note(
    note_id: uuid.UUID,
    note_data: NoteUpdate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    note = await get_owned_note(db, note_id, user_id)
    content = note_data.content.strip()
    if not content:
        raise HTTPException(status_code=400, detail="Note content cannot be empty")
    note.content = content
    await db.commit()
    await db.refresh(note)
    return envelope(data=NoteResponse.model_validate(note), message="Note updated successfully")


@router.delete("/{note_id}", status_code=204)
async def delete_note(
    note_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    note = await get_owned_note(db, note_id, user_id)
    note.deleted_at = utcnow()
    await db.commit()
    logger.info(f"Soft deleted note {note_id}")
