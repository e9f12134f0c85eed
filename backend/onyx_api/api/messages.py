"""
Conversation history endpoints for task-scoped and general assistant messages.

Messages carry no deletion marker; DELETE removes the row.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, model_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from onyx_api.api.deps import get_current_user_id
from onyx_api.api.responses import envelope
from onyx_api.api.tasks import get_owned_task
from onyx_api.core.database import get_db
from onyx_api.models.message import AssistantMessage, TaskAIMessage

logger = logging.getLogger(__name__)

task_messages_router = APIRouter(prefix="/task_ai_messages", tags=["messages"])
assistant_messages_router = APIRouter(prefix="/assistant_messages", tags=["messages"])


class MessageCreate(BaseModel):
    message: str = Field(..., min_length=1, max_length=10000)
    from_user: bool = True
    from_ai: bool = False

    @model_validator(mode="after")
    def _single_origin(self):
        if self.from_user and self.from_ai:
            raise ValueError("A message cannot be from both the user and the AI")
        return self


class TaskMessageCreate(MessageCreate):
    task_id: uuid.UUID


class MessageResponse(BaseModel):
    id: uuid.UUID
    user_id: str
    message: str
    from_user: bool
    from_ai: bool
    created_at: datetime

    class Config:
        from_attributes = True


class TaskMessageResponse(MessageResponse):
    task_id: uuid.UUID


async def _get_owned(db: AsyncSession, model, message_id: uuid.UUID, user_id: str):
    result = await db.execute(
        select(model).where(model.id == message_id, model.user_id == user_id)
    )
    row = result.scalar_one_or_none()
    if not row:
        raise HTTPException(status_code=404, detail="Message not found")
    return row


# Task-scoped messages

@task_messages_router.get("")
async def list_task_messages(
    task_id: uuid.UUID = Query(..., description="Task whose conversation to list"),
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Conversation for one task in chronological order."""
    await get_owned_task(db, task_id, user_id)
    result = await db.execute(
        select(TaskAIMessage)
        .where(TaskAIMessage.task_id == task_id, TaskAIMessage.user_id == user_id)
        .order_by(TaskAIMessage.created_at.asc())
        .limit(limit)
    )
    return envelope(data=[TaskMessageResponse.model_validate(m) for m in result.scalars().all()])


@task_messages_router.get("/{message_id}")
async def get_task_message(
    message_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    row = await _get_owned(db, TaskAIMessage, message_id, user_id)
    return envelope(data=TaskMessageResponse.model_validate(row))


@task_messages_router.post("", status_code=201)
async def create_task_message(
    data: TaskMessageCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await get_owned_task(db, data.task_id, user_id)
    row = TaskAIMessage(
        task_id=data.task_id,
        user_id=user_id,
        message=data.message,
        from_user=data.from_user,
        from_ai=data.from_ai,
    )
    db.add(row)
    await db.commit()
    await db.refresh(row)
    return envelope(data=TaskMessageResponse.model_validate(row), message="Message created successfully")


@task_messages_router.delete("/{message_id}", status_code=204)
async def delete_task_message(
    message_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    row = await _get_owned(db, TaskAIMessage, message_id, user_id)
    await db.delete(row)
    await db.commit()
    logger.info(f"Deleted task message {message_id}")


# General assistant messages

@assistant_messages_router.get("")
async def list_assistant_messages(
    limit: int = Query(50, ge=1, le=200),
    before: Optional[datetime] = Query(None, description="Only messages older than this"),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Most recent assistant messages, returned oldest first."""
    query = select(AssistantMessage).where(AssistantMessage.user_id == user_id)
    if before:
        query = query.where(AssistantMessage.created_at < before)
    result = await db.execute(query.order_by(AssistantMessage.created_at.desc()).limit(limit))
    rows = list(reversed(result.scalars().all()))
    return envelope(data=[MessageResponse.model_validate(m) for m in rows])


@assistant_messages_router.get("/{message_id}")
async def get_assistant_message(
    message_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    row = await _get_owned(db, AssistantMessage, message_id, user_id)
    return envelope(data=MessageResponse.model_validate(row))


@assistant_messages_router.post("", status_code=201)
async def create_assistant_message(
    data: MessageCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    row = AssistantMessage(
        user_id=user_id,
        message=data.message,
        from_user=data.from_user,
        from_ai=data.from_ai,
    )
    db.add(row)
    await db.commit()
    await db.refresh(row)
    return envelope(data=MessageResponse.model_validate(row), message="Message created successfully")


@assistant_messages_router.delete("/{message_id}", status_code=204)
async def delete_assistant_message(
    message_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    row = await _get_owned(db, AssistantMessage, message_id, user_id)
    await db.delete(row)
    await db.commit()
    logger.info(f"Deleted assistant message {message_id}")
