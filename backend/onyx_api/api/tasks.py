"""
Task CRUD API endpoints with completion toggling and milestone checks.
"""
import logging
import uuid
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from onyx_api.api.deps import get_current_user_id
from onyx_api.api.responses import envelope, pagination
from onyx_api.core.database import get_db
from onyx_api.core.timeutil import as_utc, utcnow
from onyx_api.models.folder import Folder
from onyx_api.models.task import Task
from onyx_api.services.milestone_service import MilestoneService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tasks", tags=["tasks"])


# Pydantic schemas for request/response validation
class TaskCreate(BaseModel):
    """Request schema for creating a task."""
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    due_date: Optional[datetime] = None
    is_repeating: bool = False
    repeat_rule: Optional[str] = Field(None, max_length=255)
    folder_id: Optional[uuid.UUID] = None

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Title is required and cannot be empty")
        return value

    @field_validator("due_date")
    @classmethod
    def _normalize_due_date(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    class Config:
        json_schema_extra = {
            "example": {
                "title": "Finish quarterly report",
                "description": "Complete Q4 financial report and submit to management",
                "due_date": "2025-12-15T17:00:00Z",
                "folder_id": None,
            }
        }


class TaskUpdate(BaseModel):
    """Request schema for updating a task."""
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    due_date: Optional[datetime] = None
    is_repeating: Optional[bool] = None
    repeat_rule: Optional[str] = Field(None, max_length=255)
    folder_id: Optional[uuid.UUID] = None
    completed_at: Optional[datetime] = None

    @field_validator("due_date", "completed_at")
    @classmethod
    def _normalize_dates(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    class Config:
        json_schema_extra = {
            "example": {
                "title": "Updated task title",
                "completed_at": "2025-12-10T10:00:00Z",
            }
        }


class TaskResponse(BaseModel):
    """Response schema for task data."""
    id: uuid.UUID
    user_id: str
    folder_id: Optional[uuid.UUID]
    title: str
    description: Optional[str]
    due_date: Optional[datetime]
    is_repeating: bool
    repeat_rule: Optional[str]
    completed_at: Optional[datetime]
    is_overdue: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


async def get_owned_task(db: AsyncSession, task_id: uuid.UUID, user_id: str) -> Task:
    """Fetch a live task owned by the caller or raise 404."""
    result = await db.execute(
        select(Task).where(
            Task.id == task_id,
            Task.user_id == user_id,
            Task.deleted_at.is_(None),
        )
    )
    task = result.scalar_one_or_none()
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


async def ensure_folder_owned(db: AsyncSession, folder_id: Optional[uuid.UUID], user_id: str) -> None:
    if folder_id is None:
        return
    result = await db.execute(
        select(Folder.id).where(
            Folder.id == folder_id,
            Folder.user_id == user_id,
            Folder.deleted_at.is_(None),
        )
    )
    if result.first() is None:
        raise HTTPException(status_code=404, detail="Folder not found")


_SORT_COLUMNS = {
    "created_at": Task.created_at,
    "updated_at": Task.updated_at,
    "due_date": Task.due_date,
    "title": Task.title,
}


@router.get("")
async def list_tasks(
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(20, ge=1, le=100, description="Tasks per page"),
    sort_by: Literal["created_at", "updated_at", "due_date", "title"] = Query("created_at"),
    sort_order: Literal["asc", "desc"] = Query("desc"),
    status: Optional[Literal["pending", "completed"]] = Query(None, description="Filter by completion"),
    folder_id: Optional[uuid.UUID] = Query(None, description="Filter by folder"),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    List the caller's tasks (deleted tasks excluded).

    Query parameters:
    - page / limit: pagination (limit max 100)
    - sort_by: created_at, updated_at, due_date or title
    - sort_order: asc or desc
    - status: pending or completed
    - folder_id: only tasks in this folder
    """
    filters = [Task.user_id == user_id, Task.deleted_at.is_(None)]
    if folder_id:
        filters.append(Task.folder_id == folder_id)
    if status == "pending":
        filters.append(Task.completed_at.is_(None))
    elif status == "completed":
        filters.append(Task.completed_at.is_not(None))

    total = await db.scalar(select(func.count(Task.id)).where(*filters))

    column = _SORT_COLUMNS[sort_by]
    order = column.asc() if sort_order == "asc" else column.desc()
    if sort_by == "due_date":
        order = order.nullslast()

    result = await db.execute(
        select(Task)
        .where(*filters)
        .order_by(order, Task.id)
        .limit(limit)
        .offset((page - 1) * limit)
    )
    tasks = result.scalars().all()

    return envelope(
        data=[TaskResponse.model_validate(t) for t in tasks],
        pagination=pagination(page, limit, total or 0),
    )


@router.get("/{task_id}")
async def get_task(
    task_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Get a single task by ID. Returns 404 if absent or not owned."""
    task = await get_owned_task(db, task_id, user_id)
    return envelope(data=TaskResponse.model_validate(task))


@router.post("", status_code=201)
async def create_task(
    task_data: TaskCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Create a task. Due dates in the past are rejected."""
    if task_data.due_date and task_data.due_date < utcnow():
        raise HTTPException(status_code=400, detail="Due date cannot be in the past")
    await ensure_folder_owned(db, task_data.folder_id, user_id)

    new_task = Task(
        user_id=user_id,
        folder_id=task_data.folder_id,
        title=task_data.title,
        description=task_data.description.strip() if task_data.description else None,
        due_date=task_data.due_date,
        is_repeating=task_data.is_repeating,
        repeat_rule=task_data.repeat_rule,
    )
    db.add(new_task)
    await db.commit()
    await db.refresh(new_task)

    logger.info(f"Created task {new_task.id} for {user_id}")
    return envelope(data=TaskResponse.model_validate(new_task), message="Task created successfully")


@router.put("/{task_id}")
@router.patch("/{task_id}")
async def update_task(
    task_id: uuid.UUID,
    task_update: TaskUpdate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Update a task.

    Only fields provided in the request are changed. Setting ``completed_at``
    on an open task runs the milestone check.
    """
    task = await get_owned_task(db, task_id, user_id)
    update_data = task_update.model_dump(exclude_unset=True)

    if "title" in update_data and update_data["title"] is not None:
        update_data["title"] = update_data["title"].strip()
        if not update_data["title"]:
            raise HTTPException(status_code=400, detail="Title cannot be empty")
    if "folder_id" in update_data:
        await ensure_folder_owned(db, update_data["folder_id"], user_id)

    was_completed = task.completed_at is not None
    changes = []
    for field, value in update_data.items():
        if getattr(task, field) != value:
            setattr(task, field, value)
            changes.append(field)

    await db.commit()
    await db.refresh(task)

    if changes:
        logger.info(f"Updated task {task_id}: {changes}")

    milestones = None
    if not was_completed and task.completed_at is not None:
        milestones = await MilestoneService(db).on_task_completed(user_id) or None

    return envelope(
        data=TaskResponse.model_validate(task),
        message="Task updated successfully",
        milestones=milestones,
    )


@router.patch("/{task_id}/toggle")
async def toggle_task(
    task_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Flip completion. Completing a task may unlock a milestone."""
    task = await get_owned_task(db, task_id, user_id)
    task.completed_at = None if task.completed_at else utcnow()
    await db.commit()
    await db.refresh(task)

    milestones = None
    if task.completed_at is not None:
        milestones = await MilestoneService(db).on_task_completed(user_id) or None

    state = "completed" if task.completed_at else "reopened"
    logger.info(f"Task {task_id} {state}")
    return envelope(
        data=TaskResponse.model_validate(task),
        message=f"Task {state} successfully",
        milestones=milestones,
    )


@router.delete("/{task_id}", status_code=204)
async def delete_task(
    task_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Soft delete a task.

    The row is kept (``deleted_at`` set) and disappears from listings.
    Returns 204 No Content on success, 404 if absent or not owned.
    """
    task = await get_owned_task(db, task_id, user_id)
    task.deleted_at = utcnow()
    await db.commit()
    logger.info(f"Soft deleted task {task_id}")
