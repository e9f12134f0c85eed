"""
Context gathering for AI requests.

How many rows are pulled in is scaled by the tier's context depth.
"""
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from onyx_api.core.errors import NotFoundError
from onyx_api.models.folder import Folder
from onyx_api.models.message import TaskAIMessage
from onyx_api.models.note import Note
from onyx_api.models.subtask import Subtask
from onyx_api.models.task import Task

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DepthLimits:
    notes: int
    subtasks: int
    history: int
    recent_tasks: int


DEPTH_LIMITS = {
    "minimal": DepthLimits(notes=3, subtasks=5, history=3, recent_tasks=5),
    "full": DepthLimits(notes=10, subtasks=20, history=10, recent_tasks=10),
    "comprehensive": DepthLimits(notes=25, subtasks=50, history=25, recent_tasks=20),
}


def get_depth_limits(context_depth: str) -> DepthLimits:
    return DEPTH_LIMITS.get(context_depth, DEPTH_LIMITS["minimal"])


class ViewContext(BaseModel):
    """What the user is looking at when asking the general assistant."""
    visible_task_ids: List[uuid.UUID] = Field(default_factory=list)
    visible_folder_ids: List[uuid.UUID] = Field(default_factory=list)
    current_view: Optional[str] = None
    current_folder_id: Optional[uuid.UUID] = None
    filters: Dict[str, Any] = Field(default_factory=dict)
    sort_order: Optional[str] = None


@dataclass
class TaskContext:
    task: Task
    folder: Optional[Folder]
    notes: List[Note]  # newest first
    subtasks: List[Subtask]  # oldest first
    message_history: List[TaskAIMessage]  # oldest first
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AssistantContext:
    visible_tasks: List[Task]
    visible_folders: List[Folder]
    user_stats: Dict[str, int]
    recent_activity: List[Dict[str, Any]]
    view_info: Dict[str, Any]


class ContextService:
    """Reads the rows an AI request needs, scoped to one user."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_owned_task(self, user_id: str, task_id: uuid.UUID) -> Optional[Task]:
        result = await self.db.execute(
            select(Task).where(
                Task.id == task_id,
                Task.user_id == user_id,
                Task.deleted_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def gather_task_context(
        self, user_id: str, task_id: uuid.UUID, context_depth: str = "minimal"
    ) -> TaskContext:
        """
        Task row plus its notes, subtasks, conversation and folder.

        Raises:
            NotFoundError: task absent, deleted or owned by someone else
        """
        task = await self.get_owned_task(user_id, task_id)
        if task is None:
            raise NotFoundError("Task not found")

        limits = get_depth_limits(context_depth)

        notes_result = await self.db.execute(
            select(Note)
            .where(Note.task_id == task_id, Note.user_id == user_id, Note.deleted_at.is_(None))
            .order_by(Note.created_at.desc())
            .limit(limits.notes)
        )
        subtasks_result = await self.db.execute(
            select(Subtask)
            .where(Subtask.task_id == task_id, Subtask.user_id == user_id, Subtask.deleted_at.is_(None))
            .order_by(Subtask.created_at.asc())
            .limit(limits.subtasks)
        )
        # Most recent N turns, returned in chronological order
        history_result = await self.db.execute(
            select(TaskAIMessage)
            .where(TaskAIMessage.task_id == task_id, TaskAIMessage.user_id == user_id)
            .order_by(TaskAIMessage.created_at.desc())
            .limit(limits.history)
        )
        history = list(reversed(history_result.scalars().all()))

        folder = None
        if task.folder_id:
            folder_result = await self.db.execute(
                select(Folder).where(
                    Folder.id == task.folder_id,
                    Folder.user_id == user_id,
                    Folder.deleted_at.is_(None),
                )
            )
            folder = folder_result.scalar_one_or_none()

        notes = list(notes_result.scalars().all())
        subtasks = list(subtasks_result.scalars().all())
        totals = await self.count_task_rows(user_id, task_id)

        return TaskContext(
            task=task,
            folder=folder,
            notes=notes,
            subtasks=subtasks,
            message_history=history,
            metadata={
                **totals,
                "notes_included": len(notes),
                "subtasks_included": len(subtasks),
                "messages_included": len(history),
                "last_updated": task.updated_at,
                "is_overdue": task.is_overdue,
            },
        )

    async def count_task_rows(self, user_id: str, task_id: uuid.UUID) -> Dict[str, int]:
        """Totals for the task regardless of how much the depth limit pulled in."""
        total_notes = await self.db.scalar(
            select(func.count(Note.id)).where(
                Note.task_id == task_id, Note.user_id == user_id, Note.deleted_at.is_(None)
            )
        )
        subtask_counts = await self.db.execute(
            select(
                func.count(Subtask.id),
                func.count(case((Subtask.completed_at.is_not(None), 1))),
            ).where(
                Subtask.task_id == task_id, Subtask.user_id == user_id, Subtask.deleted_at.is_(None)
            )
        )
        total_subtasks, completed_subtasks = subtask_counts.one()
        total_messages = await self.db.scalar(
            select(func.count(TaskAIMessage.id)).where(
                TaskAIMessage.task_id == task_id, TaskAIMessage.user_id == user_id
            )
        )
        return {
            "total_notes": total_notes or 0,
            "total_subtasks": total_subtasks,
            "completed_subtasks": completed_subtasks,
            "total_messages": total_messages or 0,
        }

    async def get_user_stats(self, user_id: str) -> Dict[str, int]:
        result = await self.db.execute(
            select(
                func.count(case((Task.completed_at.is_(None), 1))),
                func.count(case((Task.completed_at.is_not(None), 1))),
                func.count(Task.id),
            ).where(Task.user_id == user_id, Task.deleted_at.is_(None))
        )
        pending, completed, total = result.one()
        return {"pending_tasks": pending, "completed_tasks": completed, "total_tasks": total}

    async def gather_assistant_context(
        self,
        user_id: str,
        view_context: Optional[ViewContext] = None,
        context_depth: str = "minimal",
    ) -> AssistantContext:
        """Working set of tasks and folders plus aggregate stats and recent activity."""
        view_context = view_context or ViewContext()
        limits = get_depth_limits(context_depth)

        task_query = select(Task).where(Task.user_id == user_id, Task.deleted_at.is_(None))
        if view_context.visible_task_ids:
            task_query = task_query.where(Task.id.in_(view_context.visible_task_ids))
        else:
            task_query = task_query.order_by(Task.updated_at.desc()).limit(limits.recent_tasks)
        visible_tasks = list((await self.db.execute(task_query)).scalars().all())

        folder_query = select(Folder).where(Folder.user_id == user_id, Folder.deleted_at.is_(None))
        if view_context.visible_folder_ids:
            folder_query = folder_query.where(Folder.id.in_(view_context.visible_folder_ids))
        else:
            folder_query = folder_query.order_by(Folder.created_at.desc())
        visible_folders = list((await self.db.execute(folder_query)).scalars().all())

        activity_result = await self.db.execute(
            select(Task.title, Task.updated_at, Task.completed_at)
            .where(Task.user_id == user_id, Task.deleted_at.is_(None))
            .order_by(Task.updated_at.desc())
            .limit(5)
        )
        recent_activity = [
            {"type": "task", "name": title, "updated_at": updated_at, "completed_at": completed_at}
            for title, updated_at, completed_at in activity_result.all()
        ]

        return AssistantContext(
            visible_tasks=visible_tasks,
            visible_folders=visible_folders,
            user_stats=await self.get_user_stats(user_id),
            recent_activity=recent_activity,
            view_info={
                "current_view": view_context.current_view or "dashboard",
                "current_folder": str(view_context.current_folder_id) if view_context.current_folder_id else None,
                "filters_applied": view_context.filters,
                "sort_order": view_context.sort_order or "updated_at",
            },
        )
