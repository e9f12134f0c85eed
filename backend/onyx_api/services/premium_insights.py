"""
Premium enhancements attached to plaid-tier AI replies.

Everything here is derived from the user's own task rows; nothing is sent to
the LLM.
"""
import logging
from collections import Counter
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from onyx_api.core.timeutil import as_utc, utcnow
from onyx_api.models.folder import Folder
from onyx_api.models.task import Task
from onyx_api.services.context_service import TaskContext

logger = logging.getLogger(__name__)

# Upper bound on rows scanned per request
_HISTORY_LIMIT = 500


class PremiumInsightsService:
    def __init__(self, db: AsyncSession, user_id: str):
        self.db = db
        self.user_id = user_id
        self._tasks: Optional[List[Task]] = None

    async def _load_tasks(self) -> List[Task]:
        if self._tasks is None:
            result = await self.db.execute(
                select(Task)
                .where(Task.user_id == self.user_id, Task.deleted_at.is_(None))
                .order_by(Task.updated_at.desc())
                .limit(_HISTORY_LIMIT)
            )
            self._tasks = list(result.scalars().all())
        return self._tasks

    async def productivity_insights(self) -> Dict[str, Any]:
        tasks = await self._load_tasks()
        now = utcnow()
        week_ago = now - timedelta(days=7)

        completed_this_week = [t for t in tasks if t.completed_at and as_utc(t.completed_at) >= week_ago]
        pending = [t for t in tasks if not t.completed_at]
        overdue = [t for t in pending if t.is_overdue]

        denominator = len(completed_this_week) + len(pending)
        completion_rate = round(100 * len(completed_this_week) / denominator) if denominator else 0

        hours = Counter(as_utc(t.completed_at).hour for t in tasks if t.completed_at)
        most_productive_time = None
        if hours:
            hour = hours.most_common(1)[0][0]
            most_productive_time = f"{hour:02d}:00-{(hour + 1) % 24:02d}:00 UTC"

        improvements = []
        if overdue:
            improvements.append(f"You have {len(overdue)} overdue task(s) - review and reschedule them")
        if len(pending) > 20:
            improvements.append("Your pending list is long - consider archiving tasks you won't do")
        undated = [t for t in pending if t.due_date is None]
        if pending and len(undated) > len(pending) / 2:
            improvements.append("Most pending tasks have no due date - add dates to the important ones")
        if most_productive_time:
            improvements.append(f"You finish the most tasks around {most_productive_time} - schedule important work then")

        return {
            "weekly_completion_rate": f"{completion_rate}%",
            "completed_this_week": len(completed_this_week),
            "pending_tasks": len(pending),
            "overdue_tasks": len(overdue),
            "most_productive_time": most_productive_time,
            "suggested_improvements": improvements,
        }

    async def smart_suggestions(self, task_context: Optional[TaskContext] = None) -> Dict[str, Any]:
        tasks = await self._load_tasks()
        now = utcnow()
        pending = [t for t in tasks if not t.completed_at]
        due_soon = [
            t for t in pending
            if t.due_date and now <= as_utc(t.due_date) <= now + timedelta(days=7)
        ]

        actions = []
        if due_soon:
            actions.append(f"Review {len(due_soon)} task(s) due this week")
        overdue = [t for t in pending if t.is_overdue]
        if overdue:
            actions.append(f'Start with your oldest overdue task: "{overdue[-1].title}"')

        related = []
        if task_context is not None:
            current = task_context.task
            open_subtasks = [s for s in task_context.subtasks if not s.completed_at]
            if open_subtasks:
                actions.append(f"Finish the {len(open_subtasks)} open subtask(s) on this task")
            if current.folder_id:
                related = [
                    {"id": str(t.id), "title": t.title}
                    for t in pending
                    if t.folder_id == current.folder_id and t.id != current.id
                ][:5]

        # Same title completed repeatedly is a candidate for a repeating task
        title_counts = Counter(t.title.strip().lower() for t in tasks if t.completed_at and not t.is_repeating)
        automation = [
            f'"{title}" has been completed {count} times - make it a repeating task'
            for title, count in title_counts.most_common(3)
            if count >= 3
        ]

        return {
            "suggested_actions": actions,
            "related_tasks": related,
            "automation_opportunities": automation,
        }

    async def pattern_analysis(self) -> Dict[str, Any]:
        tasks = await self._load_tasks()
        completed = [t for t in tasks if t.completed_at]

        weekdays = Counter(as_utc(t.completed_at).strftime("%A") for t in completed)
        durations = [
            (as_utc(t.completed_at) - as_utc(t.created_at)).total_seconds() / 3600
            for t in completed
            if t.created_at and as_utc(t.completed_at) >= as_utc(t.created_at)
        ]

        folder_counts = Counter(t.folder_id for t in tasks if t.folder_id)
        common_folders = []
        if folder_counts:
            top_ids = [folder_id for folder_id, _ in folder_counts.most_common(3)]
            result = await self.db.execute(
                select(Folder.id, Folder.name).where(Folder.id.in_(top_ids), Folder.user_id == self.user_id)
            )
            names = dict(result.all())
            common_folders = [names[fid] for fid in top_ids if fid in names]

        return {
            "peak_activity_days": [day for day, _ in weekdays.most_common(3)],
            "common_task_folders": common_folders,
            "average_completion_hours": round(sum(durations) / len(durations), 1) if durations else None,
            "tasks_analyzed": len(tasks),
        }

    async def build(self, task_context: Optional[TaskContext] = None) -> Dict[str, Any]:
        return {
            "productivity_insights": await self.productivity_insights(),
            "smart_suggestions": await self.smart_suggestions(task_context),
            "pattern_analysis": await self.pattern_analysis(),
        }
