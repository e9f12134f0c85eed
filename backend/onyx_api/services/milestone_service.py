"""
Milestone detection and tier-specific upgrade prompts.

A milestone is recorded at most once per (user, milestone_type). The record
is written with a conflict-ignoring insert, so concurrent callers race
safely: only the call that actually inserts the row gets the message back.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func, case
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from onyx_api.core.timeutil import utcnow
from onyx_api.models.milestone import UserMilestone
from onyx_api.models.task import Task
from onyx_api.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

MILESTONE_TASKS_100 = "tasks_100_completed"
TASKS_100_THRESHOLD = 100


def get_upgrade_message(tier: Optional[str], completed_tasks: int) -> Dict[str, Any]:
    """Build the milestone notification for the user's current tier."""
    base_message = {
        "type": "milestone_achievement",
        "milestone": MILESTONE_TASKS_100,
        "completed_tasks": completed_tasks,
        "achieved_at": utcnow().isoformat(),
    }

    if tier == "free":
        return {
            **base_message,
            "title": "🎉 Amazing! You've completed 100 tasks!",
            "message": (
                "You've built quite a productivity history! With 100+ completed tasks, "
                "you now have enough data in our system to benefit from our Premium "
                "features including unlimited AI assistance and advanced task insights."
            ),
            "current_tier": "free",
            "suggested_tier": "premium",
            "benefits": [
                "Unlimited AI task assistance",
                "Advanced productivity insights from your 100+ tasks",
                "Smart task suggestions based on your patterns",
                "Priority support",
            ],
            "cta_text": "Upgrade to Premium",
            "cta_action": "upgrade_to_premium",
        }

    if tier == "premium":
        return {
            **base_message,
            "title": "🚀 100 Tasks Complete - You're a Productivity Pro!",
            "message": (
                "With 100+ completed tasks, you've demonstrated serious commitment to "
                "productivity! Your task history is now rich enough to benefit from our "
                "Plaid tier's AI fine-tuned models and advanced analytics."
            ),
            "current_tier": "premium",
            "suggested_tier": "plaid",
            "benefits": [
                "AI fine-tuned specifically for your productivity patterns",
                "Advanced analytics on your 100+ task history",
                "Gmail integration for seamless task management",
                "Expert-level productivity recommendations",
                "Custom productivity insights",
            ],
            "cta_text": "Upgrade to Plaid",
            "cta_action": "upgrade_to_plaid",
        }

    if tier == "plaid":
        return {
            **base_message,
            "title": "🏆 Productivity Master - 100 Tasks Complete!",
            "message": (
                "Congratulations on completing 100 tasks! You're making the most of our "
                "Plaid features. Your productivity journey is impressive!"
            ),
            "current_tier": "plaid",
            "suggested_tier": None,
            "benefits": [
                "You're already using our most advanced features",
                "Your fine-tuned AI is learning from your 100+ tasks",
                "Continue leveraging Gmail integration",
                "Keep building your productivity empire!",
            ],
            "cta_text": "Keep Going!",
            "cta_action": "continue_productivity",
        }

    return {
        **base_message,
        "title": "🎉 100 Tasks Complete!",
        "message": "Congratulations on this productivity milestone!",
        "current_tier": tier,
        "suggested_tier": "premium",
        "benefits": ["Consider upgrading for more features"],
        "cta_text": "Learn More",
        "cta_action": "learn_more",
    }


class MilestoneService:
    """Tracks user achievements for one database session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def count_completed_tasks(self, user_id: str) -> int:
        """Completed tasks that have not been deleted."""
        count = await self.db.scalar(
            select(func.count(Task.id)).where(
                Task.user_id == user_id,
                Task.completed_at.is_not(None),
                Task.deleted_at.is_(None),
            )
        )
        return count or 0

    def _insert_ignoring_conflict(self, user_id: str, milestone_type: str):
        dialect = self.db.get_bind().dialect.name
        insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
        return (
            insert(UserMilestone)
            .values(user_id=user_id, milestone_type=milestone_type, achieved_at=utcnow())
            .on_conflict_do_nothing(index_elements=["user_id", "milestone_type"])
            .returning(UserMilestone.id)
        )

    async def mark_milestone_as_seen(self, user_id: str, milestone_type: str) -> bool:
        """Record the milestone; returns True only if this call created the row."""
        result = await self.db.execute(self._insert_ignoring_conflict(user_id, milestone_type))
        inserted = result.first() is not None
        await self.db.commit()
        return inserted

    async def has_seen_milestone(self, user_id: str, milestone_type: str) -> bool:
        result = await self.db.execute(
            select(UserMilestone.id).where(
                UserMilestone.user_id == user_id,
                UserMilestone.milestone_type == milestone_type,
            )
        )
        return result.first() is not None

    async def check_task_completion_milestone(self, user_id: str) -> Optional[Dict[str, Any]]:
        """
        Return the 100-tasks notification the first time the threshold is crossed.

        Subsequent calls return None. Failures are logged and yield None.
        """
        try:
            completed_tasks = await self.count_completed_tasks(user_id)
            if completed_tasks < TASKS_100_THRESHOLD:
                return None

            if await self.has_seen_milestone(user_id, MILESTONE_TASKS_100):
                return None

            subscription = await SubscriptionService(self.db).get_user_subscription(user_id)
            if not await self.mark_milestone_as_seen(user_id, MILESTONE_TASKS_100):
                # Another request recorded it first
                return None

            logger.info(f"User {user_id} reached {MILESTONE_TASKS_100} ({completed_tasks} tasks)")
            return get_upgrade_message(subscription.tier, completed_tasks)

        except Exception as e:
            logger.error(f"Error checking task completion milestone for {user_id}: {e}", exc_info=True)
            return None

    async def get_user_milestones(self, user_id: str) -> List[UserMilestone]:
        result = await self.db.execute(
            select(UserMilestone)
            .where(UserMilestone.user_id == user_id)
            .order_by(UserMilestone.achieved_at.desc())
        )
        return list(result.scalars().all())

    async def check_all_milestones(self, user_id: str) -> List[Dict[str, Any]]:
        """Run every milestone check; currently only the 100-tasks one."""
        milestones = []
        task_milestone = await self.check_task_completion_milestone(user_id)
        if task_milestone:
            milestones.append(task_milestone)
        return milestones

    async def on_task_completed(self, user_id: str) -> List[Dict[str, Any]]:
        return await self.check_all_milestones(user_id)

    async def get_milestone_stats(self, user_id: str) -> Dict[str, Any]:
        result = await self.db.execute(
            select(
                func.count(Task.id),
                func.count(case((Task.completed_at.is_not(None), 1))),
                func.count(case((Task.completed_at.is_(None), 1))),
            ).where(Task.user_id == user_id, Task.deleted_at.is_(None))
        )
        total_tasks, completed_tasks, pending_tasks = result.one()
        milestones = await self.get_user_milestones(user_id)

        return {
            "task_stats": {
                "total_tasks": total_tasks,
                "completed_tasks": completed_tasks,
                "pending_tasks": pending_tasks,
            },
            "milestones_achieved": len(milestones),
            "milestone_types": [m.milestone_type for m in milestones],
            "progress_to_100_tasks": min(TASKS_100_THRESHOLD, completed_tasks),
            "has_reached_100_tasks": completed_tasks >= TASKS_100_THRESHOLD,
        }
