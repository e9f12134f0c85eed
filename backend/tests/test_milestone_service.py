"""
Tests for the 100-completed-tasks milestone.
"""
import pytest
from sqlalchemy import func, select

from onyx_api.core.timeutil import utcnow
from onyx_api.models import Task, UserMilestone
from onyx_api.services.milestone_service import (
    MILESTONE_TASKS_100,
    MilestoneService,
    get_upgrade_message,
)


async def _add_tasks(db_session, user_id, count, completed=True, deleted=False):
    now = utcnow()
    db_session.add_all([
        Task(
            user_id=user_id,
            title=f"Task {i}",
            completed_at=now if completed else None,
            deleted_at=now if deleted else None,
        )
        for i in range(count)
    ])
    await db_session.commit()


class TestUpgradeMessage:
    @pytest.mark.parametrize("tier,suggested,action", [
        ("free", "premium", "upgrade_to_premium"),
        ("premium", "plaid", "upgrade_to_plaid"),
        ("plaid", None, "continue_productivity"),
        ("mystery", "premium", "learn_more"),
    ])
    def test_suggested_tier_per_current_tier(self, tier, suggested, action):
        message = get_upgrade_message(tier, 100)
        assert message["suggested_tier"] == suggested
        assert message["cta_action"] == action
        assert message["milestone"] == MILESTONE_TASKS_100
        assert message["completed_tasks"] == 100

    def test_payload_shape(self):
        message = get_upgrade_message("free", 120)
        for key in ("type", "achieved_at", "title", "message", "current_tier", "benefits", "cta_text"):
            assert key in message
        assert message["completed_tasks"] == 120


class TestTaskCompletionMilestone:
    async def test_below_threshold_returns_none(self, db_session, test_user):
        await _add_tasks(db_session, test_user.user_id, 99)
        assert await MilestoneService(db_session).check_task_completion_milestone(test_user.user_id) is None

    async def test_reached_once_only(self, db_session, test_user):
        await _add_tasks(db_session, test_user.user_id, 100)
        service = MilestoneService(db_session)

        first = await service.check_task_completion_milestone(test_user.user_id)
        assert first is not None
        assert first["suggested_tier"] == "premium"
        assert first["completed_tasks"] == 100

        assert await service.check_task_completion_milestone(test_user.user_id) is None

        count = await db_session.scalar(
            select(func.count(UserMilestone.id)).where(UserMilestone.user_id == test_user.user_id)
        )
        assert count == 1

    async def test_open_tasks_do_not_count(self, db_session, test_user):
        await _add_tasks(db_session, test_user.user_id, 99)
        await _add_tasks(db_session, test_user.user_id, 5, completed=False)
        assert await MilestoneService(db_session).check_task_completion_milestone(test_user.user_id) is None

    async def test_soft_deleted_completed_tasks_do_not_count(self, db_session, test_user):
        await _add_tasks(db_session, test_user.user_id, 99)
        await _add_tasks(db_session, test_user.user_id, 1, deleted=True)

        service = MilestoneService(db_session)
        assert await service.count_completed_tasks(test_user.user_id) == 99
        assert await service.check_task_completion_milestone(test_user.user_id) is None

    async def test_message_follows_user_tier(self, db_session, make_user):
        user = await make_user("premium-user", "premium")
        await _add_tasks(db_session, user.user_id, 100)

        message = await MilestoneService(db_session).check_task_completion_milestone(user.user_id)
        assert message["current_tier"] == "premium"
        assert message["suggested_tier"] == "plaid"

    async def test_other_users_tasks_are_ignored(self, db_session, test_user, other_user):
        await _add_tasks(db_session, other_user.user_id, 100)
        assert await MilestoneService(db_session).check_task_completion_milestone(test_user.user_id) is None


class TestMilestoneRecords:
    async def test_mark_as_seen_is_idempotent(self, db_session, test_user):
        service = MilestoneService(db_session)
        assert await service.mark_milestone_as_seen(test_user.user_id, MILESTONE_TASKS_100) is True
        assert await service.mark_milestone_as_seen(test_user.user_id, MILESTONE_TASKS_100) is False
        assert await service.has_seen_milestone(test_user.user_id, MILESTONE_TASKS_100) is True

    async def test_dismissed_milestone_is_not_offered(self, db_session, test_user):
        service = MilestoneService(db_session)
        await service.mark_milestone_as_seen(test_user.user_id, MILESTONE_TASKS_100)
        await _add_tasks(db_session, test_user.user_id, 100)
        assert await service.check_all_milestones(test_user.user_id) == []

    async def test_stats(self, db_session, test_user):
        await _add_tasks(db_session, test_user.user_id, 4)
        await _add_tasks(db_session, test_user.user_id, 2, completed=False)
        await _add_tasks(db_session, test_user.user_id, 3, deleted=True)

        stats = await MilestoneService(db_session).get_milestone_stats(test_user.user_id)
        assert stats["task_stats"] == {"total_tasks": 6, "completed_tasks": 4, "pending_tasks": 2}
        assert stats["progress_to_100_tasks"] == 4
        assert stats["has_reached_100_tasks"] is False
        assert stats["milestones_achieved"] == 0
