"""
Tests for tier limits, processing configs and daily usage metering.
"""
from datetime import timedelta

import pytest

from onyx_api.core.errors import NotFoundError
from onyx_api.core.timeutil import start_of_utc_day, utcnow
from onyx_api.models import AssistantMessage, TaskAIMessage
from onyx_api.services.subscription_service import (
    SubscriptionService,
    get_ai_processing_config,
    get_processing_type,
    get_subscription_limits,
    quota_exceeded_message,
)


class TestTierTables:
    def test_free_limits(self):
        limits = get_subscription_limits("free")
        assert limits.daily_limit == 3
        assert limits.unlimited is False
        assert limits.features == ["basic_ai_responses", "task_context"]

    def test_paid_tiers_are_unlimited(self):
        for tier in ("premium", "plaid"):
            limits = get_subscription_limits(tier)
            assert limits.unlimited is True
            assert limits.daily_limit is None

    @pytest.mark.parametrize("tier", [None, "", "enterprise", "basic"])
    def test_unknown_tiers_fall_back_to_free(self, tier):
        assert get_subscription_limits(tier) == get_subscription_limits("free")
        assert get_ai_processing_config(tier) == get_ai_processing_config("free")

    def test_processing_type(self):
        assert get_processing_type("plaid") == "premium"
        assert get_processing_type("premium") == "standard"
        assert get_processing_type("free") == "standard"
        assert get_processing_type(None) == "standard"

    def test_processing_configs(self):
        free = get_ai_processing_config("free")
        assert (free.model, free.max_tokens, free.temperature, free.context_depth) == (
            "gpt-3.5-turbo", 150, 0.7, "minimal",
        )
        premium = get_ai_processing_config("premium")
        assert (premium.max_tokens, premium.context_depth) == (300, "full")
        plaid = get_ai_processing_config("plaid")
        assert (plaid.model, plaid.max_tokens, plaid.temperature, plaid.context_depth) == (
            "gpt-4", 500, 0.8, "comprehensive",
        )

    def test_quota_message(self):
        assert quota_exceeded_message(3) == (
            "Daily limit of 3 AI questions exceeded. Upgrade to Premium for unlimited access."
        )


async def _add_user_messages(db_session, user_id, task_id, count, created_at=None):
    for i in range(count):
        db_session.add(TaskAIMessage(
            task_id=task_id,
            user_id=user_id,
            message=f"question {i}",
            from_user=True,
            from_ai=False,
            created_at=created_at or utcnow(),
        ))
    await db_session.commit()


class TestDailyUsage:
    async def test_missing_user_raises_not_found(self, db_session):
        with pytest.raises(NotFoundError):
            await SubscriptionService(db_session).get_user_subscription("nobody")

    async def test_soft_deleted_user_raises_not_found(self, db_session, test_user):
        test_user.deleted_at = utcnow()
        await db_session.commit()
        with pytest.raises(NotFoundError):
            await SubscriptionService(db_session).get_user_subscription(test_user.user_id)

    async def test_null_subscription_is_free(self, db_session, test_user):
        test_user.subscription = None
        await db_session.commit()
        subscription = await SubscriptionService(db_session).get_user_subscription(test_user.user_id)
        assert subscription.tier == "free"
        assert subscription.processing_type == "standard"

    async def test_counts_user_messages_across_both_tables(self, db_session, test_user, test_task):
        await _add_user_messages(db_session, test_user.user_id, test_task.id, 1)
        db_session.add(AssistantMessage(user_id=test_user.user_id, message="hi", from_user=True))
        # AI replies are not metered
        db_session.add(AssistantMessage(user_id=test_user.user_id, message="hello", from_ai=True))
        await db_session.commit()

        usage = await SubscriptionService(db_session).check_daily_usage(test_user.user_id, "free")
        assert usage.usage == 2
        assert usage.remaining == 1
        assert usage.allowed is True

    async def test_yesterday_does_not_count(self, db_session, test_user, test_task):
        yesterday = start_of_utc_day() - timedelta(minutes=1)
        await _add_user_messages(db_session, test_user.user_id, test_task.id, 3, created_at=yesterday)

        usage = await SubscriptionService(db_session).check_daily_usage(test_user.user_id, "free")
        assert usage.usage == 0
        assert usage.allowed is True

    async def test_free_user_at_limit_is_denied(self, db_session, test_user, test_task):
        await _add_user_messages(db_session, test_user.user_id, test_task.id, 3)

        validation = await SubscriptionService(db_session).validate_ai_request(test_user.user_id)
        assert validation.allowed is False
        assert validation.usage.remaining == 0
        assert validation.usage.limit == 3
        assert "Daily limit of 3" in validation.error

    async def test_unlimited_tier_is_never_counted(self, db_session, make_user, test_task):
        user = await make_user("plaid-user", "plaid")
        validation = await SubscriptionService(db_session).validate_ai_request(user.user_id)
        assert validation.allowed is True
        assert validation.usage.usage == 0
        assert validation.usage.limit is None
        assert validation.usage.remaining is None
        assert validation.subscription.processing_type == "premium"
