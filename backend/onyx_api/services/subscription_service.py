"""
Subscription tiers, daily AI quotas and per-tier model routing.

The tier tables are static; only the user lookup and the daily usage count
touch the database. The usage window is the current UTC calendar day.
"""
import logging
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from onyx_api.core.errors import NotFoundError
from onyx_api.core.timeutil import start_of_utc_day
from onyx_api.models.app_user import AppUser, SubscriptionTier
from onyx_api.models.message import TaskAIMessage, AssistantMessage

logger = logging.getLogger(__name__)


class SubscriptionLimits(BaseModel):
    daily_limit: Optional[int]  # None = unlimited
    unlimited: bool
    features: List[str]


class ProcessingConfig(BaseModel):
    """Model routing parameters for one tier."""
    model: str
    max_tokens: int
    temperature: float
    context_depth: str  # minimal | full | comprehensive
    features: List[str]


class Subscription(BaseModel):
    tier: str
    limits: SubscriptionLimits
    processing_type: str  # standard | premium


class UsageStatus(BaseModel):
    allowed: bool
    usage: int
    limit: Optional[int]
    remaining: Optional[int]


class AIRequestValidation(BaseModel):
    allowed: bool
    subscription: Subscription
    usage: UsageStatus
    error: Optional[str] = None


_LIMITS = {
    SubscriptionTier.FREE.value: SubscriptionLimits(
        daily_limit=3,
        unlimited=False,
        features=["basic_ai_responses", "task_context"],
    ),
    SubscriptionTier.PREMIUM.value: SubscriptionLimits(
        daily_limit=None,
        unlimited=True,
        features=["basic_ai_responses", "task_context", "advanced_suggestions"],
    ),
    SubscriptionTier.PLAID.value: SubscriptionLimits(
        daily_limit=None,
        unlimited=True,
        features=["premium_ai_responses", "full_context", "advanced_suggestions", "custom_prompts"],
    ),
}

_PROCESSING = {
    SubscriptionTier.FREE.value: ProcessingConfig(
        model="gpt-3.5-turbo",
        max_tokens=150,
        temperature=0.7,
        context_depth="minimal",
        features=["basic_suggestions"],
    ),
    SubscriptionTier.PREMIUM.value: ProcessingConfig(
        model="gpt-3.5-turbo",
        max_tokens=300,
        temperature=0.7,
        context_depth="full",
        features=["advanced_suggestions", "context_analysis"],
    ),
    SubscriptionTier.PLAID.value: ProcessingConfig(
        model="gpt-4",
        max_tokens=500,
        temperature=0.8,
        context_depth="comprehensive",
        features=["premium_suggestions", "deep_analysis", "custom_prompts"],
    ),
}


def normalize_tier(tier: Optional[str]) -> str:
    """Map any stored value onto a known tier; unknown or missing means free."""
    if tier in _LIMITS:
        return tier
    return SubscriptionTier.FREE.value


def get_subscription_limits(tier: Optional[str]) -> SubscriptionLimits:
    return _LIMITS[normalize_tier(tier)].model_copy(deep=True)


def get_processing_type(tier: Optional[str]) -> str:
    return "premium" if normalize_tier(tier) == SubscriptionTier.PLAID.value else "standard"


def get_ai_processing_config(tier: Optional[str]) -> ProcessingConfig:
    return _PROCESSING[normalize_tier(tier)].model_copy(deep=True)


def build_subscription(tier: Optional[str]) -> Subscription:
    tier = normalize_tier(tier)
    return Subscription(
        tier=tier,
        limits=get_subscription_limits(tier),
        processing_type=get_processing_type(tier),
    )


def quota_exceeded_message(limit: Optional[int]) -> str:
    return (
        f"Daily limit of {limit} AI questions exceeded. "
        "Upgrade to Premium for unlimited access."
    )


def log_ai_usage(user_id: str, tier: str, message_type: str, tokens_used: int = 0) -> None:
    """Record an AI usage event (analytics only, no persistence)."""
    logger.info(
        f"AI usage: user={user_id} tier={tier} type={message_type} tokens={tokens_used}"
    )


class SubscriptionService:
    """Tier lookup and daily usage metering for one database session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_subscription(self, user_id: str) -> Subscription:
        """
        Look up the user's stored tier.

        Raises:
            NotFoundError: if the user is absent or soft-deleted
        """
        result = await self.db.execute(
            select(AppUser.subscription).where(
                AppUser.user_id == user_id,
                AppUser.deleted_at.is_(None),
            )
        )
        row = result.first()
        if row is None:
            raise NotFoundError("User not found")
        return build_subscription(row[0])

    async def count_messages_today(self, user_id: str) -> int:
        """User-authored AI messages since UTC midnight, across both message tables."""
        day_start = start_of_utc_day()
        task_count = await self.db.scalar(
            select(func.count(TaskAIMessage.id)).where(
                TaskAIMessage.user_id == user_id,
                TaskAIMessage.from_user.is_(True),
                TaskAIMessage.created_at >= day_start,
            )
        )
        assistant_count = await self.db.scalar(
            select(func.count(AssistantMessage.id)).where(
                AssistantMessage.user_id == user_id,
                AssistantMessage.from_user.is_(True),
                AssistantMessage.created_at >= day_start,
            )
        )
        return (task_count or 0) + (assistant_count or 0)

    async def check_daily_usage(self, user_id: str, tier: Optional[str]) -> UsageStatus:
        limits = get_subscription_limits(tier)
        if limits.unlimited:
            return UsageStatus(allowed=True, usage=0, limit=None, remaining=None)

        usage = await self.count_messages_today(user_id)
        limit = limits.daily_limit
        return UsageStatus(
            allowed=usage < limit,
            usage=usage,
            limit=limit,
            remaining=max(0, limit - usage),
        )

    async def validate_ai_request(self, user_id: str) -> AIRequestValidation:
        subscription = await self.get_user_subscription(user_id)
        usage = await self.check_daily_usage(user_id, subscription.tier)

        if not usage.allowed:
            logger.info(
                f"AI request denied for user {user_id}: {usage.usage}/{usage.limit} used today"
            )
            return AIRequestValidation(
                allowed=False,
                subscription=subscription,
                usage=usage,
                error=quota_exceeded_message(usage.limit),
            )

        return AIRequestValidation(allowed=True, subscription=subscription, usage=usage)
