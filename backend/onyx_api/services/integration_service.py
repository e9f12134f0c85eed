"""
Per-user external integrations. Gmail is gated to premium and plaid tiers.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from onyx_api.core.errors import AppError
from onyx_api.core.timeutil import utcnow
from onyx_api.models.app_user import AppUser, SubscriptionTier
from onyx_api.models.integration import Integration, IntegrationStatus
from onyx_api.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

GMAIL_TIERS = (SubscriptionTier.PREMIUM.value, SubscriptionTier.PLAID.value)


class IntegrationService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_integration(self, user_id: str) -> Optional[Integration]:
        result = await self.db.execute(select(Integration).where(Integration.user_id == user_id))
        return result.scalar_one_or_none()

    async def get_or_create(self, user_id: str) -> Integration:
        integration = await self.get_integration(user_id)
        if integration is None:
            integration = Integration(user_id=user_id)
            self.db.add(integration)
            await self.db.flush()
        return integration

    async def check_gmail_permission(self, user_id: str) -> Dict[str, Any]:
        subscription = await SubscriptionService(self.db).get_user_subscription(user_id)
        can_use_gmail = subscription.tier in GMAIL_TIERS
        return {
            "can_use_gmail": can_use_gmail,
            "subscription_tier": subscription.tier,
            "reason": (
                "Gmail integration available"
                if can_use_gmail
                else "Gmail integration requires Premium or Plaid subscription"
            ),
        }

    def _status_payload(self, integration: Optional[Integration], permission: Dict[str, Any], email: Optional[str]):
        enabled = bool(integration and integration.gmail)
        scope_granted = bool(integration and integration.gmail_scope_granted)
        return {
            "enabled": enabled,
            "available": permission["can_use_gmail"],
            "scope_granted": scope_granted,
            "last_sync": integration.gmail_last_sync if integration else None,
            "status": integration.status if integration else IntegrationStatus.INACTIVE.value,
            "user_email": email,
            "subscription_tier": permission["subscription_tier"],
            "requires_auth": enabled and not scope_granted,
        }

    async def get_gmail_status(self, user_id: str) -> Dict[str, Any]:
        permission = await self.check_gmail_permission(user_id)
        email = await self.db.scalar(select(AppUser.email).where(AppUser.user_id == user_id))
        status = self._status_payload(await self.get_integration(user_id), permission, email)
        if not permission["can_use_gmail"]:
            status["reason"] = permission["reason"]
        return status

    async def toggle_gmail(self, user_id: str, enabled: bool) -> Dict[str, Any]:
        """
        Enable or disable Gmail for the user.

        Raises:
            AppError: 403 when enabling without a qualifying tier
        """
        permission = await self.check_gmail_permission(user_id)
        if enabled and not permission["can_use_gmail"]:
            raise AppError(permission["reason"], 403)

        integration = await self.get_or_create(user_id)
        integration.gmail = enabled
        if enabled:
            integration.status = IntegrationStatus.ACTIVE.value
        else:
            integration.gmail_scope_granted = False
            integration.status = IntegrationStatus.INACTIVE.value
        await self.db.commit()
        logger.info(f"Gmail integration {'enabled' if enabled else 'disabled'} for {user_id}")

        email = await self.db.scalar(select(AppUser.email).where(AppUser.user_id == user_id))
        payload = self._status_payload(integration, permission, email)
        payload["message"] = (
            "Gmail integration enabled. You may need to grant permissions."
            if enabled
            else "Gmail integration disabled."
        )
        return payload

    async def record_oauth_grant(self, user_id: str, scope_granted: bool) -> Integration:
        """Store the outcome of the Google consent screen."""
        integration = await self.get_integration(user_id)
        if integration is None or not integration.gmail:
            raise AppError("Gmail integration is not enabled", 400)
        integration.gmail_scope_granted = scope_granted
        if scope_granted:
            integration.gmail_last_sync = utcnow()
        await self.db.commit()
        return integration

    async def handle_subscription_downgrade(self, user_id: str, new_tier: str) -> bool:
        """Switch Gmail off when the user drops below a qualifying tier. Caller commits."""
        if new_tier in GMAIL_TIERS:
            return False
        integration = await self.get_integration(user_id)
        if integration is None or not integration.gmail:
            return False
        integration.gmail = False
        integration.gmail_scope_granted = False
        integration.gmail_last_sync = None
        integration.status = IntegrationStatus.INACTIVE.value
        logger.info(f"Disabled Gmail for {user_id} after downgrade to {new_tier}")
        return True
