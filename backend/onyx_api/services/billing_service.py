"""
Stripe billing: checkout, customer portal and subscription webhooks.

The Stripe SDK is synchronous; calls run in a worker thread.
"""
import asyncio
import json
import logging
from typing import Any, Dict, Optional

import stripe
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from onyx_api.core.config import settings
from onyx_api.core.errors import AppError, NotFoundError
from onyx_api.core.timeutil import utcnow
from onyx_api.models.app_user import AppUser, SubscriptionTier
from onyx_api.services.integration_service import IntegrationService

logger = logging.getLogger(__name__)

# Webhook signatures older than this are rejected
WEBHOOK_TOLERANCE_SECONDS = 300


def _configure_stripe() -> None:
    if not settings.stripe_secret_key:
        raise AppError("Stripe is not configured", 503)
    stripe.api_key = settings.stripe_secret_key


def tier_for_price(price_id: Optional[str]) -> Optional[str]:
    if price_id and price_id == settings.stripe_price_premium:
        return SubscriptionTier.PREMIUM.value
    if price_id and price_id == settings.stripe_price_plaid:
        return SubscriptionTier.PLAID.value
    return None


def verify_webhook(payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
    """
    Check the ``stripe-signature`` header and return the decoded event.

    Raises:
        AppError: 400 on a missing or invalid signature
    """
    if not settings.stripe_webhook_secret:
        raise AppError("Stripe webhook secret is not configured", 503)
    if not signature:
        raise AppError("Missing stripe-signature header", 400)
    try:
        stripe.WebhookSignature.verify_header(
            payload.decode("utf-8"),
            signature,
            settings.stripe_webhook_secret,
            WEBHOOK_TOLERANCE_SECONDS,
        )
        return json.loads(payload)
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Stripe webhook signature rejected: {e}")
        raise AppError("Webhook signature verification failed", 400) from e
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise AppError("Invalid webhook payload", 400) from e


class BillingService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_user(self, user_id: str) -> AppUser:
        result = await self.db.execute(
            select(AppUser).where(AppUser.user_id == user_id, AppUser.deleted_at.is_(None))
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def _find_user_for_event(self, obj: Dict[str, Any]) -> Optional[AppUser]:
        user_id = (obj.get("metadata") or {}).get("userId")
        if user_id:
            result = await self.db.execute(select(AppUser).where(AppUser.user_id == user_id))
            return result.scalar_one_or_none()
        customer_id = obj.get("customer")
        if customer_id:
            result = await self.db.execute(select(AppUser).where(AppUser.stripe_customer_id == customer_id))
            return result.scalar_one_or_none()
        return None

    async def _retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        _configure_stripe()
        subscription = await asyncio.to_thread(stripe.Subscription.retrieve, subscription_id)
        return {
            "id": subscription["id"],
            "status": subscription["status"],
            "price_id": subscription["items"]["data"][0]["price"]["id"],
        }

    async def ensure_customer(self, user: AppUser) -> str:
        if user.stripe_customer_id:
            return user.stripe_customer_id
        _configure_stripe()
        customer = await asyncio.to_thread(
            stripe.Customer.create,
            email=user.email,
            metadata={"userId": user.user_id},
        )
        user.stripe_customer_id = customer["id"]
        await self.db.commit()
        logger.info(f"Created Stripe customer {customer['id']} for {user.user_id}")
        return user.stripe_customer_id

    async def create_checkout_session(self, user_id: str, price_id: str) -> str:
        if tier_for_price(price_id) is None:
            raise AppError("Invalid priceId. Only Premium or Plaid plans are supported.", 400)

        user = await self._get_user(user_id)
        _configure_stripe()
        customer_id = await self.ensure_customer(user)
        session = await asyncio.to_thread(
            stripe.checkout.Session.create,
            customer=customer_id,
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            mode="subscription",
            success_url=settings.stripe_success_url,
            cancel_url=settings.stripe_cancel_url,
            metadata={"userId": user_id},
            subscription_data={"metadata": {"userId": user_id}},
        )
        return session["url"]

    async def create_portal_session(self, user_id: str) -> str:
        user = await self._get_user(user_id)
        if not user.stripe_customer_id:
            raise NotFoundError("User or Stripe customer not found")
        _configure_stripe()
        portal = await asyncio.to_thread(
            stripe.billing_portal.Session.create,
            customer=user.stripe_customer_id,
            return_url=settings.stripe_portal_return_url,
        )
        return portal["url"]

    async def _apply_tier(self, user: AppUser, tier: str, subscription_id: Optional[str]) -> None:
        previous = user.subscription
        user.subscription = tier
        user.stripe_subscription_id = subscription_id
        user.subscription_updated_at = utcnow()
        await IntegrationService(self.db).handle_subscription_downgrade(user.user_id, tier)
        await self.db.commit()
        logger.info(f"Subscription for {user.user_id} changed {previous} -> {tier}")

    async def handle_event(self, event: Dict[str, Any]) -> bool:
        """Apply a verified webhook event. Returns False for events we ignore."""
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}

        if event_type == "checkout.session.completed":
            if obj.get("mode") != "subscription":
                return False
            user = await self._find_user_for_event(obj)
            if user is None:
                logger.warning("checkout.session.completed without a known user")
                return False
            subscription = await self._retrieve_subscription(obj["subscription"])
            tier = tier_for_price(subscription["price_id"])
            if tier is None:
                raise AppError(f"Unknown price {subscription['price_id']}", 400)
            await self._apply_tier(user, tier, subscription["id"])
            return True

        if event_type == "customer.subscription.updated":
            user = await self._find_user_for_event(obj)
            if user is None:
                logger.warning("customer.subscription.updated without a known user")
                return False
            if obj.get("status") == "active":
                price_id = obj["items"]["data"][0]["price"]["id"]
                tier = tier_for_price(price_id)
                if tier is None:
                    raise AppError(f"Unknown price {price_id}", 400)
                await self._apply_tier(user, tier, obj.get("id"))
            else:
                await self._apply_tier(user, SubscriptionTier.FREE.value, None)
            return True

        if event_type == "customer.subscription.deleted":
            user = await self._find_user_for_event(obj)
            if user is None:
                logger.warning("customer.subscription.deleted without a known user")
                return False
            await self._apply_tier(user, SubscriptionTier.FREE.value, None)
            return True

        logger.info(f"Unhandled Stripe event type: {event_type}")
        return False
