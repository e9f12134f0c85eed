"""
Tests for Stripe checkout and signed webhooks.
"""
import hashlib
import hmac
import json
import time

import pytest
import stripe
from sqlalchemy import select

from onyx_api.core.config import settings
from onyx_api.models import AppUser, Integration
from onyx_api.services.billing_service import BillingService, tier_for_price

WEBHOOK_SECRET = "whsec_test_secret"
PREMIUM_PRICE = "price_premium_test"
PLAID_PRICE = "price_plaid_test"


@pytest.fixture(autouse=True)
def stripe_settings(monkeypatch):
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_123")
    monkeypatch.setattr(settings, "stripe_webhook_secret", WEBHOOK_SECRET)
    monkeypatch.setattr(settings, "stripe_price_premium", PREMIUM_PRICE)
    monkeypatch.setattr(settings, "stripe_price_plaid", PLAID_PRICE)


def _signed(event: dict, secret: str = WEBHOOK_SECRET):
    payload = json.dumps(event)
    timestamp = int(time.time())
    signature = hmac.new(
        secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return payload, f"t={timestamp},v1={signature}"


async def _post_webhook(client, event, secret=WEBHOOK_SECRET):
    payload, header = _signed(event, secret)
    return await client.post(
        "/api/v1/stripe/webhook",
        content=payload,
        headers={"stripe-signature": header, "Content-Type": "application/json"},
    )


def test_tier_for_price():
    assert tier_for_price(PREMIUM_PRICE) == "premium"
    assert tier_for_price(PLAID_PRICE) == "plaid"
    assert tier_for_price("price_basic") is None
    assert tier_for_price(None) is None


class TestWebhookSignature:
    async def test_missing_signature(self, client):
        response = await client.post("/api/v1/stripe/webhook", content=b"{}")
        assert response.status_code == 400
        assert response.json()["success"] is False

    async def test_wrong_secret(self, client):
        response = await _post_webhook(client, {"type": "ping"}, secret="whsec_other")
        assert response.status_code == 400
        assert response.json()["error"] == "Webhook signature verification failed"

    async def test_unhandled_event_is_acknowledged(self, client):
        response = await _post_webhook(client, {"type": "invoice.paid", "data": {"object": {}}})
        assert response.status_code == 200
        assert response.json() == {"received": True}


class TestWebhookEvents:
    async def test_checkout_completed_upgrades_user(self, client, db_session, test_user, monkeypatch):
        async def fake_retrieve(self, subscription_id):
            return {"id": subscription_id, "status": "active", "price_id": PLAID_PRICE}

        monkeypatch.setattr(BillingService, "_retrieve_subscription", fake_retrieve)

        response = await _post_webhook(client, {
            "type": "checkout.session.completed",
            "data": {"object": {
                "mode": "subscription",
                "subscription": "sub_123",
                "customer": "cus_123",
                "metadata": {"userId": test_user.user_id},
            }},
        })

        assert response.status_code == 200
        user = await db_session.scalar(select(AppUser).where(AppUser.user_id == test_user.user_id))
        assert user.subscription == "plaid"
        assert user.stripe_subscription_id == "sub_123"
        assert user.subscription_updated_at is not None

    async def test_subscription_updated_to_premium(self, client, db_session, test_user):
        test_user.stripe_customer_id = "cus_abc"
        await db_session.commit()

        await _post_webhook(client, {
            "type": "customer.subscription.updated",
            "data": {"object": {
                "id": "sub_9",
                "customer": "cus_abc",
                "status": "active",
                "items": {"data": [{"price": {"id": PREMIUM_PRICE}}]},
            }},
        })

        assert test_user.subscription == "premium"

    async def test_inactive_subscription_falls_back_to_free(self, client, db_session, make_user):
        user = await make_user("paying-user", "premium")
        user.stripe_customer_id = "cus_past_due"
        await db_session.commit()

        await _post_webhook(client, {
            "type": "customer.subscription.updated",
            "data": {"object": {"id": "sub_1", "customer": "cus_past_due", "status": "past_due"}},
        })

        assert user.subscription == "free"
        assert user.stripe_subscription_id is None

    async def test_deleted_subscription_disables_gmail(self, client, db_session, make_user):
        user = await make_user("leaving-user", "premium")
        user.stripe_customer_id = "cus_leaving"
        db_session.add(Integration(user_id=user.user_id, gmail=True, status="active"))
        await db_session.commit()

        await _post_webhook(client, {
            "type": "customer.subscription.deleted",
            "data": {"object": {"id": "sub_2", "customer": "cus_leaving"}},
        })

        assert user.subscription == "free"
        integration = await db_session.scalar(select(Integration).where(Integration.user_id == user.user_id))
        assert integration.gmail is False


class TestCheckout:
    async def test_invalid_price(self, client, test_user):
        response = await client.post("/api/v1/stripe/create-checkout-session", json={"priceId": "price_basic"})
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid priceId. Only Premium or Plaid plans are supported."

    async def test_creates_customer_once_and_returns_url(self, client, db_session, test_user, monkeypatch):
        created_customers = []
        sessions = []

        def fake_customer_create(**kwargs):
            created_customers.append(kwargs)
            return {"id": "cus_new"}

        def fake_session_create(**kwargs):
            sessions.append(kwargs)
            return {"url": "https://checkout.stripe.test/session"}

        monkeypatch.setattr(stripe.Customer, "create", fake_customer_create)
        monkeypatch.setattr(stripe.checkout.Session, "create", fake_session_create)

        for _ in range(2):
            response = await client.post("/api/v1/stripe/create-checkout-session", json={"priceId": PREMIUM_PRICE})
            assert response.status_code == 200
            assert response.json()["data"]["url"] == "https://checkout.stripe.test/session"

        assert len(created_customers) == 1
        assert created_customers[0]["metadata"] == {"userId": test_user.user_id}
        assert sessions[0]["customer"] == "cus_new"
        assert sessions[0]["line_items"] == [{"price": PREMIUM_PRICE, "quantity": 1}]
        assert test_user.stripe_customer_id == "cus_new"

    async def test_portal_requires_customer(self, client, test_user):
        response = await client.post("/api/v1/stripe/customer-portal")
        assert response.status_code == 404
