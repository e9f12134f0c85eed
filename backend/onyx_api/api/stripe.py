"""
Stripe billing endpoints.

The webhook is unauthenticated; its ``stripe-signature`` header is verified
against the raw request body instead.
"""
import logging

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from onyx_api.api.deps import get_current_user_id
from onyx_api.api.responses import envelope
from onyx_api.core.database import get_db
from onyx_api.services.billing_service import BillingService, verify_webhook

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stripe", tags=["stripe"])


class CheckoutRequest(BaseModel):
    price_id: str = Field(..., alias="priceId", min_length=1)

    class Config:
        populate_by_name = True


@router.post("/create-checkout-session")
async def create_checkout_session(
    body: CheckoutRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    url = await BillingService(db).create_checkout_session(user_id, body.price_id)
    return envelope(data={"url": url})


@router.post("/customer-portal")
async def customer_portal(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    url = await BillingService(db).create_portal_session(user_id)
    return envelope(data={"url": url})


@router.post("/webhook")
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    payload = await request.body()
    event = verify_webhook(payload, request.headers.get("stripe-signature"))
    handled = await BillingService(db).handle_event(event)
    logger.info(f"Stripe webhook {event.get('type')} handled={handled}")
    return {"received": True}
