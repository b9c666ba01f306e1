"""
Subscription Endpoints
======================

Stripe checkout, billing portal, plan list and webhook delivery.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from captureai.auth import get_current_user
from captureai.config import get_settings
from captureai.database import get_db
from captureai.models.db_models import User
from captureai.models.schemas import CheckoutRequest, CheckoutResponse, PortalResponse
from captureai.rate_limit import RateLimitPresets, rate_limit
from captureai.services.email_service import EmailService, get_email_service
from captureai.services.subscription_service import SubscriptionService
from captureai.validation import parse_request_body, read_request_body


router = APIRouter(prefix="/api/subscription", tags=["Subscription"])


async def get_subscription_service(
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> SubscriptionService:
    """Get subscription service instance."""
    return SubscriptionService(db, email_service=email_service)


@router.post(
    "/create-checkout",
    response_model=CheckoutResponse,
    summary="Create Checkout Session",
    description="Start a Stripe Checkout for the Pro subscription.",
    dependencies=[Depends(rate_limit(RateLimitPresets.CHECKOUT))],
)
async def create_checkout(
    request: Request,
    subscription_service: SubscriptionService = Depends(get_subscription_service),
) -> CheckoutResponse:
    body = await parse_request_body(request, get_settings().max_body_size)
    checkout = CheckoutRequest.from_body(body)
    return await subscription_service.create_checkout(checkout.email)


@router.post(
    "/webhook",
    summary="Stripe Webhook",
    description="Receives Stripe events. Requires a valid Stripe-Signature header.",
)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    subscription_service: SubscriptionService = Depends(get_subscription_service),
):
    """
    Apply a Stripe event.

    The raw body is verified before it is parsed; replayed event ids are
    rejected with 400.
    """
    payload = await read_request_body(request, get_settings().max_body_size)
    return await subscription_service.handle_webhook(payload, stripe_signature)


@router.get(
    "/portal",
    response_model=PortalResponse,
    summary="Billing Portal",
    description="Link to the Stripe billing portal for the authenticated user.",
)
async def get_portal(
    user: User = Depends(get_current_user),
    subscription_service: SubscriptionService = Depends(get_subscription_service),
) -> PortalResponse:
    return await subscription_service.create_portal(user)


@router.get(
    "/plans",
    summary="Plans",
    description="Available subscription plans.",
)
async def get_plans(
    subscription_service: SubscriptionService = Depends(get_subscription_service),
):
    return {"plans": subscription_service.get_plans()}
