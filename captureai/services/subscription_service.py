"""
Subscription Service
====================

Stripe integration: checkout and billing portal sessions, and the webhook
state machine that moves users between the free and pro tiers.
"""

import json
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import stripe
import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from captureai.config import get_settings
from captureai.errors import (
    ServiceUnavailableError,
    UpstreamError,
    ValidationError,
    WebhookVerificationError,
)
from captureai.log import audit, security
from captureai.models.db_models import User, WebhookEvent
from captureai.models.schemas import CheckoutResponse, PortalResponse, SubscriptionStatus, Tier
from captureai.services.email_service import EmailService
from captureai.services.license_service import LicenseService
from captureai.validation import parse_signature_header

logger = structlog.get_logger(__name__)


def verify_webhook_signature(
    payload: bytes,
    signature_header: str,
    secret: str,
    tolerance: int = 120,
    future_skew: int = 30,
    now: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Verify a Stripe-Signature header and return the decoded event.

    Raises:
        WebhookVerificationError: stale or future timestamp, bad signature,
            or a body that is not a JSON event
        ValidationError: a malformed header
    """
    components = parse_signature_header(signature_header)
    timestamp = components["t"]
    now = int(time.time()) if now is None else now
    age = now - int(timestamp)

    if age > tolerance:
        security(logger, "Webhook timestamp too old", age=age)
        raise WebhookVerificationError("Webhook timestamp too old (max 2 minutes)")

    if age < -future_skew:
        security(logger, "Webhook timestamp in future", age=age)
        raise WebhookVerificationError("Webhook timestamp is in the future")

    # The window is checked above against our clock, so the SDK only
    # compares signatures here.
    try:
        stripe.WebhookSignature.verify_header(payload, signature_header, secret, tolerance=None)
    except (stripe.SignatureVerificationError, UnicodeDecodeError):
        security(logger, "Webhook signature verification failed")
        raise WebhookVerificationError("Signature verification failed")

    try:
        event = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise WebhookVerificationError("Invalid webhook payload")
    if not isinstance(event, dict):
        raise WebhookVerificationError("Invalid webhook payload")

    return event


@dataclass
class LicenseNotice:
    """A license email to send once the webhook transaction is committed."""
    email: str
    license_key: str


class SubscriptionService:
    """Service for Stripe checkout, portal and webhooks."""

    def __init__(
        self,
        db: AsyncSession,
        license_service: Optional[LicenseService] = None,
        email_service: Optional[EmailService] = None,
    ):
        self.db = db
        self.email_service = email_service or EmailService()
        self.license_service = license_service or LicenseService(db, self.email_service)
        self.settings = get_settings()
        self._stripe = None

    @property
    def stripe(self):
        """Stripe module with the API key applied."""
        if self._stripe is None:
            stripe.api_key = self.settings.stripe_secret_key
            self._stripe = stripe
        return self._stripe

    def is_configured(self) -> bool:
        """Check if Stripe is properly configured."""
        return bool(self.settings.stripe_secret_key)

    def _require_configured(self) -> None:
        if not self.is_configured():
            raise ServiceUnavailableError("Billing is not configured")

    # -------------------------------------------------------------------------
    # Checkout & portal
    # -------------------------------------------------------------------------

    async def create_checkout(self, email: str) -> CheckoutResponse:
        """Create a subscription checkout session for ``email``."""
        self._require_configured()
        price_id = self.settings.stripe_price_pro
        if not price_id:
            raise ServiceUnavailableError("Price not configured")

        result = await self.db.execute(
            select(User.stripe_customer_id)
            .where(func.lower(User.email) == email, User.stripe_customer_id.is_not(None))
            .limit(1)
        )
        customer_id = result.scalar_one_or_none()

        try:
            if not customer_id:
                customer_id = self.stripe.Customer.create(email=email).id

            session = self.stripe.checkout.Session.create(
                customer=customer_id,
                mode="subscription",
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=(
                    f"{self.settings.extension_url}/payment-success.html"
                    "?session_id={CHECKOUT_SESSION_ID}"
                ),
                cancel_url=f"{self.settings.extension_url}/activate.html",
            )
        except stripe.StripeError as e:
            logger.error("Stripe checkout creation failed", error=str(e))
            raise UpstreamError(
                "Failed to create checkout",
                extra={"message": e.user_message or str(e)},
            )

        audit(logger, "subscription_checkout_created", session_id=session.id)
        return CheckoutResponse(url=session.url, session_id=session.id)

    async def create_portal(self, user: User) -> PortalResponse:
        """Create a billing portal session for a paying user."""
        self._require_configured()
        if not user.stripe_customer_id:
            raise ValidationError("No subscription found")

        try:
            portal = self.stripe.billing_portal.Session.create(
                customer=user.stripe_customer_id,
                return_url=f"{self.settings.extension_url}/activate.html",
            )
        except stripe.StripeError as e:
            logger.error("Stripe portal creation failed", error=str(e), user_id=user.id)
            raise UpstreamError(
                "Failed to create portal",
                extra={"message": e.user_message or str(e)},
            )

        return PortalResponse(url=portal.url)

    def get_plans(self) -> List[Dict[str, Any]]:
        per_minute = self.settings.pro_tier_rate_limit_per_minute
        return [
            {
                "tier": Tier.FREE.value,
                "name": "Free",
                "price": 0,
                "dailyLimit": self.settings.free_tier_daily_limit,
                "features": [],
            },
            {
                "tier": Tier.PRO.value,
                "name": "Pro",
                "price": self.settings.pro_price_usd,
                "dailyLimit": None,
                "rateLimit": f"{per_minute} per minute",
                "features": ["Unlimited requests", "GPT-5 Nano", f"{per_minute} requests/minute"],
                "recommended": True,
            },
        ]

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------

    async def handle_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify, deduplicate and apply a webhook event.

        Nothing is written before the signature and timestamp check passes.
        The ledger row and the state change commit together, so a failed
        handler leaves the event unrecorded for Stripe to redeliver.
        """
        secret = self.settings.stripe_webhook_secret
        if not secret:
            raise ServiceUnavailableError("Billing is not configured")
        if not signature:
            security(logger, "Webhook received without signature")
            raise WebhookVerificationError("Webhook verification failed")

        event = verify_webhook_signature(
            payload,
            signature,
            secret,
            tolerance=self.settings.webhook_tolerance_seconds,
            future_skew=self.settings.webhook_future_skew_seconds,
        )
        timestamp = int(parse_signature_header(signature)["t"])
        await self.record_event(event, timestamp)

        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}

        notice = None
        if event_type == "checkout.session.completed":
            notice = await self.on_checkout_completed(obj)
        elif event_type == "invoice.payment_succeeded":
            await self.on_payment_succeeded(obj)
        elif event_type == "invoice.payment_failed":
            await self.on_payment_failed(obj)
        elif event_type == "customer.subscription.deleted":
            await self.on_subscription_deleted(obj)
        elif event_type == "customer.subscription.updated":
            await self.on_subscription_updated(obj)
        else:
            logger.info("Ignoring webhook event", event_type=event_type)

        await self.db.commit()
        audit(logger, "webhook_processed", event_id=event["id"], event_type=event_type)

        if notice:
            result = await self.email_service.send_license_key(
                notice.email, notice.license_key, Tier.PRO.value
            )
            if not result.sent:
                logger.warning("Pro license email not delivered", error=result.error)

        return {"received": True}

    async def record_event(self, event: Dict[str, Any], timestamp: int) -> None:
        """
        Add the event to the ledger, rejecting ids that are already there.

        A concurrent delivery of the same id loses on the unique constraint
        and is rejected the same way.
        """
        event_id = event.get("id")
        if not event_id:
            raise WebhookVerificationError("Webhook event has no id")

        existing = await self.db.execute(
            select(WebhookEvent.id).where(WebhookEvent.event_id == event_id)
        )
        if existing.scalar_one_or_none() is not None:
            security(logger, "Duplicate webhook detected", event_id=event_id, event_type=event.get("type"))
            raise WebhookVerificationError("Webhook already processed")

        self.db.add(WebhookEvent(
            event_id=event_id,
            event_type=event.get("type"),
            webhook_timestamp=timestamp,
        ))
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            security(logger, "Duplicate webhook detected", event_id=event_id, event_type=event.get("type"))
            raise WebhookVerificationError("Webhook already processed")

    async def _resolve_checkout_email(self, session: Dict[str, Any]) -> Optional[str]:
        email = session.get("customer_email") or (session.get("customer_details") or {}).get("email")
        customer_id = session.get("customer")

        if not email and customer_id and self.is_configured():
            try:
                email = self.stripe.Customer.retrieve(customer_id).get("email")
            except stripe.StripeError as e:
                logger.warning("Could not fetch Stripe customer", customer_id=customer_id, error=str(e))

        return email.strip().lower() if email else None

    async def on_checkout_completed(self, session: Dict[str, Any]) -> Optional[LicenseNotice]:
        """Upgrade or create the paying user. Existing users keep their key."""
        email = await self._resolve_checkout_email(session)
        customer_id = session.get("customer")
        subscription_id = session.get("subscription")

        if not email:
            logger.error("Checkout completed without a resolvable email", customer_id=customer_id)
            return None

        conditions = [func.lower(User.email) == email]
        if customer_id:
            conditions.append(User.stripe_customer_id == customer_id)
        result = await self.db.execute(
            select(User).where(or_(*conditions)).order_by(User.created_at)
        )
        candidates = list(result.scalars().all())
        # Prefer the account already linked to this Stripe customer
        user = next(
            (u for u in candidates if customer_id and u.stripe_customer_id == customer_id),
            candidates[0] if candidates else None,
        )

        if user is not None:
            user.tier = Tier.PRO.value
            user.subscription_status = SubscriptionStatus.ACTIVE.value
            user.stripe_customer_id = customer_id
            user.stripe_subscription_id = subscription_id
            await self.db.flush()
            audit(logger, "subscription_upgraded", user_id=user.id)
        else:
            user = User(
                license_key=await self.license_service.mint_unique_key(),
                email=email,
                tier=Tier.PRO.value,
                subscription_status=SubscriptionStatus.ACTIVE.value,
                stripe_customer_id=customer_id,
                stripe_subscription_id=subscription_id,
            )
            self.db.add(user)
            await self.db.flush()
            audit(logger, "subscription_created", user_id=user.id)

        return LicenseNotice(email=email, license_key=user.license_key)

    async def _update_users(self, where, **values) -> int:
        result = await self.db.execute(update(User).where(where).values(**values))
        return result.rowcount

    async def on_payment_succeeded(self, invoice: Dict[str, Any]) -> None:
        email = invoice.get("customer_email")
        if not email:
            return
        count = await self._update_users(
            func.lower(User.email) == email.strip().lower(),
            tier=Tier.PRO.value,
            subscription_status=SubscriptionStatus.ACTIVE.value,
        )
        audit(logger, "subscription_renewed", users=count)

    async def on_payment_failed(self, invoice: Dict[str, Any]) -> None:
        email = invoice.get("customer_email")
        if not email:
            return
        # Tier is left alone; inactive pro users are locked out until payment recovers
        count = await self._update_users(
            func.lower(User.email) == email.strip().lower(),
            subscription_status=SubscriptionStatus.PAST_DUE.value,
        )
        audit(logger, "subscription_past_due", users=count)

    async def on_subscription_deleted(self, subscription: Dict[str, Any]) -> None:
        subscription_id = subscription.get("id")
        if not subscription_id:
            return
        count = await self._update_users(
            User.stripe_subscription_id == subscription_id,
            tier=Tier.FREE.value,
            subscription_status=SubscriptionStatus.CANCELLED.value,
        )
        audit(logger, "subscription_cancelled", subscription_id=subscription_id, users=count)

    async def on_subscription_updated(self, subscription: Dict[str, Any]) -> None:
        subscription_id = subscription.get("id")
        if not subscription_id:
            return
        active = subscription.get("status") == "active"
        count = await self._update_users(
            User.stripe_subscription_id == subscription_id,
            tier=Tier.PRO.value if active else Tier.FREE.value,
            subscription_status=(
                SubscriptionStatus.ACTIVE.value if active else SubscriptionStatus.INACTIVE.value
            ),
        )
        audit(
            logger,
            "subscription_updated",
            subscription_id=subscription_id,
            status=subscription.get("status"),
            users=count,
        )
