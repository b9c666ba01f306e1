"""
License Service
===============

Business logic for license key accounts: minting keys, validating them and
authenticating requests that carry them.
"""

from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from captureai.errors import AuthenticationError, CaptureAIError, ValidationError
from captureai.log import audit, mask_license_key, security
from captureai.models.db_models import User, generate_license_key
from captureai.models.schemas import FreeKeyResponse, SubscriptionStatus, Tier
from captureai.services.email_service import EmailService
from captureai.validation import validate_license_key

logger = structlog.get_logger(__name__)

MAX_KEY_ATTEMPTS = 10
AUTH_SCHEME = "LicenseKey"

FREE_KEY_CREATED = "Free license key created successfully. Please check your email."
FREE_KEY_EMAIL_FAILED = "Free license key created but email delivery failed. Please contact support."


class LicenseService:
    """Service for license key accounts."""

    def __init__(self, db: AsyncSession, email_service: Optional[EmailService] = None):
        self.db = db
        self.email_service = email_service or EmailService()

    async def mint_unique_key(self, max_attempts: int = MAX_KEY_ATTEMPTS) -> str:
        """Generate a license key not yet held by any user."""
        for _ in range(max_attempts):
            license_key = generate_license_key()
            if await self.get_by_license_key(license_key) is None:
                return license_key

        logger.error("License key space exhausted", attempts=max_attempts)
        raise CaptureAIError("Failed to generate unique license key")

    async def get_by_license_key(self, license_key: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.license_key == license_key)
        )
        return result.scalar_one_or_none()

    async def find_free_user_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(
            select(User)
            .where(func.lower(User.email) == email.lower(), User.tier == Tier.FREE.value)
            .order_by(User.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create_free_key(self, email: str) -> FreeKeyResponse:
        """
        Issue a free license key for ``email``, or resend the existing one.

        The response never contains the key and is identical for new and
        existing emails; the key only travels by email. Two requests racing
        for a new email both end up sending the key of whichever insert won
        the unique index on free emails.
        """
        user = await self.find_free_user_by_email(email)

        if user is None:
            user = User(
                license_key=await self.mint_unique_key(),
                email=email,
                tier=Tier.FREE.value,
                subscription_status=SubscriptionStatus.INACTIVE.value,
            )
            self.db.add(user)
            try:
                await self.db.commit()
            except IntegrityError:
                await self.db.rollback()
                user = await self.find_free_user_by_email(email)
                if user is None:
                    raise
                logger.info("Free key issued by a concurrent request, resending", user_id=user.id)
            else:
                audit(logger, "license_created", user_id=user.id, tier=user.tier)
        else:
            logger.info("Free key re-requested, resending", user_id=user.id)

        # Only email keys that are committed
        result = await self.email_service.send_license_key(email, user.license_key, Tier.FREE.value)
        if not result.sent:
            logger.warning("Free key email not delivered", user_id=user.id, error=result.error)
            return FreeKeyResponse(message=FREE_KEY_EMAIL_FAILED, email_failed=True)

        return FreeKeyResponse(message=FREE_KEY_CREATED)

    async def validate_key(self, license_key: str) -> User:
        """
        Look up a normalized key and stamp ``last_validated_at``.

        Raises:
            AuthenticationError: no user holds this key
        """
        user = await self.get_by_license_key(license_key)

        if user is None:
            security(logger, "authentication_failed", reason="unknown_key")
            raise AuthenticationError("Invalid license key")

        user.last_validated_at = datetime.utcnow()
        await self.db.flush()

        audit(logger, "authentication_success", user_id=user.id, tier=user.tier)
        return user

    async def authenticate(self, authorization: Optional[str]) -> Optional[User]:
        """
        Resolve an ``Authorization: LicenseKey <key>`` header to a user.

        Returns None for a missing header, a malformed or unknown key, and
        for pro users whose subscription is not active.
        """
        if not authorization:
            return None

        scheme, _, token = authorization.partition(" ")
        if scheme != AUTH_SCHEME or not token.strip():
            return None

        try:
            license_key = validate_license_key(token)
        except ValidationError:
            return None

        user = await self.get_by_license_key(license_key)
        if user is None:
            security(logger, "authentication_failed", license_key=mask_license_key(license_key))
            return None

        if not user.has_access:
            security(
                logger,
                "Pro user with inactive subscription attempted access",
                user_id=user.id,
                subscription_status=user.subscription_status,
            )
            return None

        return user
