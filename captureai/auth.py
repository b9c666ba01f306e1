"""
License Key Authentication
==========================

Resolves ``Authorization: LicenseKey <key>`` headers to users.
"""

from typing import Optional
from fastapi import Depends, Security
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession

from captureai.database import get_db
from captureai.errors import AuthenticationError
from captureai.models.db_models import User
from captureai.models.schemas import CurrentUserResponse, UserProfile
from captureai.services.email_service import EmailService, get_email_service
from captureai.services.license_service import LicenseService


# The scheme is custom, so the raw header is read and parsed by LicenseService
license_key_header = APIKeyHeader(
    name="Authorization",
    scheme_name="LicenseKey",
    description="License key authentication. Send `Authorization: LicenseKey XXXX-XXXX-XXXX-XXXX-XXXX`.",
    auto_error=False,
)


# =============================================================================
# FastAPI Dependencies
# =============================================================================

async def get_license_service(
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> LicenseService:
    """Get license service instance."""
    return LicenseService(db, email_service)


async def get_current_user(
    authorization: Optional[str] = Security(license_key_header),
    license_service: LicenseService = Depends(get_license_service),
) -> User:
    """
    FastAPI dependency returning the authenticated user.

    Unknown keys and lapsed pro subscriptions get the same 401 so callers
    cannot tell them apart.
    """
    user = await license_service.authenticate(authorization)

    if user is None:
        raise AuthenticationError("Not authenticated", headers={"WWW-Authenticate": "LicenseKey"})

    return user


# =============================================================================
# Helper Functions
# =============================================================================

def user_to_profile(user: User) -> UserProfile:
    return UserProfile(
        id=user.id,
        email=user.email,
        tier=user.tier,
        subscription_status=user.subscription_status,
        license_key=user.license_key,
    )


def user_to_current(user: User) -> CurrentUserResponse:
    return CurrentUserResponse(
        **user_to_profile(user).model_dump(),
        created_at=user.created_at,
    )
