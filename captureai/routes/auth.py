"""
License Key Endpoints
=====================

Free key issuance, key validation and the current user profile.
"""

from fastapi import APIRouter, Depends, Request, status

from captureai.auth import get_current_user, get_license_service, user_to_current, user_to_profile
from captureai.config import get_settings
from captureai.models.db_models import User
from captureai.models.schemas import (
    CurrentUserResponse,
    FreeKeyRequest,
    FreeKeyResponse,
    ValidateKeyRequest,
    ValidateKeyResponse,
)
from captureai.rate_limit import RateLimitPresets, rate_limit
from captureai.services.license_service import LicenseService
from captureai.validation import parse_request_body


router = APIRouter(prefix="/api/auth", tags=["Auth"])


@router.post(
    "/create-free-key",
    response_model=FreeKeyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Free License Key",
    description="Email a free license key. Repeat requests resend the existing key.",
    dependencies=[Depends(rate_limit(RateLimitPresets.FREE_KEY_CREATION))],
)
async def create_free_key(
    request: Request,
    license_service: LicenseService = Depends(get_license_service),
) -> FreeKeyResponse:
    """
    Issue a free license key.

    The key is delivered by email only, and the response is the same whether
    or not the address already had one.
    """
    body = await parse_request_body(request, get_settings().max_body_size)
    free_key = FreeKeyRequest.from_body(body)
    return await license_service.create_free_key(free_key.email)


@router.post(
    "/validate-key",
    response_model=ValidateKeyResponse,
    summary="Validate License Key",
    description="Check a license key and return the account it belongs to.",
    dependencies=[Depends(rate_limit(RateLimitPresets.LICENSE_VALIDATION))],
)
async def validate_key(
    request: Request,
    license_service: LicenseService = Depends(get_license_service),
) -> ValidateKeyResponse:
    body = await parse_request_body(request, get_settings().max_body_size)
    validate = ValidateKeyRequest.from_body(body)
    user = await license_service.validate_key(validate.license_key)

    return ValidateKeyResponse(
        message="License key validated successfully",
        user=user_to_profile(user),
    )


@router.get(
    "/me",
    response_model=CurrentUserResponse,
    summary="Current User",
    description="Profile of the account owning the presented license key.",
)
async def get_me(user: User = Depends(get_current_user)) -> CurrentUserResponse:
    return user_to_current(user)
