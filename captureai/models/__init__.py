"""Pydantic models for request/response schemas."""

from captureai.models.schemas import (
    # Enums
    Tier,
    SubscriptionStatus,
    PromptType,
    LimitType,

    # Request models
    FreeKeyRequest,
    ValidateKeyRequest,
    CheckoutRequest,
    CompletionRequest,

    # Response models
    UserProfile,
    CurrentUserResponse,
    ValidateKeyResponse,
    FreeKeyResponse,
    CompletionUsage,
    CompletionResponse,
    CheckoutResponse,
    PortalResponse,
)

__all__ = [
    "Tier",
    "SubscriptionStatus",
    "PromptType",
    "LimitType",
    "FreeKeyRequest",
    "ValidateKeyRequest",
    "CheckoutRequest",
    "CompletionRequest",
    "UserProfile",
    "CurrentUserResponse",
    "ValidateKeyResponse",
    "FreeKeyResponse",
    "CompletionUsage",
    "CompletionResponse",
    "CheckoutResponse",
    "PortalResponse",
]
