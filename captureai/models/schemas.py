"""
Pydantic Schemas for API Request/Response Models
=================================================

Request bodies are parsed by hand (see ``captureai.validation``) and turned
into these DTOs with ``from_body`` so every field is validated before use.
Responses are serialized with camelCase aliases for the extension.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from captureai import validation
from captureai.errors import ValidationError


# =============================================================================
# Enums
# =============================================================================

class Tier(str, Enum):
    """Account tiers."""
    FREE = "free"
    PRO = "pro"


class SubscriptionStatus(str, Enum):
    """Subscription states driven by Stripe webhooks."""
    INACTIVE = "inactive"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"


class PromptType(str, Enum):
    """How the extension wants the answer phrased."""
    ANSWER = "answer"
    ASK = "ask"
    AUTO_SOLVE = "auto_solve"


class LimitType(str, Enum):
    PER_DAY = "per_day"
    PER_MINUTE = "per_minute"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Request DTOs
# =============================================================================

class FreeKeyRequest(CamelModel):
    email: str

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "FreeKeyRequest":
        return cls(email=validation.validate_email(body.get("email")))


class ValidateKeyRequest(CamelModel):
    license_key: str

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "ValidateKeyRequest":
        return cls(license_key=validation.validate_license_key(body.get("licenseKey")))


class CheckoutRequest(CamelModel):
    email: str

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "CheckoutRequest":
        return cls(email=validation.validate_email(body.get("email")))


class CompletionRequest(CamelModel):
    """Body of POST /api/ai/complete. At least one input must be present."""
    question: Optional[str] = None
    image_data: Optional[str] = None
    ocr_text: Optional[str] = None
    ocr_confidence: Optional[float] = None
    prompt_type: PromptType = PromptType.ANSWER
    reasoning_level: Any = None

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "CompletionRequest":
        question = validation.sanitize_string(validation.validate_string(
            body.get("question"), "question", required=False, max_length=50000
        ))
        ocr_text = validation.sanitize_string(validation.validate_string(
            body.get("ocrText"), "ocrText", required=False, max_length=50000
        ))
        image_data = body.get("imageData")
        if image_data:
            image_data = validation.validate_base64_image(image_data, "imageData")
        else:
            image_data = None
        ocr_confidence = validation.validate_number(
            body.get("ocrConfidence"), "ocrConfidence", required=False, minimum=0, maximum=100
        )
        prompt_type = validation.validate_enum(
            body.get("promptType"), "promptType", [p.value for p in PromptType], required=False
        )

        request = cls(
            question=question,
            image_data=image_data,
            ocr_text=ocr_text,
            ocr_confidence=ocr_confidence,
            prompt_type=prompt_type or PromptType.ANSWER,
            reasoning_level=body.get("reasoningLevel"),
        )
        if not (request.has_question or request.has_image or request.has_ocr_text):
            raise ValidationError("Question, image data, or OCR text required")
        return request

    @property
    def has_question(self) -> bool:
        return bool(self.question and self.question.strip())

    @property
    def has_image(self) -> bool:
        return bool(self.image_data)

    @property
    def has_ocr_text(self) -> bool:
        return bool(self.ocr_text and self.ocr_text.strip())

    @property
    def input_method(self) -> str:
        if self.has_ocr_text and not self.has_image:
            return "ocr"
        if self.has_image:
            return "image"
        return "text"


# =============================================================================
# Response Models
# =============================================================================

class UserProfile(CamelModel):
    id: str
    email: Optional[str] = None
    tier: Tier
    subscription_status: SubscriptionStatus
    license_key: str


class CurrentUserResponse(UserProfile):
    created_at: datetime


class ValidateKeyResponse(CamelModel):
    message: str
    user: UserProfile


class FreeKeyResponse(CamelModel):
    """Identical shape whether or not the email already had a key."""
    message: str
    tier: Tier = Tier.FREE
    email_failed: bool = False


class CompletionUsage(CamelModel):
    tokens_used: int
    remaining_today: Optional[int] = None
    daily_limit: Optional[int] = None
    used_today: Optional[int] = None
    limit_type: LimitType


class CompletionResponse(CamelModel):
    answer: str
    usage: CompletionUsage
    cached: bool
    response_time: int = Field(..., description="Gateway latency in milliseconds")
    model: str


class CheckoutResponse(CamelModel):
    url: str
    session_id: str


class PortalResponse(CamelModel):
    url: str

