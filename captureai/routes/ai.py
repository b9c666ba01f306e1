"""
AI Endpoints
============

Authenticated completions plus usage and cost reporting.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from captureai.auth import get_current_user
from captureai.config import get_settings
from captureai.database import get_db
from captureai.models.db_models import User
from captureai.models.schemas import CompletionResponse
from captureai.services.ai_service import AVAILABLE_MODELS, AIService
from captureai.services.gateway_client import AIGatewayClient, get_gateway_client
from captureai.validation import parse_request_body, validate_number


router = APIRouter(prefix="/api/ai", tags=["AI"])


async def get_ai_service(
    db: AsyncSession = Depends(get_db),
    gateway: AIGatewayClient = Depends(get_gateway_client),
) -> AIService:
    """Get AI service instance."""
    return AIService(db, gateway)


@router.post(
    "/complete",
    response_model=CompletionResponse,
    summary="AI Completion",
    description="Answer a question from text, a screenshot and/or OCR text.",
)
async def complete(
    request: Request,
    user: User = Depends(get_current_user),
    ai_service: AIService = Depends(get_ai_service),
) -> CompletionResponse:
    """
    Run a completion for the authenticated user.

    The tier quota is checked before the body fields are validated. Free
    users get a daily cap, pro users a per-minute cap.
    """
    body = await parse_request_body(request, get_settings().max_body_size)
    return await ai_service.complete(user, body)


@router.post(
    "/solve",
    response_model=CompletionResponse,
    summary="AI Solve",
    description="Alias of /api/ai/complete.",
)
async def solve(
    request: Request,
    user: User = Depends(get_current_user),
    ai_service: AIService = Depends(get_ai_service),
) -> CompletionResponse:
    return await complete(request, user, ai_service)


@router.get(
    "/usage",
    summary="Usage",
    description="Current quota consumption for the authenticated user.",
)
async def get_usage(
    user: User = Depends(get_current_user),
    ai_service: AIService = Depends(get_ai_service),
):
    return await ai_service.get_usage(user)


@router.get(
    "/models",
    summary="Models",
    description="Models available to the extension.",
)
async def list_models():
    return {"models": AVAILABLE_MODELS}


@router.get(
    "/analytics",
    summary="Analytics",
    description="Token and cost statistics for the authenticated user.",
)
async def get_analytics(
    days: Optional[str] = Query(None, description="Look-back window in days (1-365)"),
    user: User = Depends(get_current_user),
    ai_service: AIService = Depends(get_ai_service),
):
    window = validate_number(days, "days", required=False, minimum=1, maximum=365, integer=True)
    return await ai_service.get_analytics(user, days=window or 30)
