"""
AI Service
==========

Quota enforcement, prompt construction, cost metering and analytics for
AI completions proxied through the gateway.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from captureai.config import get_settings
from captureai.errors import QuotaExceededError, ValidationError
from captureai.models.db_models import UsageRecord, User
from captureai.models.schemas import (
    CompletionRequest,
    CompletionResponse,
    CompletionUsage,
    LimitType,
    PromptType,
    Tier,
)
from captureai.services.gateway_client import AIGatewayClient, GatewayResponse

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ReasoningConfig:
    model: str
    label: str
    reasoning_effort: Optional[str]
    legacy_token_param: bool


# Level 0 is the previous model family, which takes max_tokens and has no
# reasoning effort. Levels 1 and 2 share the current model.
REASONING_CONFIGS: Dict[int, ReasoningConfig] = {
    0: ReasoningConfig("openai/gpt-4.1-nano", "none", None, True),
    1: ReasoningConfig("openai/gpt-5-nano", "low", "low", False),
    2: ReasoningConfig("openai/gpt-5-nano", "medium", "medium", False),
}
DEFAULT_REASONING_LEVEL = 1

# USD per million tokens, keyed by reasoning label. Reasoning tokens bill as output.
PRICING: Dict[str, Dict[str, float]] = {
    "none": {"input": 0.10, "output": 0.40, "cached": 0.025},
    "low": {"input": 0.05, "output": 0.40, "cached": 0.005},
    "medium": {"input": 0.05, "output": 0.40, "cached": 0.005},
}

ASK_MAX_TOKENS = 4000
DEFAULT_MAX_TOKENS = 2500

SYSTEM_PROMPT = "You are a helpful assistant."
ANSWER_PROMPT = "Reply with answer only."
AUTO_SOLVE_PROMPT = "Answer with only the number (1, 2, 3, or 4) of the correct choice."

AVAILABLE_MODELS = [
    {
        "id": "gpt-5-nano",
        "name": "GPT-5 Nano",
        "description": "Fast and efficient reasoning",
        "tier": "all",
    },
]


@dataclass
class UsageCheck:
    allowed: bool
    used: int
    limit: int
    limit_type: LimitType


def resolve_reasoning_level(level: Any) -> int:
    """Map a client supplied level to 0, 1 or 2. Anything else means 1."""
    if isinstance(level, bool):
        return DEFAULT_REASONING_LEVEL
    if isinstance(level, str) and level.strip().isdigit():
        level = int(level.strip())
    if isinstance(level, float) and level.is_integer():
        level = int(level)
    if isinstance(level, int) and level in REASONING_CONFIGS:
        return level
    return DEFAULT_REASONING_LEVEL


def calculate_cost(label: str, input_tokens: int, cached_tokens: int, output_tokens: int) -> float:
    """Cost in USD. Unknown labels are priced as ``low``."""
    rates = PRICING.get(label, PRICING["low"])
    regular_input = input_tokens - cached_tokens
    return (
        regular_input * rates["input"]
        + cached_tokens * rates["cached"]
        + output_tokens * rates["output"]
    ) / 1_000_000


def _with_ocr(prompt: str, ocr_text: Optional[str]) -> str:
    if ocr_text and ocr_text.strip():
        return f"{prompt}\n\nExtracted text from image:\n{ocr_text}"
    return prompt


def _multimodal(text: str, image_data: str) -> List[Dict[str, Any]]:
    return [{
        "role": "user",
        "content": [
            {"type": "text", "text": text},
            {"type": "image_url", "image_url": {"url": image_data}},
        ],
    }]


def _conversation(text: str) -> List[Dict[str, Any]]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": text},
    ]


def build_messages(request: CompletionRequest) -> List[Dict[str, Any]]:
    """Choose the message layout from the prompt type and available inputs."""
    question = request.question
    image = request.image_data
    ocr = request.ocr_text

    if request.prompt_type == PromptType.ASK and question:
        if image:
            return _multimodal(_with_ocr(question, ocr), image)
        if ocr:
            return _conversation(_with_ocr(question, ocr))
        return _conversation(question)

    if request.prompt_type == PromptType.AUTO_SOLVE:
        prompt = _with_ocr(AUTO_SOLVE_PROMPT, ocr)
        return _multimodal(prompt, image) if image else _conversation(prompt)

    if ocr and not image:
        return _conversation(_with_ocr(ANSWER_PROMPT, ocr))

    if image:
        return _multimodal(_with_ocr(ANSWER_PROMPT, ocr), image)

    raise ValidationError("No image data or OCR text provided")


def build_payload(request: CompletionRequest) -> Dict[str, Any]:
    """Build the chat completions payload for the requested reasoning level."""
    config = REASONING_CONFIGS[resolve_reasoning_level(request.reasoning_level)]
    max_tokens = ASK_MAX_TOKENS if request.prompt_type == PromptType.ASK else DEFAULT_MAX_TOKENS

    payload: Dict[str, Any] = {
        "model": config.model,
        "messages": build_messages(request),
    }
    if config.legacy_token_param:
        payload["max_tokens"] = max_tokens
    else:
        payload["max_completion_tokens"] = max_tokens
    if config.reasoning_effort:
        payload["reasoning_effort"] = config.reasoning_effort

    return payload


def _start_of_utc_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _percentage(used: int, limit: int) -> int:
    return round(used / limit * 100) if limit else 0


def _iso(dt: datetime) -> str:
    return dt.isoformat(timespec="milliseconds") + "Z"


class AIService:
    """Service for AI completions and the usage they generate."""

    def __init__(self, db: AsyncSession, gateway: Optional[AIGatewayClient] = None):
        self.db = db
        self.gateway = gateway or AIGatewayClient()
        self.settings = get_settings()

    # -------------------------------------------------------------------------
    # Quotas
    # -------------------------------------------------------------------------

    async def _count_since(self, user_id: str, since: datetime, inclusive: bool = True) -> int:
        condition = UsageRecord.created_at >= since if inclusive else UsageRecord.created_at > since
        result = await self.db.execute(
            select(func.count(UsageRecord.id)).where(UsageRecord.user_id == user_id, condition)
        )
        return result.scalar_one()

    async def check_usage_limit(self, user: User) -> UsageCheck:
        """
        Free users get a daily cap that resets at UTC midnight. Pro users get
        a per-minute cap over the trailing 60 seconds.
        """
        now = datetime.utcnow()

        if user.tier == Tier.PRO.value:
            limit = self.settings.pro_tier_rate_limit_per_minute
            used = await self._count_since(user.id, now - timedelta(seconds=60), inclusive=False)
            return UsageCheck(used < limit, used, limit, LimitType.PER_MINUTE)

        limit = self.settings.free_tier_daily_limit
        used = await self._count_since(user.id, _start_of_utc_day(now))
        return UsageCheck(used < limit, used, limit, LimitType.PER_DAY)

    async def get_usage(self, user: User) -> Dict[str, Any]:
        """Current quota consumption for the usage endpoint."""
        now = datetime.utcnow()
        used_today = await self._count_since(user.id, _start_of_utc_day(now))

        if user.tier == Tier.PRO.value:
            limit = self.settings.pro_tier_rate_limit_per_minute
            used_minute = await self._count_since(user.id, now - timedelta(seconds=60), inclusive=False)
            return {
                "today": {"used": used_today, "limit": None, "remaining": None, "percentage": 0},
                "lastMinute": {
                    "used": used_minute,
                    "limit": limit,
                    "remaining": max(0, limit - used_minute),
                    "percentage": _percentage(used_minute, limit),
                },
                "tier": user.tier,
                "limitType": LimitType.PER_MINUTE.value,
            }

        limit = self.settings.free_tier_daily_limit
        return {
            "today": {
                "used": used_today,
                "limit": limit,
                "remaining": max(0, limit - used_today),
                "percentage": _percentage(used_today, limit),
            },
            "tier": user.tier,
            "limitType": LimitType.PER_DAY.value,
        }

    # -------------------------------------------------------------------------
    # Completions
    # -------------------------------------------------------------------------

    async def complete(self, user: User, body: Dict[str, Any]) -> CompletionResponse:
        """
        Run one completion for ``user``.

        Raises:
            QuotaExceededError: the user's tier quota is used up
            ValidationError: the body carries nothing to answer
            UpstreamError: the gateway failed
        """
        usage_check = await self.check_usage_limit(user)
        if not usage_check.allowed:
            message = (
                "Rate limit reached. Please wait a moment before trying again."
                if usage_check.limit_type == LimitType.PER_MINUTE
                else "Daily limit reached"
            )
            logger.info(
                "Usage quota reached",
                user_id=user.id,
                tier=user.tier,
                limit_type=usage_check.limit_type.value,
                used=usage_check.used,
            )
            raise QuotaExceededError(
                message,
                limit=usage_check.limit,
                used=usage_check.used,
                tier=user.tier,
                limit_type=usage_check.limit_type.value,
            )

        request = CompletionRequest.from_body(body)
        level = resolve_reasoning_level(request.reasoning_level)
        payload = build_payload(request)

        result = await self.gateway.complete(payload, user.id)

        logger.info(
            "AI completion",
            user_id=user.id,
            prompt_type=request.prompt_type.value,
            input_method=request.input_method,
            model=payload["model"],
            reasoning=REASONING_CONFIGS[level].label,
            tokens=result.total_tokens,
            response_time=result.response_time,
            cached=result.cached,
        )

        await self.record_usage(user, request.prompt_type.value, REASONING_CONFIGS[level].label, result)

        per_day = usage_check.limit_type == LimitType.PER_DAY
        return CompletionResponse(
            answer=result.answer,
            usage=CompletionUsage(
                tokens_used=result.total_tokens,
                remaining_today=usage_check.limit - usage_check.used - 1 if per_day else None,
                daily_limit=usage_check.limit if per_day else None,
                used_today=usage_check.used + 1 if per_day else None,
                limit_type=usage_check.limit_type,
            ),
            cached=result.cached,
            response_time=result.response_time,
            model=payload["model"],
        )

    async def record_usage(
        self,
        user: User,
        prompt_type: str,
        label: str,
        result: GatewayResponse,
    ) -> bool:
        """
        Persist a usage row. Best-effort: failures are logged and reported
        as False, never raised.
        """
        record = UsageRecord(
            user_id=user.id,
            prompt_type=prompt_type,
            model=label,
            tokens_used=result.total_tokens,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            reasoning_tokens=result.reasoning_tokens,
            cached_tokens=result.cached_tokens,
            total_cost=calculate_cost(
                label, result.input_tokens, result.cached_tokens, result.output_tokens
            ),
            response_time=result.response_time,
            cached=result.cached,
        )

        try:
            self.db.add(record)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning("Usage recording failed", user_id=user.id, error=str(e))
            return False

        return True

    # -------------------------------------------------------------------------
    # Analytics
    # -------------------------------------------------------------------------

    async def get_analytics(self, user: User, days: int = 30) -> Dict[str, Any]:
        """Cost and token statistics over the last ``days`` days."""
        now = datetime.utcnow()
        start = now - timedelta(days=days)
        scope = (UsageRecord.user_id == user.id, UsageRecord.created_at >= start)

        overall = (await self.db.execute(
            select(
                func.count(UsageRecord.id),
                func.sum(UsageRecord.input_tokens),
                func.sum(UsageRecord.output_tokens),
                func.sum(UsageRecord.reasoning_tokens),
                func.sum(UsageRecord.cached_tokens),
                func.sum(UsageRecord.total_cost),
                func.avg(UsageRecord.input_tokens),
                func.avg(UsageRecord.output_tokens),
                func.avg(UsageRecord.reasoning_tokens),
                func.avg(UsageRecord.total_cost),
                func.avg(UsageRecord.response_time),
            ).where(*scope)
        )).one()

        by_prompt_type = await self._breakdown(UsageRecord.prompt_type, "promptType", scope)
        by_model = await self._breakdown(UsageRecord.model, "model", scope)

        day = func.date(UsageRecord.created_at)
        daily_rows = (await self.db.execute(
            select(
                day,
                func.count(UsageRecord.id),
                func.sum(UsageRecord.input_tokens),
                func.sum(UsageRecord.output_tokens),
                func.sum(UsageRecord.total_cost),
            )
            .where(UsageRecord.user_id == user.id, UsageRecord.created_at >= now - timedelta(days=7))
            .group_by(day)
            .order_by(day.desc())
        )).all()

        (requests, in_total, out_total, reasoning_total, cached_total, cost_total,
         in_avg, out_avg, reasoning_avg, cost_avg, response_avg) = overall

        return {
            "period": {"days": days, "start": _iso(start), "end": _iso(now)},
            "overall": {
                "totalRequests": requests or 0,
                "totalCost": f"{float(cost_total or 0):.6f}",
                "avgCostPerRequest": f"{float(cost_avg or 0):.8f}",
                "tokens": {
                    "input": {"total": int(in_total or 0), "average": round(float(in_avg or 0))},
                    "output": {"total": int(out_total or 0), "average": round(float(out_avg or 0))},
                    "reasoning": {
                        "total": int(reasoning_total or 0),
                        "average": round(float(reasoning_avg or 0)),
                    },
                    "cached": {"total": int(cached_total or 0)},
                },
                "avgResponseTime": round(float(response_avg or 0)),
            },
            "byPromptType": by_prompt_type,
            "byModel": by_model,
            "daily": [
                {
                    "date": str(date),
                    "requests": count,
                    "inputTokens": int(inputs or 0),
                    "outputTokens": int(outputs or 0),
                    "cost": f"{float(cost or 0):.6f}",
                }
                for date, count, inputs, outputs, cost in daily_rows
            ],
        }

    async def _breakdown(self, column, name: str, scope) -> List[Dict[str, Any]]:
        rows = (await self.db.execute(
            select(
                column,
                func.count(UsageRecord.id),
                func.avg(UsageRecord.input_tokens),
                func.avg(UsageRecord.output_tokens),
                func.avg(UsageRecord.total_cost),
                func.sum(UsageRecord.total_cost),
            )
            .where(*scope)
            .group_by(column)
        )).all()

        return [
            {
                name: key,
                "requests": count,
                "avgInputTokens": round(float(avg_in or 0)),
                "avgOutputTokens": round(float(avg_out or 0)),
                "avgCost": f"{float(avg_cost or 0):.8f}",
                "totalCost": f"{float(total_cost or 0):.6f}",
            }
            for key, count, avg_in, avg_out, avg_cost, total_cost in rows
        ]
