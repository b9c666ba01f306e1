"""
Rate Limiting
=============

Fixed-window IP rate limiting built on the ``limits`` library.

Two backends share one interface: an in-process ``MemoryStorage`` (single
instance only) and a Redis storage shared by every instance. The Redis
backend fails open: if the store is unreachable the request is allowed and
a warning is logged.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog
from fastapi import Depends, Request
from limits import RateLimitItemPerSecond
from limits.aio.storage import MemoryStorage, Storage
from limits.aio.strategies import FixedWindowRateLimiter
from limits.storage import storage_from_string

from captureai.config import Settings, get_settings
from captureai.errors import RateLimitExceededError
from captureai.log import security

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RateLimitPolicy:
    """A named limit: ``limit`` requests per ``window`` seconds per client."""
    prefix: str
    limit: int
    window: int


class RateLimitPresets:
    AUTH = RateLimitPolicy("auth", 5, 60)
    FREE_KEY_CREATION = RateLimitPolicy("freekey", 3, 3600)
    LICENSE_VALIDATION = RateLimitPolicy("validate", 10, 60)
    CHECKOUT = RateLimitPolicy("checkout", 5, 3600)


@dataclass
class RateLimitResult:
    allowed: bool
    used: int
    limit: int
    reset_at: float  # unix seconds

    @property
    def retry_after(self) -> int:
        return max(1, math.ceil(self.reset_at - datetime.now(timezone.utc).timestamp()))

    @property
    def reset_at_iso(self) -> str:
        return datetime.fromtimestamp(self.reset_at, tz=timezone.utc).isoformat()


class RateLimiter:
    """Fixed-window counter keyed by an arbitrary identifier string."""

    fail_open = False

    def __init__(self, storage: Storage):
        self.storage = storage
        self.strategy = FixedWindowRateLimiter(storage)

    async def check(self, identifier: str, limit: int, window: int) -> RateLimitResult:
        item = RateLimitItemPerSecond(limit, window)
        try:
            allowed = await self.strategy.hit(item, identifier)
            stats = await self.strategy.get_window_stats(item, identifier)
        except Exception as e:
            if not self.fail_open:
                raise
            logger.warning(
                "Rate limit store unavailable, allowing request",
                identifier=identifier,
                error=str(e),
            )
            return RateLimitResult(
                allowed=True,
                used=0,
                limit=limit,
                reset_at=datetime.now(timezone.utc).timestamp() + window,
            )

        return RateLimitResult(
            allowed=allowed,
            used=limit - stats.remaining,
            limit=limit,
            reset_at=stats.reset_time,
        )

    async def reset(self) -> None:
        await self.storage.reset()


class InMemoryRateLimiter(RateLimiter):
    """Process-local counters. Not shared between instances."""

    def __init__(self):
        super().__init__(MemoryStorage())


class RedisRateLimiter(RateLimiter):
    """Counters in Redis, shared by all instances."""

    fail_open = True

    def __init__(self, redis_url: str):
        super().__init__(storage_from_string(f"async+{redis_url}"))


def create_rate_limiter(settings: Optional[Settings] = None) -> RateLimiter:
    """Use Redis when configured, otherwise fall back to process memory."""
    settings = settings or get_settings()

    if settings.redis_url:
        logger.info("Using Redis rate limit storage")
        return RedisRateLimiter(settings.redis_url)

    logger.warning("REDIS_URL not set, using in-memory rate limiting (single instance only)")
    return InMemoryRateLimiter()


def get_client_identifier(request: Request) -> str:
    """Best-effort client IP, preferring headers set by the edge proxy."""
    headers = request.headers

    cf_ip = headers.get("cf-connecting-ip")
    if cf_ip:
        return cf_ip.strip()

    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host

    return "unknown"


# =============================================================================
# FastAPI Dependencies
# =============================================================================

def get_rate_limiter(request: Request) -> RateLimiter:
    """The limiter created at startup and stored on the application state."""
    return request.app.state.rate_limiter


def rate_limit(policy: RateLimitPolicy) -> Callable:
    """
    Build a route dependency enforcing ``policy`` per client IP.

    Usage:
        @router.post("/x", dependencies=[Depends(rate_limit(RateLimitPresets.AUTH))])
    """

    async def enforce(
        request: Request,
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> None:
        if not get_settings().rate_limit_enabled:
            return

        client_ip = get_client_identifier(request)
        result = await limiter.check(f"{policy.prefix}:{client_ip}", policy.limit, policy.window)

        if not result.allowed:
            security(
                logger,
                "rate_limit_exceeded",
                policy=policy.prefix,
                client_ip=client_ip,
                limit=policy.limit,
            )
            raise RateLimitExceededError(result.retry_after, result.reset_at_iso)

    return enforce
