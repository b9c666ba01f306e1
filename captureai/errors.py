"""
Application Errors
==================

Exceptions raised by services and dependencies. Each one knows its HTTP
status and renders as ``{"error": ..., "field": ..., **extra}``.
"""

from typing import Any, Dict, Optional
from fastapi import status


class CaptureAIError(Exception):
    """Base class for errors that map to a JSON error response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.field = field
        self.extra = extra or {}
        self.headers = headers

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        if self.field:
            body["field"] = self.field
        body.update(self.extra)
        return body


class ValidationError(CaptureAIError):
    """Client supplied bad input."""
    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationError(CaptureAIError):
    """Missing, unknown or lapsed license key. The message stays generic."""
    status_code = status.HTTP_401_UNAUTHORIZED


class NotFoundError(CaptureAIError):
    status_code = status.HTTP_404_NOT_FOUND


class QuotaExceededError(CaptureAIError):
    """Per-tier AI usage quota reached."""
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, message: str, limit: int, used: int, tier: str, limit_type: str):
        super().__init__(
            message,
            extra={"limit": limit, "used": used, "tier": tier, "limitType": limit_type},
        )
        self.limit = limit
        self.used = used
        self.tier = tier
        self.limit_type = limit_type


class RateLimitExceededError(CaptureAIError):
    """IP rate limit reached on an unauthenticated endpoint."""
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, retry_after: int, reset_at: str):
        super().__init__(
            "Rate limit exceeded",
            extra={
                "message": f"Too many requests. Please try again in {retry_after} seconds.",
                "retryAfter": retry_after,
                "resetAt": reset_at,
            },
            headers={"Retry-After": str(retry_after)},
        )
        self.retry_after = retry_after
        self.reset_at = reset_at


class ServiceUnavailableError(CaptureAIError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class UpstreamError(CaptureAIError):
    """The AI gateway or the billing provider answered with an error."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class WebhookVerificationError(CaptureAIError):
    """Bad signature, stale timestamp or replayed event id."""
    status_code = status.HTTP_400_BAD_REQUEST
