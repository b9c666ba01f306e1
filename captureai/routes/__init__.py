"""API route modules."""

from captureai.routes.health import router as health_router
from captureai.routes.auth import router as auth_router
from captureai.routes.ai import router as ai_router
from captureai.routes.subscription import router as subscription_router

__all__ = [
    "health_router",
    "auth_router",
    "ai_router",
    "subscription_router",
]
