"""
Health Check Endpoints
======================

Liveness and version endpoints for monitoring.
"""

from datetime import datetime, timezone
from fastapi import APIRouter

from captureai.config import get_settings


router = APIRouter(tags=["Health"])


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@router.get(
    "/",
    summary="Root",
    description="Service banner with version.",
)
async def root():
    """Root endpoint."""
    settings = get_settings()
    return {
        "status": "CaptureAI License Key Backend is running",
        "version": settings.api_version,
        "timestamp": _now(),
    }


@router.get(
    "/health",
    summary="Health Check",
    description="Liveness probe for load balancers and uptime checks.",
)
async def health_check():
    settings = get_settings()
    return {
        "status": "ok",
        "timestamp": _now(),
        "service": settings.api_title,
        "version": settings.api_version,
    }
