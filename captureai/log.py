"""
Structured Logging
==================

structlog setup plus helpers for audit and security events.
"""

import logging
import re
import sys
from typing import Any, Dict

import structlog

from captureai.config import Settings

SENSITIVE_KEYS = (
    "password",
    "token",
    "apikey",
    "secret",
    "licensekey",
    "stripekey",
    "creditcard",
)


def configure_logging(settings: Settings) -> None:
    """Configure structlog on top of the standard library logger."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
    )

    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.log_format == "console"
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def audit(logger, event: str, **fields: Any) -> None:
    """Business audit trail: key creation, logins, subscription changes."""
    logger.info(event, category="audit", **fields)


def security(logger, event: str, **fields: Any) -> None:
    """Security-relevant events: failed auth, bad webhook signatures, replays."""
    logger.warning(event, category="security", **fields)


def mask_license_key(key: str) -> str:
    """Keep only the last segment of a license key."""
    if not key:
        return key
    return "****-****-****-****-" + key[-4:]


def _normalize_key(key: str) -> str:
    return re.sub(r"[_\-]", "", key).lower()


def sanitize_log_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``data`` that is safe to log."""
    sanitized: Dict[str, Any] = {}
    for key, value in data.items():
        if key == "license_key" and isinstance(value, str):
            sanitized[key] = mask_license_key(value)
        elif any(s in _normalize_key(key) for s in SENSITIVE_KEYS):
            sanitized[key] = "[REDACTED]"
        elif isinstance(value, dict):
            sanitized[key] = sanitize_log_data(value)
        else:
            sanitized[key] = value
    return sanitized
