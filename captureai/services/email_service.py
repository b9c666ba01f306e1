"""
Email Service
=============

Sends license key emails through the Resend HTTP API.

Email is always best-effort: ``send_license_key`` never raises, it returns an
``EmailResult`` the caller logs and surfaces as ``emailFailed``.
"""

from dataclasses import dataclass
from typing import Optional

import httpx
import structlog

from captureai.config import get_settings

logger = structlog.get_logger(__name__)


@dataclass
class EmailResult:
    sent: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class EmailService:
    """Async client for the Resend email API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        from_email: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.resend_api_key
        self.api_url = api_url or settings.resend_api_url
        self.from_email = from_email or settings.from_email
        self.timeout = timeout or settings.email_timeout

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def send_license_key(self, email: str, license_key: str, tier: str) -> EmailResult:
        """Email a license key to its owner."""
        if not self.is_configured():
            logger.warning("Email not configured, skipping license email", tier=tier)
            return EmailResult(sent=False, error="Email service not configured")

        tier_name = "Pro" if tier == "pro" else "Free"
        payload = {
            "from": self.from_email,
            "to": [email],
            "subject": f"Your CaptureAI {tier_name} License Key",
            "text": _render_text(license_key, tier_name),
            "html": _render_html(license_key, tier_name),
            "tags": [{"name": "category", "value": f"license_key_{tier}"}],
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.api_url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.HTTPError as e:
            logger.warning("License email request failed", error=str(e), tier=tier)
            return EmailResult(sent=False, error=str(e))

        if response.status_code >= 400:
            logger.warning(
                "License email rejected",
                status_code=response.status_code,
                body=response.text[:200],
                tier=tier,
            )
            return EmailResult(sent=False, error=f"Email API error ({response.status_code})")

        message_id = None
        try:
            message_id = response.json().get("id")
        except ValueError:
            pass

        logger.info("License email sent", tier=tier, message_id=message_id)
        return EmailResult(sent=True, message_id=message_id)


def _render_text(license_key: str, tier_name: str) -> str:
    return (
        f"Welcome to CaptureAI {tier_name}!\n\n"
        f"Your license key is:\n\n    {license_key}\n\n"
        "To activate it, open the CaptureAI extension, paste the key into the "
        "activation field and click Activate.\n\n"
        "Keep this key private. Anyone with it can use your account.\n"
    )


def _render_html(license_key: str, tier_name: str) -> str:
    return f"""<!DOCTYPE html>
<html>
  <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; color: #1f2937;">
    <h2>Welcome to CaptureAI {tier_name}!</h2>
    <p>Your license key is:</p>
    <p style="font-family: monospace; font-size: 20px; letter-spacing: 2px;
              background: #f3f4f6; padding: 12px 16px; border-radius: 6px;">{license_key}</p>
    <p>Open the CaptureAI extension, paste the key into the activation field and click
       <strong>Activate</strong>.</p>
    <p style="color: #6b7280; font-size: 13px;">Keep this key private. Anyone with it can use your account.</p>
  </body>
</html>"""


def get_email_service() -> EmailService:
    return EmailService()
