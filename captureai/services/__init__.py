"""Service layer for business logic and backend integrations."""

from captureai.services.ai_service import AIService
from captureai.services.email_service import EmailService, EmailResult
from captureai.services.gateway_client import AIGatewayClient, GatewayResponse
from captureai.services.license_service import LicenseService
from captureai.services.subscription_service import SubscriptionService

__all__ = [
    "AIService",
    "AIGatewayClient",
    "EmailService",
    "EmailResult",
    "GatewayResponse",
    "LicenseService",
    "SubscriptionService",
]
