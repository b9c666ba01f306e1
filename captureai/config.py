"""
Configuration Management
========================

Centralized configuration using Pydantic Settings with environment variable support.
"""

from functools import lru_cache
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # API Service Configuration
    # -------------------------------------------------------------------------
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_debug: bool = Field(default=False, description="Debug mode")
    api_title: str = Field(default="CaptureAI Backend", description="API title")
    api_version: str = Field(default="1.0.0", description="API version")
    environment: str = Field(
        default="production",
        description="Deployment environment (production or development)",
    )
    max_body_size: int = Field(
        default=1024 * 1024,  # 1MB
        description="Maximum JSON request body size in bytes",
    )

    # -------------------------------------------------------------------------
    # Database Configuration
    # -------------------------------------------------------------------------
    database_url: str = Field(
        default="sqlite:///./captureai.db",
        description="Database connection URL",
    )

    # -------------------------------------------------------------------------
    # Redis Configuration
    # -------------------------------------------------------------------------
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis connection URL for distributed rate limiting",
    )

    # -------------------------------------------------------------------------
    # Rate Limiting & Quotas
    # -------------------------------------------------------------------------
    rate_limit_enabled: bool = Field(
        default=True,
        description="Enable IP rate limiting on key and checkout endpoints",
    )
    free_tier_daily_limit: int = Field(
        default=10,
        description="AI requests per UTC day for free tier users",
    )
    pro_tier_rate_limit_per_minute: int = Field(
        default=60,
        description="AI requests per rolling minute for pro tier users",
    )

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log format (json or console)")

    # -------------------------------------------------------------------------
    # CORS
    # -------------------------------------------------------------------------
    cors_origins: List[str] = Field(
        default=["https://captureai.dev", "https://thesuperiorflash.github.io"],
        description="Explicitly allowed CORS origins",
    )
    cors_dev_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080", "http://127.0.0.1:3000"],
        description="Extra origins allowed when environment is development",
    )
    chrome_extension_ids: List[str] = Field(
        default=[],
        description="Chrome extension ids allowed to call the API (empty allows any extension)",
    )

    # -------------------------------------------------------------------------
    # AI Gateway Configuration
    # -------------------------------------------------------------------------
    ai_gateway_base_url: str = Field(
        default="https://gateway.ai.cloudflare.com/v1",
        description="Base URL of the AI gateway",
    )
    ai_gateway_account_id: str = Field(
        default="YOUR_ACCOUNT_ID",
        description="Cloudflare account id owning the gateway",
    )
    ai_gateway_name: str = Field(
        default="captureai-gateway",
        description="AI gateway name",
    )
    ai_gateway_token: Optional[str] = Field(
        default=None,
        description="Token for an authenticated AI gateway",
    )
    ai_timeout: float = Field(
        default=60.0,
        description="Timeout for AI completion requests (seconds)",
    )

    # -------------------------------------------------------------------------
    # Email Configuration
    # -------------------------------------------------------------------------
    resend_api_key: Optional[str] = Field(
        default=None,
        description="Resend API key for license key emails",
    )
    resend_api_url: str = Field(
        default="https://api.resend.com/emails",
        description="Resend email endpoint",
    )
    from_email: str = Field(
        default="CaptureAI <no-reply@mail.captureai.dev>",
        description="Sender address for license key emails",
    )
    email_timeout: float = Field(
        default=5.0,
        description="Timeout for the email API (seconds)",
    )

    # -------------------------------------------------------------------------
    # Stripe Configuration
    # -------------------------------------------------------------------------
    stripe_secret_key: Optional[str] = Field(
        default=None,
        description="Stripe secret key for payments",
    )
    stripe_webhook_secret: Optional[str] = Field(
        default=None,
        description="Stripe webhook signing secret",
    )
    stripe_price_pro: Optional[str] = Field(
        default=None,
        description="Stripe Price ID for the Pro subscription",
    )
    webhook_tolerance_seconds: int = Field(
        default=120,
        description="Maximum age of a webhook signature timestamp",
    )
    webhook_future_skew_seconds: int = Field(
        default=30,
        description="Maximum clock skew accepted for future webhook timestamps",
    )
    extension_url: str = Field(
        default="https://thesuperiorflash.github.io/CaptureAI",
        description="Site hosting the payment success and activation pages",
    )
    pro_price_usd: float = Field(default=9.99, description="Displayed Pro monthly price")

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
