"""
Database Models
===============

SQLAlchemy ORM models for persistent storage.
"""

import secrets
import uuid
from datetime import datetime
from typing import Optional, List
from sqlalchemy import (
    String, Integer, Float, Boolean, DateTime, ForeignKey, Index, func, text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from captureai.database import Base


# Rows issued through the free-key endpoint; downgraded pro rows keep their
# subscription id and fall outside it.
FREE_KEY_ROW = text("tier = 'free' AND stripe_subscription_id IS NULL")


# Visually ambiguous characters (0, O, 1, I) are excluded
LICENSE_KEY_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
LICENSE_KEY_SEGMENTS = 5
LICENSE_KEY_SEGMENT_LENGTH = 4


def generate_license_key() -> str:
    """Generate a XXXX-XXXX-XXXX-XXXX-XXXX license key from a CSPRNG."""
    return "-".join(
        "".join(secrets.choice(LICENSE_KEY_ALPHABET) for _ in range(LICENSE_KEY_SEGMENT_LENGTH))
        for _ in range(LICENSE_KEY_SEGMENTS)
    )


def generate_user_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """
    A license key account.

    The license key is the only credential; it is sent as
    ``Authorization: LicenseKey <key>``.
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_user_id)
    license_key: Mapped[str] = mapped_column(String(24), unique=True, index=True, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(320), index=True, nullable=True)
    tier: Mapped[str] = mapped_column(String(20), default="free", nullable=False)
    subscription_status: Mapped[str] = mapped_column(String(20), default="inactive", nullable=False)

    # Stripe integration
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(100), index=True, nullable=True)
    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(String(100), index=True, nullable=True)

    # Timestamps
    last_validated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    # Relationships
    usage_records: Mapped[List["UsageRecord"]] = relationship(
        "UsageRecord", back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<User {self.id} ({self.tier}/{self.subscription_status})>"

    @property
    def has_access(self) -> bool:
        """Pro accounts lose access as soon as their subscription is not active."""
        return not (self.tier == "pro" and self.subscription_status != "active")


# One free key per email
Index(
    "uq_users_free_email",
    func.lower(User.email),
    unique=True,
    sqlite_where=FREE_KEY_ROW,
    postgresql_where=FREE_KEY_ROW,
)


class UsageRecord(Base):
    """
    One completed AI request. Append-only; only ever read in aggregate.
    """
    __tablename__ = "usage_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    prompt_type: Mapped[str] = mapped_column(String(20), default="answer", nullable=False)
    # Reasoning level label (none/low/medium), not the vendor model id
    model: Mapped[str] = mapped_column(String(20), nullable=False)

    tokens_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    input_tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    output_tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reasoning_tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cached_tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_cost: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    response_time: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cached: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    user: Mapped["User"] = relationship("User", back_populates="usage_records")

    __table_args__ = (
        Index("idx_usage_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<UsageRecord {self.id} ({self.model}, {self.tokens_used} tokens)>"


class WebhookEvent(Base):
    """
    Processed Stripe webhook events. The unique event_id rejects replays.
    """
    __tablename__ = "webhook_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String(100), unique=True, index=True, nullable=False)
    event_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    webhook_timestamp: Mapped[int] = mapped_column(Integer, nullable=False)
    processed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<WebhookEvent {self.event_id}>"
