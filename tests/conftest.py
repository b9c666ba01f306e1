"""
Shared fixtures: an in-memory database, mocked email and AI gateway, and an
HTTP client bound to the application with those dependencies overridden.
"""

import os

# Settings are cached on first use, so the environment must be in place
# before anything from captureai is imported.
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["RATE_LIMIT_ENABLED"] = "true"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_123"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_PRICE_PRO"] = "price_pro_test"
os.environ["RESEND_API_KEY"] = "re_test_123"
os.environ["LOG_FORMAT"] = "console"
os.environ.pop("REDIS_URL", None)

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from captureai.database import Base, get_db
from captureai.main import app
from captureai.models import db_models  # noqa: F401
from captureai.models.db_models import User, generate_license_key
from captureai.rate_limit import InMemoryRateLimiter, get_rate_limiter
from captureai.services.email_service import EmailResult, get_email_service
from captureai.services.gateway_client import GatewayResponse, get_gateway_client


def gateway_response(content: str = "42", cached: bool = False) -> GatewayResponse:
    return GatewayResponse(
        data={
            "choices": [{"message": {"role": "assistant", "content": f" {content} "}}],
            "usage": {
                "prompt_tokens": 800,
                "completion_tokens": 500,
                "total_tokens": 1300,
                "prompt_tokens_details": {"cached_tokens": 200},
                "completion_tokens_details": {"reasoning_tokens": 300},
            },
        },
        cached=cached,
        response_time=120,
    )


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def create_user(session_factory):
    """Insert a committed user and return it."""

    async def _create(**fields) -> User:
        fields.setdefault("license_key", generate_license_key())
        fields.setdefault("email", "student@example.com")
        fields.setdefault("tier", "free")
        fields.setdefault("subscription_status", "inactive")
        async with session_factory() as session:
            user = User(**fields)
            session.add(user)
            await session.commit()
            return user

    return _create


@pytest.fixture
def email_service():
    service = MagicMock()
    service.send_license_key = AsyncMock(return_value=EmailResult(sent=True, message_id="msg_1"))
    return service


@pytest.fixture
def gateway():
    client = MagicMock()
    client.complete = AsyncMock(return_value=gateway_response())
    return client


@pytest.fixture
def rate_limiter():
    return InMemoryRateLimiter()


@pytest_asyncio.fixture
async def client(session_factory, email_service, gateway, rate_limiter):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_email_service] = lambda: email_service
    app.dependency_overrides[get_gateway_client] = lambda: gateway
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
