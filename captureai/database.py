"""
Database Configuration
======================

SQLAlchemy database setup with async support.
Supports both SQLite (dev) and PostgreSQL (production).
"""

import structlog

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from captureai.config import get_settings

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


# Engine and session factory (initialized lazily)
_engine = None
_async_session_factory = None


def _mask_url(url: str) -> str:
    """Mask password in URL for safe logging."""
    if not url:
        return "<empty>"
    if "://" in url and "@" in url:
        pre, rest = url.split("://", 1)
        credentials, after_at = rest.rsplit("@", 1)
        if ":" in credentials:
            user = credentials.split(":", 1)[0]
            return f"{pre}://{user}:****@{after_at}"
    return url


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite only enforces ON DELETE CASCADE when asked to, per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_database_url() -> str:
    """
    Get the database URL, converting to async driver if needed.

    Handles:
    - sqlite:///         -> sqlite+aiosqlite:///
    - postgresql://      -> postgresql+asyncpg://
    - postgres://        -> postgresql+asyncpg://
    """
    url = get_settings().database_url.strip()

    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]

    if url.startswith("sqlite:///"):
        url = url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    elif url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif not url.startswith(("sqlite+aiosqlite://", "postgresql+asyncpg://")):
        raise ValueError(f"Invalid DATABASE_URL: {_mask_url(url)}")

    return url


def get_engine():
    """Get or create the database engine."""
    global _engine

    if _engine is None:
        url = get_database_url()
        echo = get_settings().api_debug

        if "sqlite" in url:
            _engine = create_async_engine(
                url,
                echo=echo,
                connect_args={"check_same_thread": False, "timeout": 30},
            )
            event.listen(_engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        else:
            _engine = create_async_engine(
                url,
                echo=echo,
                pool_size=5,
                max_overflow=10,
                pool_pre_ping=True,
                pool_recycle=300,
            )
        logger.info("Created database engine", url=_mask_url(url))

    return _engine


def get_session_factory():
    """Get or create the async session factory."""
    global _async_session_factory

    if _async_session_factory is None:
        _async_session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )

    return _async_session_factory


async def get_db() -> AsyncSession:
    """
    FastAPI dependency for database sessions.

    Commits when the request handler returns, rolls back if it raises.
    """
    session_factory = get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db():
    """Initialize database tables."""
    engine = get_engine()

    async with engine.begin() as conn:
        from captureai.models import db_models  # noqa
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database tables initialized")


async def close_db():
    """Close database connections."""
    global _engine, _async_session_factory

    if _engine:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
        logger.info("Database connections closed")
