"""Database configuration and async session management."""

from typing import AsyncGenerator, Optional
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from .config import settings


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine, using a StaticPool for SQLite so in-memory stores survive."""
    is_sqlite = "sqlite" in database_url
    kwargs = {}
    if is_sqlite:
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs["pool_pre_ping"] = True
    return create_async_engine(database_url, echo=echo, **kwargs)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the session factory handed to the notification and subscriber stores."""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Application engine; stores receive the session factory explicitly
engine = build_engine(settings.database_url, echo=settings.debug)
async_session_factory = build_session_factory(engine)

# Create declarative base for models
Base = declarative_base()


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency function that yields database sessions.

    Yields:
        AsyncSession: Database session
    """
    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


# Alias for FastAPI dependency injection
get_db = get_async_session


async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    """Initialize the database by creating all tables."""
    from .. import models  # noqa: F401  registers the tables on Base

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
