"""Async engine, session factory and declarative base."""

from typing import Any, AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from auction_house.core.config import settings


def _engine_options(url: str) -> dict[str, Any]:
    """Pool and driver options; only PostgreSQL gets a pool and statement timeout."""
    if make_url(url).get_backend_name() != "postgresql":
        return {}
    return {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_pre_ping": True,
        "connect_args": {
            # Row locks held by a stuck bid must not outlive the request
            "command_timeout": settings.DB_STATEMENT_TIMEOUT_SECONDS,
            "server_settings": {
                "statement_timeout": str(settings.DB_STATEMENT_TIMEOUT_SECONDS * 1000),
                "timezone": "UTC",
            },
        },
    }


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    **_engine_options(settings.DATABASE_URL),
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session. Work not committed by a service is rolled back on close."""
    async with async_session_maker() as session:
        yield session
