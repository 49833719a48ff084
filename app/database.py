"""Async engine and sessions for the artifacts database."""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.config import Settings, get_settings


class Base(DeclarativeBase):
    """Declarative base shared by the models and Alembic."""


def engine_options(settings: Settings) -> dict[str, Any]:
    """Engine keyword arguments for the configured database URL.

    SQLite gets a single-file engine with no pool tuning. Server databases
    use the pool settings.
    """
    options: dict[str, Any] = {"echo": settings.debug}
    if settings.database_url.startswith("sqlite"):
        return options

    options.update(
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
        pool_pre_ping=settings.db_pool_pre_ping,
    )
    return options


settings = get_settings()

engine = create_async_engine(settings.database_url, **engine_options(settings))

async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def close_db() -> None:
    await engine.dispose()


# Models must be imported for Base.metadata to know about their tables
import app.models.artifact  # noqa: F401, E402
