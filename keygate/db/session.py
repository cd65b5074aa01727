"""SQLAlchemy async engine and session utilities."""
from __future__ import annotations

from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from keygate.core.config import StoreSettings
from keygate.db.models import Base


@lru_cache
def _get_async_engine(database_url: str, echo: bool) -> AsyncEngine:
    return create_async_engine(database_url, echo=echo, pool_pre_ping=True)


def get_async_engine(store_settings: StoreSettings) -> AsyncEngine:
    return _get_async_engine(store_settings.database_url, store_settings.echo)


def get_session_maker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_schema(engine: AsyncEngine) -> None:
    """Create missing tables (idempotent)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
