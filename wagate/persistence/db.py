from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from wagate.core.config import get_settings
from wagate.domain.models import Base


def build_engine(database_url: str) -> AsyncEngine:
    engine_kwargs: dict[str, Any] = {"pool_pre_ping": True}
    # Bounded asyncpg pools; sqlite uses its own single-file pool.
    if not database_url.startswith("sqlite"):
        settings = get_settings()
        engine_kwargs["pool_size"] = max(1, int(settings.db_pool_size))
        engine_kwargs["max_overflow"] = max(0, int(settings.db_max_overflow))
        engine_kwargs["pool_timeout"] = 30
        engine_kwargs["pool_recycle"] = 1800
    return create_async_engine(database_url, **engine_kwargs)


engine = build_engine(get_settings().database_url)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def get_session() -> AsyncSession:
    async with SessionLocal() as session:
        yield session


async def init_models(target: AsyncEngine | None = None) -> None:
    # Create missing tables directly; production schemas go through alembic.
    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
