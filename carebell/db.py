# carebell/db.py
from __future__ import annotations

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from carebell.models.base import Base


# === 1. Engine ===
# DSN example: postgresql+asyncpg://app:app@db:5432/app
def make_engine(url: str, echo: bool = False) -> AsyncEngine:
    return create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
    )


# === 2. Sessions ===
def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


# === 3. Dev schema bootstrap ===
async def init_db(engine: AsyncEngine) -> None:
    """
    Dev-only: creates the tables if they are missing.
    Production goes through alembic upgrade head.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
