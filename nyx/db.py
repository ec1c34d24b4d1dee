from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from .settings import get_settings


def get_engine_url() -> str:
    settings = get_settings()
    url = settings.database_url
    if url.startswith("sqlite:///") and not url.startswith("sqlite+aiosqlite:///"):
        # Use aiosqlite for async support
        url = url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return url


def _engine_options(url: str) -> dict:
    # sqlite connections are cheap; don't keep them bound to one event loop
    if url.startswith("sqlite"):
        return {"poolclass": NullPool}
    return {}


engine = create_async_engine(get_engine_url(), echo=False, future=True, **_engine_options(get_engine_url()))

AsyncSessionLocal = sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    async with AsyncSessionLocal() as session:
        yield session


async def session_dependency() -> AsyncIterator[AsyncSession]:
    """Request-scoped session for FastAPI routes."""
    async with get_session() as session:
        yield session


async def init_db() -> None:
    # Create tables
    from . import models  # noqa: F401  registers the tables on the metadata

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
