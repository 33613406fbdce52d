"""Engine and session handling for persisted deployments."""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from kipubank.config import get_settings
from kipubank.ledger.models import Base

# Process-wide engine, created on first use from DATABASE_URL
_engine = None
_session_factory = None


def _async_url(url: str) -> str:
    """Force the aiosqlite driver onto plain sqlite URLs."""
    if url.startswith("sqlite:///"):
        return "sqlite+aiosqlite:///" + url[len("sqlite:///"):]
    return url


def _engine_options(url: str) -> dict:
    if url.endswith(":memory:"):
        # Every pooled connection would otherwise open its own empty database
        return {"poolclass": StaticPool}
    if url.startswith("sqlite+aiosqlite:///"):
        Path(url.split(":///", 1)[1]).parent.mkdir(parents=True, exist_ok=True)
    return {}


def get_engine() -> AsyncEngine:
    """Engine for DATABASE_URL (created once)."""
    global _engine
    if _engine is None:
        settings = get_settings()
        url = _async_url(settings.database_url)
        _engine = create_async_engine(
            url,
            echo=settings.debug and not settings.is_production,
            **_engine_options(url),
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the process-wide engine."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """One unit of work: commit when the block succeeds, roll back when it raises."""
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create the deployments, vaults and receipts tables if missing."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose the engine; the next get_engine() call creates a new one."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
