from __future__ import annotations
import logging
from typing import Any, AsyncGenerator, Dict
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .core.config import get_settings
from .models import Base

logger = logging.getLogger(__name__)

def engine_options(database_url: str) -> Dict[str, Any]:
    """Pool settings for the configured backend.

    Postgres connections are checked out on every scan, so stale ones left by a
    database restart are detected before use. SQLite (tests, local runs) keeps
    SQLAlchemy's default pool.
    """
    if make_url(database_url).get_backend_name() == "sqlite":
        return {}
    return {"pool_pre_ping": True, "pool_recycle": 1800}

settings = get_settings()
engine = create_async_engine(settings.database_url, **engine_options(settings.database_url))
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database ready (%s)", engine.url.get_backend_name())

async def dispose_db() -> None:
    await engine.dispose()

async def get_session() -> AsyncGenerator[AsyncSession, None]:
    # a request that fails mid-transaction must not leave row locks behind
    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
