"""
Database engine and session management.

Postgres (asyncpg) in deployment, SQLite (aiosqlite) for local runs and tests.
Tables are created from the SQLModel metadata at startup.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from madadkaro_server.core.config import get_settings

settings = get_settings()
log = structlog.get_logger()


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {}
    return {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 20}


engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    **_engine_options(settings.database_url),
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db() -> None:
    """Create any missing tables."""
    import madadkaro_server.models  # noqa: F401  registers tables on the metadata

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    log.info("database.ready", tables=sorted(SQLModel.metadata.tables))


@asynccontextmanager
async def get_session_context():
    """Session for use outside the request lifecycle; commits on clean exit."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions."""
    async with get_session_context() as session:
        yield session
