"""Database engine and sessions

Only the engine's own state lives here: pending checkout markers and the
ledger of applied payments. Bills stay in the billing backend.
"""

import re
import ssl
from typing import Any, AsyncGenerator, Dict, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from agaspay.config import settings

_SSLMODE = re.compile(r"[?&]sslmode=([^&]+)", re.I)


def async_database_url(url: str) -> Tuple[str, Dict[str, Any]]:
    """
    Rewrite a plain ``postgresql://`` URL for asyncpg.

    asyncpg does not understand ``sslmode``; a requiring sslmode is turned
    into an SSL context in connect_args and dropped from the URL.
    """
    connect_args: Dict[str, Any] = {}
    if url.startswith("postgresql://"):
        url = "postgresql+asyncpg://" + url[len("postgresql://"):]

    match = _SSLMODE.search(url)
    if match:
        if match.group(1).lower() in ("require", "required", "verify-full"):
            context = ssl.create_default_context()
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
            connect_args["ssl"] = context
        url = _SSLMODE.sub("", url)
        url = url.replace("?&", "?").rstrip("?")
    return url, connect_args


database_url, connect_args = async_database_url(settings.DATABASE_URL)

engine_options: Dict[str, Any] = {"connect_args": connect_args, "echo": settings.DEBUG}
if not database_url.startswith("sqlite"):
    engine_options.update(
        pool_pre_ping=True,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
    )

engine = create_async_engine(database_url, **engine_options)

AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; committed when the endpoint succeeds, rolled back otherwise."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create missing tables. Development only; deployments run Alembic."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
