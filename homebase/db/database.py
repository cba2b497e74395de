"""
HOMEBASE - Database Configuration
==================================
Async engine, session scopes and startup for the household store.

PostgreSQL (asyncpg) in production; SQLite (aiosqlite) for development and
tests. Every DateTime column holds naive UTC.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict

import structlog
from sqlalchemy import MetaData, func, select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool, StaticPool

from homebase.config import settings

logger = structlog.get_logger(__name__)

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


def normalize_url(url: str) -> str:
    """Pick the async driver for plain sqlite URLs."""
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def engine_options(url: str) -> Dict[str, Any]:
    """
    Engine keyword arguments for `url`.

    In-memory SQLite shares one connection so every session sees the same
    tables; file SQLite opens a connection per checkout.
    """
    options: Dict[str, Any] = {"echo": settings.debug}
    if url.startswith("postgresql"):
        options.update(
            pool_pre_ping=True,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_recycle=settings.db_pool_recycle_seconds,
        )
    elif url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
        options["poolclass"] = StaticPool if ":memory:" in url else NullPool
    return options


DATABASE_URL = normalize_url(settings.database_url)

engine = create_async_engine(DATABASE_URL, **engine_options(DATABASE_URL))

SessionFactory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


@asynccontextmanager
async def async_session() -> AsyncGenerator[AsyncSession, None]:
    """Unit of work: commit on success, roll back on error."""
    async with SessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding one unit of work per request."""
    async with async_session() as session:
        yield session


async def init_db() -> None:
    """Create missing tables and seed the role/permission catalogue."""
    from homebase.db import models  # noqa: F401  registers the tables
    from homebase.db.seed import seed_roles_and_permissions

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        await seed_roles_and_permissions(session)

    logger.info("database_initialized", backend=engine.dialect.name, tables=len(Base.metadata.tables))


async def close_db() -> None:
    await engine.dispose()


async def check_db_health() -> dict:
    """
    Connectivity, pool usage and whether the role catalogue is seeded.

    A missing catalogue means every membership lookup would fail, so it is
    reported alongside the connection state.
    """
    try:
        async with SessionFactory() as session:
            await session.execute(text("SELECT 1"))
            roles = Base.metadata.tables.get("roles")
            role_count = (await session.scalar(select(func.count()).select_from(roles))) if roles is not None else 0
    except Exception as e:
        logger.warning("database_health_failed", error=str(e))
        return {"connected": False, "error": str(e)}

    health = {
        "connected": True,
        "database_type": engine.dialect.name,
        "roles_seeded": role_count > 0,
    }
    if hasattr(engine.pool, "checkedout"):
        health["checked_out"] = engine.pool.checkedout()
    return health
