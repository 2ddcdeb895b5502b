"""Database engine configuration for the catalog stores."""

import os

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

# Database URLs - each layer owns its own SQLite file
DIRECT_DATABASE_URL = os.environ.get("CATALOG_BENCH_DIRECT_URL", "sqlite:///./.products.db")
MANAGED_DATABASE_URL = os.environ.get(
    "CATALOG_BENCH_MANAGED_URL", "sqlite+aiosqlite:///./.products_managed.db"
)
SQL_ECHO = os.environ.get("CATALOG_BENCH_ECHO", "").lower() in ("1", "true", "yes")


def _enable_foreign_keys(dbapi_connection, connection_record):
    # SQLite ships with foreign keys off; cascades need them on for every connection.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_direct_engine(url: str = DIRECT_DATABASE_URL, echo: bool = SQL_ECHO) -> Engine:
    """Create the synchronous engine used by the direct layer."""
    engine = create_engine(
        url,
        connect_args={"check_same_thread": False},
        echo=echo,
        pool_pre_ping=True,
    )
    event.listen(engine, "connect", _enable_foreign_keys)
    return engine


def create_managed_engine(url: str = MANAGED_DATABASE_URL, echo: bool = SQL_ECHO) -> AsyncEngine:
    """Create the asynchronous (aiosqlite) engine used by the managed layer."""
    engine = create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
    )
    event.listen(engine.sync_engine, "connect", _enable_foreign_keys)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session maker bound to a managed-layer engine."""
    return async_sessionmaker(
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )
