"""
Database handle and declarative base for SQLAlchemy models.

There is no module-level engine. The application creates one `Database`
in its lifespan, calls `connect()` on startup and `dispose()` on shutdown,
and stores it on `app.state.database`. Request handlers receive sessions
through the `get_db` dependency.
"""

from typing import AsyncGenerator, Optional

from fastapi import Request
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from iqtest.core.config import settings

# The async URL is built by string-prefix replacement on the configured URL;
# a make_url() round-trip would strip underscores from some hostnames.
_SYNC_PREFIX_MAP = {
    "postgresql+psycopg2://": "postgresql+asyncpg://",
    "postgresql://": "postgresql+asyncpg://",
    "postgres://": "postgresql+asyncpg://",
    "sqlite://": "sqlite+aiosqlite://",
}
_ASYNC_PREFIXES = ("postgresql+asyncpg://", "sqlite+aiosqlite://")

# Execution option naming the BEGIN mode of a SQLite transaction
SQLITE_BEGIN_OPTION = "sqlite_begin"


def to_async_url(url: str) -> str:
    """Rewrite a sync database URL to its async driver."""
    if url.startswith(_ASYNC_PREFIXES):
        return url
    for sync_prefix, async_prefix in _SYNC_PREFIX_MAP.items():
        if url.startswith(sync_prefix):
            return async_prefix + url[len(sync_prefix) :]
    raise ValueError(
        f"No async driver mapping for DATABASE_URL prefix. "
        f"Supported prefixes: {list(_SYNC_PREFIX_MAP.keys())}"
    )


def _enable_sqlite_transactions(engine: AsyncEngine) -> None:
    """
    Let SQLAlchemy emit BEGIN itself on SQLite.

    The sqlite3 driver otherwise defers BEGIN until the first write, which
    breaks SAVEPOINT (begin_nested). A connection carrying the
    `sqlite_begin` execution option starts its transaction with that mode;
    "IMMEDIATE" takes the database write lock up front, which is how
    SQLite stands in for SELECT ... FOR UPDATE.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        mode = conn.get_execution_options().get(SQLITE_BEGIN_OPTION)
        conn.exec_driver_sql(f"BEGIN {mode}" if mode else "BEGIN")


class Base(DeclarativeBase):
    """SQLAlchemy 2.0 declarative base class."""

    pass


class Database:
    """Owns the async engine and session factory for one process."""

    def __init__(self, url: Optional[str] = None, **engine_kwargs):
        self.url = to_async_url(url or settings.DATABASE_URL)
        self._engine_kwargs = engine_kwargs
        self.engine: Optional[AsyncEngine] = None
        self.sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None

    def connect(self) -> None:
        if self.engine is not None:
            return
        kwargs = dict(self._engine_kwargs)
        kwargs.setdefault("echo", settings.DB_ECHO)
        if not self.url.startswith("sqlite"):
            kwargs.setdefault("pool_size", settings.DB_POOL_SIZE)
            kwargs.setdefault("max_overflow", settings.DB_POOL_MAX_OVERFLOW)
            kwargs.setdefault("pool_timeout", settings.DB_POOL_TIMEOUT)
            kwargs.setdefault("pool_recycle", settings.DB_POOL_RECYCLE)
            kwargs.setdefault("pool_pre_ping", True)
        self.engine = create_async_engine(self.url, **kwargs)
        if self.url.startswith("sqlite"):
            _enable_sqlite_transactions(self.engine)
        self.sessionmaker = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def dispose(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
        self.engine = None
        self.sessionmaker = None

    async def create_all(self) -> None:
        """Create every table known to the metadata (development and tests)."""
        if self.engine is None:
            raise RuntimeError("Database is not connected")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        if self.engine is None:
            raise RuntimeError("Database is not connected")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def ping(self) -> bool:
        if self.engine is None:
            return False
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    def session(self) -> AsyncSession:
        if self.sessionmaker is None:
            raise RuntimeError("Database is not connected")
        return self.sessionmaker()


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency yielding an AsyncSession from the application's Database.

    Rolls back on error so a failed request never leaves a half-written
    transaction behind.
    """
    database: Database = request.app.state.database
    async with database.session() as db:
        try:
            yield db
        except Exception:
            await db.rollback()
            raise
