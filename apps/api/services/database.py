"""Async engine/session plumbing shared by the repositories."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, AsyncContextManager

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

import packages.db.models  # noqa: F401  # registers tables on SQLModel.metadata

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


def to_async_dsn(dsn: str) -> str:
    """Ensure the SQLAlchemy DSN uses an async driver."""

    if dsn.startswith("postgresql+asyncpg://") or "+aiosqlite" in dsn:
        return dsn
    for prefix in ("postgresql://", "postgres://"):
        if dsn.startswith(prefix):
            return "postgresql+asyncpg://" + dsn[len(prefix) :]
    if dsn.startswith("sqlite://"):
        return "sqlite+aiosqlite://" + dsn[len("sqlite://") :]
    return dsn


def create_engine(dsn: str, *, echo: bool = False) -> AsyncEngine:
    engine = create_async_engine(to_async_dsn(dsn), echo=echo, future=True)
    if engine.dialect.name == "sqlite":
        # SQLite only enforces foreign keys when asked to, per connection.
        @event.listens_for(engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _record) -> None:  # pragma: no cover - driver hook
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def ensure_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as connection:
        await connection.run_sync(SQLModel.metadata.create_all)


async def ping(engine: AsyncEngine) -> bool:
    async with engine.connect() as connection:
        await connection.execute(text("SELECT 1"))
    return True


def ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")


def optional_datetime(value: datetime | None) -> datetime | None:
    return None if value is None else ensure_datetime(value)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
