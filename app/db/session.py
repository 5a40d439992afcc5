"""
Database Session Management - Async SQLAlchemy engines per database role.

Submissions, schema edits and session writes go to the primary ("write");
dashboard listings and the health check may use the replica ("read"), which
falls back to the primary when no replica URL is configured.
"""

from collections.abc import AsyncGenerator
from typing import Literal

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.config import settings
from app.observability.tracing import instrument_sqlalchemy

Role = Literal["write", "read"]

_engines: dict[Role, AsyncEngine] = {}
_factories: dict[Role, async_sessionmaker[AsyncSession]] = {}


def _database_url(role: Role) -> str:
    return settings.database_url if role == "write" else settings.read_database_url


def get_engine(role: Role) -> AsyncEngine:
    """Engine for ``role``, created on first use."""
    if role not in _engines:
        engine = create_async_engine(
            _database_url(role),
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=settings.database_pool_timeout,
            pool_recycle=settings.database_pool_recycle,
            pool_pre_ping=True,
            echo=settings.log_level == "DEBUG",
        )
        instrument_sqlalchemy(engine)
        _engines[role] = engine
    return _engines[role]


def get_session_factory(role: Role) -> async_sessionmaker[AsyncSession]:
    if role not in _factories:
        # Rows stay readable after commit; responses are built from them
        _factories[role] = async_sessionmaker(
            get_engine(role), class_=AsyncSession, expire_on_commit=False
        )
    return _factories[role]


async def _session(role: Role) -> AsyncGenerator[AsyncSession, None]:
    async with get_session_factory(role)() as session:
        yield session


async def get_write_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: session on the primary."""
    async for session in _session("write"):
        yield session


async def get_read_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: session on the replica (or primary)."""
    async for session in _session("read"):
        yield session


async def close_engines() -> None:
    """Dispose every engine; called on application shutdown."""
    for role, engine in list(_engines.items()):
        await engine.dispose()
        del _engines[role]
        _factories.pop(role, None)
