"""
Database connection using SQLAlchemy + asyncpg.

Sessions, drafts and evaluations live in PostgreSQL. The engine is created
lazily so that importing the package (tests, tooling) never needs a
reachable database or a configured URL.

Unlike a request-scoped session, the council keeps running after the HTTP
request that started it has gone away (a dropped event stream must not
stop the round). The repository therefore asks the session factory for a
short-lived session per operation instead of borrowing the request's.
"""

from functools import lru_cache

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from council.config import get_settings


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


@lru_cache
def get_engine() -> AsyncEngine:
    """
    Connection pool to PostgreSQL.

    Reuses connections instead of opening a new one per query.
    """
    settings = get_settings()
    return create_async_engine(settings.database_url, echo=settings.sql_echo)


@lru_cache
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Factory that creates database sessions.

    expire_on_commit=False keeps objects usable after commit (needed for async)
    """
    return async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)
