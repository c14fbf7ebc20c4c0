"""Async SQLAlchemy engine and session factory.

Uses psycopg3, which serves both the async runtime and the synchronous
Alembic migrations from the same ``postgresql+psycopg://`` URL.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine


def create_engine(database_url: str, **kwargs: object) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    Request handlers, the session store and the idle sweeper each check out
    short-lived connections concurrently, so the pool is sized for bursts:

    - **pool_size=10** / **max_overflow=20**
    - **pool_pre_ping=True**: survive server-side disconnects (Supabase /
      pgbouncer idle timeouts, PG restarts).
    - **pool_recycle=1800**: recycle before common proxy idle limits.

    All defaults can be overridden via *kwargs*.
    """
    defaults = {
        "echo": False,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,
        "pool_recycle": 1800,
    }
    defaults.update(kwargs)  # type: ignore[arg-type]
    return create_async_engine(database_url, **defaults)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to *engine*.

    ``expire_on_commit=False`` keeps ORM instances readable after commit
    without implicit IO, which async code forbids.
    """
    return async_sessionmaker(engine, expire_on_commit=False)
