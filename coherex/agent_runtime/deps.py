"""FastAPI dependency injection for DB sessions and lifespan singletons.

Usage in route handlers::

    @router.post("/things")
    async def create_thing(db: DbSession, manager: SessionMgr) -> ApiResponse[Thing]:
        ...

Dependencies raise HTTP 503 if the backing service was not configured
(COHEREX_DATABASE_URL unset).
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from coherex.agent_runtime.execution.coordinator import ExecutionCoordinator
from coherex.agent_runtime.managers.sessions import SessionManager
from coherex.agent_runtime.settings import CoherexSettings, get_settings

_DB_UNAVAILABLE = "Database not configured (COHEREX_DATABASE_URL is unset)."


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """Yield an async SQLAlchemy session, closing it after the request.

    Managers commit their own writes.  If the handler raises, the session is
    simply closed and the implicit transaction is rolled back.
    """
    session_factory = request.app.state.db_session_factory
    if session_factory is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=_DB_UNAVAILABLE)
    session: AsyncSession = session_factory()
    try:
        yield session
    finally:
        await session.close()


def get_session_manager(request: Request) -> SessionManager:
    manager: SessionManager | None = request.app.state.session_manager
    if manager is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=_DB_UNAVAILABLE)
    return manager


def get_coordinator(request: Request) -> ExecutionCoordinator:
    coordinator: ExecutionCoordinator | None = request.app.state.coordinator
    if coordinator is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=_DB_UNAVAILABLE)
    return coordinator


# -- Annotated type aliases for concise route signatures ---------------------

DbSession = Annotated[AsyncSession, Depends(get_db)]
"""Annotated dependency: async SQLAlchemy session (auto-closed after request)."""

SessionMgr = Annotated[SessionManager, Depends(get_session_manager)]
"""Annotated dependency: the process-wide session manager."""

Coordinator = Annotated[ExecutionCoordinator, Depends(get_coordinator)]
"""Annotated dependency: the process-wide execution coordinator."""

AppSettings = Annotated[CoherexSettings, Depends(get_settings)]
"""Annotated dependency: the cached service settings."""
