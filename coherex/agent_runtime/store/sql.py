"""PostgreSQL session store.

Each method runs in its own short transaction obtained from the session
factory, so the store can be shared by request handlers and the background
idle sweeper alike.  Status changes are compare-and-swap updates keyed on the
expected prior status; the partial unique index on ``agent_sessions`` keeps
at most one non-stopped session per agent.
"""

from __future__ import annotations

import uuid
from collections.abc import Collection
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from coherex.agent_runtime.db.tables import AgentSession, SessionActivityRow, SessionTurn
from coherex.agent_runtime.errors import InvalidStateError, SessionConflictError, SessionNotFoundError
from coherex.agent_runtime.models.enums import (
    LIVE_SESSION_STATUSES,
    ActivityType,
    SessionStatus,
    TurnRole,
)
from coherex.agent_runtime.models.session import ConversationTurn, SessionInfo

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

OPEN_SESSION_INDEX = "uq_agent_sessions_open_agent_id"


def _now() -> datetime:
    return datetime.now(UTC)


class SqlSessionStore:
    """``SessionStore`` backed by the ``agent_sessions`` family of tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = session_factory

    # -- Sessions --------------------------------------------------------------

    async def create(self, agent_id: str, sandbox_ref: str) -> SessionInfo:
        now = _now()
        row = AgentSession(
            session_id=uuid.uuid4().hex,
            agent_id=agent_id,
            status=SessionStatus.ACTIVE,
            sandbox_ref=sandbox_ref,
            execution_count=0,
            created_at=now,
            last_activity_at=now,
            hibernated_at=None,
            stopped_at=None,
        )
        async with self._factory() as db:
            db.add(row)
            try:
                await db.flush()
                db.add(SessionActivityRow(session_id=row.session_id, activity_type=ActivityType.STARTED))
                await db.commit()
            except IntegrityError as exc:
                await db.rollback()
                if OPEN_SESSION_INDEX in str(exc.orig):
                    msg = f"Agent '{agent_id}' already has a live session"
                    raise SessionConflictError(msg) from exc
                raise
        return SessionInfo.model_validate(row)

    async def get(self, session_id: str) -> SessionInfo | None:
        async with self._factory() as db:
            row = await db.get(AgentSession, session_id)
            return SessionInfo.model_validate(row) if row is not None else None

    async def find_live(self, agent_id: str) -> SessionInfo | None:
        stmt = (
            select(AgentSession)
            .where(AgentSession.agent_id == agent_id, AgentSession.status != SessionStatus.STOPPED)
            .order_by(AgentSession.created_at.desc())
            .limit(1)
        )
        async with self._factory() as db:
            row = (await db.execute(stmt)).scalar_one_or_none()
            return SessionInfo.model_validate(row) if row is not None else None

    async def list_for_agent(self, agent_id: str) -> list[SessionInfo]:
        stmt = select(AgentSession).where(AgentSession.agent_id == agent_id).order_by(AgentSession.created_at.desc())
        async with self._factory() as db:
            rows = (await db.execute(stmt)).scalars().all()
            return [SessionInfo.model_validate(r) for r in rows]

    async def transition(
        self,
        session_id: str,
        *,
        expected: Collection[SessionStatus],
        status: SessionStatus,
        sandbox_ref: str | None = None,
    ) -> SessionInfo | None:
        now = _now()
        values: dict = {"status": status}
        if status in LIVE_SESSION_STATUSES:
            if sandbox_ref is not None:
                values["sandbox_ref"] = sandbox_ref
            if status == SessionStatus.ACTIVE:
                values["last_activity_at"] = now
        else:
            values["sandbox_ref"] = None
        if status == SessionStatus.HIBERNATED:
            values["hibernated_at"] = now
        elif status == SessionStatus.STOPPED:
            values["stopped_at"] = now

        stmt = (
            update(AgentSession)
            .where(AgentSession.session_id == session_id, AgentSession.status.in_([str(s) for s in expected]))
            .values(**values)
            .returning(AgentSession)
            .execution_options(synchronize_session=False)
        )
        async with self._factory() as db:
            row = (await db.execute(stmt)).scalar_one_or_none()
            await db.commit()
            if row is None:
                logger.debug("Session {} transition to {} rejected (expected {})", session_id, status, list(expected))
                return None
            return SessionInfo.model_validate(row)

    # -- Conversation log ------------------------------------------------------

    async def record_success(self, session_id: str, user_content: str, assistant_content: str) -> SessionInfo:
        async with self._factory() as db:
            row = await db.get(AgentSession, session_id, with_for_update=True)
            if row is None:
                raise SessionNotFoundError(session_id)
            if row.status not in LIVE_SESSION_STATUSES:
                msg = f"Session '{session_id}' is {row.status}; cannot record a turn"
                raise InvalidStateError(msg)

            last_seq = await db.scalar(
                select(func.coalesce(func.max(SessionTurn.seq), 0)).where(SessionTurn.session_id == session_id)
            )
            now = _now()
            db.add_all([
                SessionTurn(session_id=session_id, seq=last_seq + 1, role=TurnRole.USER, content=user_content),
                SessionTurn(
                    session_id=session_id, seq=last_seq + 2, role=TurnRole.ASSISTANT, content=assistant_content
                ),
                SessionActivityRow(
                    session_id=session_id,
                    activity_type=ActivityType.EXECUTION,
                    detail={"seq": last_seq + 2},
                ),
            ])
            row.execution_count += 1
            row.last_activity_at = now
            if row.status == SessionStatus.IDLE:
                row.status = SessionStatus.ACTIVE
            await db.commit()
            return SessionInfo.model_validate(row)

    async def list_turns(self, session_id: str, limit: int | None = None) -> list[ConversationTurn]:
        stmt = select(SessionTurn).where(SessionTurn.session_id == session_id).order_by(SessionTurn.seq.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._factory() as db:
            rows = (await db.execute(stmt)).scalars().all()
            return [ConversationTurn.model_validate(r) for r in reversed(rows)]

    # -- Sweeper support -------------------------------------------------------

    async def find_idle_candidates(self, statuses: Collection[SessionStatus], before: datetime) -> list[SessionInfo]:
        stmt = (
            select(AgentSession)
            .where(
                AgentSession.status.in_([str(s) for s in statuses]),
                AgentSession.last_activity_at < before,
            )
            .order_by(AgentSession.last_activity_at.asc())
        )
        async with self._factory() as db:
            rows = (await db.execute(stmt)).scalars().all()
            return [SessionInfo.model_validate(r) for r in rows]

    async def log_activity(self, session_id: str, activity_type: ActivityType, detail: dict | None = None) -> None:
        async with self._factory() as db:
            db.add(SessionActivityRow(session_id=session_id, activity_type=activity_type, detail=detail))
            await db.commit()
