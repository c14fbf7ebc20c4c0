"""Execution record operations -- the audit trail of agent invocations.

Every request to execute an agent writes exactly one row that moves
``pending -> running -> completed | failed``.  Rows are never deleted by the
runtime; a row left ``pending``/``running`` by a crash is failed by the
startup recovery below.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from coherex.agent_runtime.db.tables import AgentExecution
from coherex.agent_runtime.errors import ExecutionNotFoundError
from coherex.agent_runtime.models.enums import ExecutionMode, ExecutionStatus, OutcomeKind

DEFAULT_LIST_LIMIT = 50


async def create_execution(
    db: AsyncSession,
    *,
    agent_id: str,
    mode: ExecutionMode,
    input: Any,
    session_id: str | None = None,
) -> AgentExecution:
    """Insert a ``pending`` execution record."""
    row = AgentExecution(
        execution_id=uuid.uuid4().hex,
        agent_id=agent_id,
        session_id=session_id,
        mode=mode,
        status=ExecutionStatus.PENDING,
        input=input,
        logs=[],
    )
    db.add(row)
    await db.commit()
    await db.refresh(row)
    logger.debug("Execution {} pending (agent={}, mode={})", row.execution_id, agent_id, mode)
    return row


async def mark_running(db: AsyncSession, execution_id: str) -> None:
    stmt = (
        update(AgentExecution)
        .where(AgentExecution.execution_id == execution_id, AgentExecution.status == ExecutionStatus.PENDING)
        .values(status=ExecutionStatus.RUNNING, started_at=datetime.now(UTC))
    )
    await db.execute(stmt)
    await db.commit()


async def finalize_execution(
    db: AsyncSession,
    execution_id: str,
    *,
    success: bool,
    outcome: OutcomeKind | None = None,
    output: Any = None,
    error: str | None = None,
    logs: list[str] | None = None,
    duration_ms: int | None = None,
    session_id: str | None = None,
    sandbox_ref: str | None = None,
) -> AgentExecution:
    """Move the record to ``completed`` or ``failed``.

    ``status`` and ``completed_at`` are written in one statement, so the
    record never shows one without the other.  Works on a fresh
    transaction, so it can run after the caller's session has been rolled
    back.
    """
    status = ExecutionStatus.COMPLETED if success else ExecutionStatus.FAILED
    values: dict[str, Any] = {
        "status": status,
        "completed_at": datetime.now(UTC),
        "outcome": outcome,
        "output": output,
        "error": error,
        "logs": logs or [],
        "duration_ms": duration_ms,
    }
    if session_id is not None:
        values["session_id"] = session_id
    if sandbox_ref is not None:
        values["sandbox_ref"] = sandbox_ref

    stmt = update(AgentExecution).where(AgentExecution.execution_id == execution_id).values(**values)
    await db.execute(stmt)
    await db.commit()
    row = await db.get(AgentExecution, execution_id, populate_existing=True)
    if row is None:
        raise ExecutionNotFoundError(execution_id)
    logger.info("Execution {} {} (outcome={}, {}ms)", execution_id, status, outcome, duration_ms)
    return row


async def list_executions(db: AsyncSession, agent_id: str, *, limit: int = DEFAULT_LIST_LIMIT) -> list[AgentExecution]:
    """An agent's executions, newest first."""
    stmt = (
        select(AgentExecution)
        .where(AgentExecution.agent_id == agent_id)
        .order_by(AgentExecution.created_at.desc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_execution(db: AsyncSession, agent_id: str, execution_id: str) -> AgentExecution:
    """Raises ``ExecutionNotFoundError`` if missing or owned by another agent."""
    row = await db.get(AgentExecution, execution_id)
    if row is None or row.agent_id != agent_id:
        raise ExecutionNotFoundError(execution_id)
    return row


async def recover_orphaned_executions(db: AsyncSession) -> int:
    """Fail executions left ``pending``/``running`` by a previous process.

    Called once at startup.  Returns the number of records recovered.
    """
    stmt = (
        update(AgentExecution)
        .where(AgentExecution.status.in_([ExecutionStatus.PENDING, ExecutionStatus.RUNNING]))
        .values(
            status=ExecutionStatus.FAILED,
            completed_at=datetime.now(UTC),
            error="Interrupted by a service restart",
        )
    )
    result = await db.execute(stmt)
    await db.commit()
    count = result.rowcount  # type: ignore[attr-defined]
    if count > 0:
        logger.warning("Startup recovery: marked {} orphaned executions as failed", count)
    return count
