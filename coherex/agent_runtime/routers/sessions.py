"""Persistent-session endpoints, nested under their agent.

Thin HTTP adapter -- delegates to the session manager.  Executing a turn
goes through the execution coordinator so the call is recorded and a
hibernated session is resumed on demand.
"""

from __future__ import annotations

from fastapi import APIRouter, status

from coherex.agent_runtime.deps import Coordinator, DbSession, SessionMgr
from coherex.agent_runtime.errors import SessionNotFoundError
from coherex.agent_runtime.managers.sessions import SessionManager
from coherex.agent_runtime.models.api import (
    ApiResponse,
    SessionActionRequest,
    SessionCreateRequest,
    SessionDetail,
    SessionExecuteRequest,
)
from coherex.agent_runtime.models.enums import SessionAction
from coherex.agent_runtime.models.execution import ExecutionReport
from coherex.agent_runtime.models.session import SessionInfo

router = APIRouter(prefix="/agents/{agent_id}/sessions", tags=["sessions"])


async def _require_agent_session(manager: SessionManager, agent_id: str, session_id: str) -> SessionInfo:
    """A session addressed under the wrong agent is reported as missing."""
    session = await manager.require_session(session_id)
    if session.agent_id != agent_id:
        raise SessionNotFoundError(session_id)
    return session


@router.get("", response_model=ApiResponse[list[SessionInfo]])
async def list_sessions(agent_id: str, manager: SessionMgr) -> ApiResponse[list[SessionInfo]]:
    """All sessions of the agent, stopped ones included, newest first."""
    await manager.get_agent_config(agent_id)
    return ApiResponse(data=await manager.list_sessions(agent_id))


@router.post("", response_model=ApiResponse[SessionInfo])
async def create_session(
    agent_id: str,
    manager: SessionMgr,
    body: SessionCreateRequest | None = None,
) -> ApiResponse[SessionInfo]:
    """Return the agent's open session, or provision one."""
    body = body or SessionCreateRequest()
    agent = await manager.get_agent_config(agent_id)
    session = await manager.get_or_create_session(agent, force_new=body.force_new)
    return ApiResponse(data=session)


@router.delete("", response_model=ApiResponse[None])
async def stop_all_sessions(agent_id: str, manager: SessionMgr) -> ApiResponse[None]:
    await manager.get_agent_config(agent_id)
    stopped = await manager.stop_agent_sessions(agent_id)
    return ApiResponse(message=f"Stopped {stopped} session(s)")


@router.get("/{session_id}", response_model=ApiResponse[SessionDetail])
async def get_session(agent_id: str, session_id: str, manager: SessionMgr) -> ApiResponse[SessionDetail]:
    """Session row plus its conversation log."""
    await _require_agent_session(manager, agent_id, session_id)
    return ApiResponse(data=await manager.get_session(session_id))


@router.post("/{session_id}", response_model=ApiResponse[ExecutionReport], status_code=status.HTTP_200_OK)
async def execute_in_session(
    agent_id: str,
    session_id: str,
    body: SessionExecuteRequest,
    db: DbSession,
    manager: SessionMgr,
    coordinator: Coordinator,
) -> ApiResponse[ExecutionReport]:
    """Run one turn in the session.  A failed run is returned with ``success=false``."""
    await _require_agent_session(manager, agent_id, session_id)
    report = await coordinator.execute_agent(
        db,
        agent_id,
        body.input,
        session_id=session_id,
        include_context=body.include_context,
    )
    return ApiResponse(success=report.success, data=report, error=report.error)


@router.patch("/{session_id}", response_model=ApiResponse[SessionInfo])
async def update_session(
    agent_id: str,
    session_id: str,
    body: SessionActionRequest,
    manager: SessionMgr,
) -> ApiResponse[SessionInfo]:
    """Apply a lifecycle action: hibernate, resume or stop."""
    await _require_agent_session(manager, agent_id, session_id)
    match body.action:
        case SessionAction.HIBERNATE:
            session = await manager.hibernate_session(session_id)
        case SessionAction.RESUME:
            session = await manager.resume_session(session_id)
        case SessionAction.STOP:
            session = await manager.stop_session(session_id)
    return ApiResponse(data=session, message=f"Session {body.action} applied")


@router.delete("/{session_id}", response_model=ApiResponse[SessionInfo])
async def stop_session(agent_id: str, session_id: str, manager: SessionMgr) -> ApiResponse[SessionInfo]:
    await _require_agent_session(manager, agent_id, session_id)
    return ApiResponse(data=await manager.stop_session(session_id))
