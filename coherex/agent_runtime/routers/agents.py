"""Agent CRUD endpoints (RPC-style).

All write operations use POST; reads use GET.  Thin HTTP adapter --
delegates to the agents manager.
"""

from __future__ import annotations

from fastapi import APIRouter, status

from coherex.agent_runtime.deps import DbSession, SessionMgr
from coherex.agent_runtime.managers import agents as agent_manager
from coherex.agent_runtime.models.api import AgentCreate, AgentResponse, AgentUpdate, ApiResponse

router = APIRouter(prefix="/agents", tags=["agents"])


@router.post("/create", response_model=ApiResponse[AgentResponse], status_code=status.HTTP_201_CREATED)
async def create_agent(body: AgentCreate, db: DbSession) -> ApiResponse[AgentResponse]:
    """Create a new agent."""
    agent = await agent_manager.create_agent(db, body)
    return ApiResponse(data=AgentResponse.model_validate(agent), message="Agent created")


@router.get("/list", response_model=ApiResponse[list[AgentResponse]])
async def list_agents(db: DbSession) -> ApiResponse[list[AgentResponse]]:
    """List all agents, ordered by creation time (newest first)."""
    agents = await agent_manager.list_agents(db)
    return ApiResponse(data=[AgentResponse.model_validate(a) for a in agents])


@router.get("/{agent_id}/get", response_model=ApiResponse[AgentResponse])
async def get_agent(agent_id: str, db: DbSession) -> ApiResponse[AgentResponse]:
    agent = await agent_manager.get_agent(db, agent_id)
    return ApiResponse(data=AgentResponse.model_validate(agent))


@router.post("/{agent_id}/update", response_model=ApiResponse[AgentResponse])
async def update_agent(agent_id: str, body: AgentUpdate, db: DbSession) -> ApiResponse[AgentResponse]:
    """Partially update an existing agent."""
    agent = await agent_manager.update_agent(db, agent_id, body)
    return ApiResponse(data=AgentResponse.model_validate(agent), message="Agent updated")


@router.post("/{agent_id}/delete", response_model=ApiResponse[None])
async def delete_agent(agent_id: str, db: DbSession, manager: SessionMgr) -> ApiResponse[None]:
    """Delete an agent after stopping its sessions and releasing their sandboxes."""
    await agent_manager.get_agent(db, agent_id)
    stopped = await manager.stop_agent_sessions(agent_id)
    await agent_manager.delete_agent(db, agent_id)
    message = f"Agent deleted ({stopped} session(s) stopped)" if stopped else "Agent deleted"
    return ApiResponse(message=message)
