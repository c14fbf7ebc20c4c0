"""Agent execution endpoints.

``POST /agents/{agent_id}/execute`` answers 200 whenever a sandbox ran,
even if the agent command failed; ``success`` in the envelope tells the
two apart.  Provisioning and validation failures are raised and rendered
by the exception handlers.
"""

from __future__ import annotations

from fastapi import APIRouter, Query

from coherex.agent_runtime.deps import Coordinator, DbSession
from coherex.agent_runtime.managers import executions as execution_records
from coherex.agent_runtime.managers.agents import get_agent
from coherex.agent_runtime.models.api import ApiResponse, ExecuteRequest
from coherex.agent_runtime.models.execution import ExecutionRecord, ExecutionReport

router = APIRouter(prefix="/agents/{agent_id}", tags=["executions"])


@router.post("/execute", response_model=ApiResponse[ExecutionReport])
async def execute_agent(
    agent_id: str,
    body: ExecuteRequest,
    db: DbSession,
    coordinator: Coordinator,
) -> ApiResponse[ExecutionReport]:
    report = await coordinator.execute_agent(
        db,
        agent_id,
        body.input,
        session_id=body.session_id,
        use_session=body.use_session,
        include_context=body.include_context,
    )
    return ApiResponse(success=report.success, data=report, error=report.error)


@router.get("/executions", response_model=ApiResponse[list[ExecutionRecord]])
async def list_executions(
    agent_id: str,
    db: DbSession,
    limit: int = Query(execution_records.DEFAULT_LIST_LIMIT, ge=1, le=500),
) -> ApiResponse[list[ExecutionRecord]]:
    """The agent's executions, newest first."""
    await get_agent(db, agent_id)
    rows = await execution_records.list_executions(db, agent_id, limit=limit)
    return ApiResponse(data=[ExecutionRecord.model_validate(r) for r in rows])


@router.get("/executions/{execution_id}", response_model=ApiResponse[ExecutionRecord])
async def get_execution(agent_id: str, execution_id: str, db: DbSession) -> ApiResponse[ExecutionRecord]:
    row = await execution_records.get_execution(db, agent_id, execution_id)
    return ApiResponse(data=ExecutionRecord.model_validate(row))
