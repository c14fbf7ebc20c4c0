"""Execution outcome and audit-record models."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from coherex.agent_runtime.models.enums import ExecutionMode, ExecutionStatus, OutcomeKind

# -- Outcome -----------------------------------------------------------------


class RealOutcome(BaseModel):
    """Output produced by an actual sandbox run."""

    kind: Literal[OutcomeKind.REAL] = OutcomeKind.REAL
    output: Any = None


class SimulatedOutcome(BaseModel):
    """Output fabricated because no sandbox could be provisioned."""

    kind: Literal[OutcomeKind.SIMULATED] = OutcomeKind.SIMULATED
    output: Any = None
    reason: str


ExecutionOutcome = Annotated[RealOutcome | SimulatedOutcome, Field(discriminator="kind")]


# -- Results -----------------------------------------------------------------


class SessionExecution(BaseModel):
    """Result of one ``execute_in_session`` call."""

    session_id: str
    success: bool
    output: Any = None
    error: str | None = None
    logs: list[str] = Field(default_factory=list)
    duration_ms: int = 0


class ExecutionReport(BaseModel):
    """What the execution coordinator hands back to the HTTP layer."""

    execution_id: str
    agent_id: str
    session_id: str | None = None
    mode: ExecutionMode
    success: bool
    outcome: ExecutionOutcome
    error: str | None = None
    logs: list[str] = Field(default_factory=list)
    duration_ms: int = 0
    completed_at: datetime | None = None


# -- Audit record ------------------------------------------------------------


class ExecutionRecord(BaseModel):
    """Append-only audit row for one agent invocation.

    Invariant: ``completed_at`` is set iff ``status`` is ``completed`` or ``failed``.
    """

    model_config = ConfigDict(from_attributes=True)

    execution_id: str
    agent_id: str
    session_id: str | None = None
    sandbox_ref: str | None = None
    mode: ExecutionMode
    status: ExecutionStatus
    outcome: OutcomeKind | None = None
    input: Any = None
    output: Any = None
    error: str | None = None
    logs: list[str] = Field(default_factory=list)
    duration_ms: int | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None
