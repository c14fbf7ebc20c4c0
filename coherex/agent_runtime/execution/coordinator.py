"""Execution coordinator -- routes one agent invocation to the right path.

For every request the coordinator:

1. **Validates**: loads the agent and checks it is executable.
2. **Records**: writes a ``pending`` execution record, then ``running``.
3. **Routes**:

   - *persistent* (agent mode is persistent, ``use_session`` is set, or a
     ``session_id`` is given): picks or creates the session, resumes it if
     hibernated, then runs one turn through the session manager;
   - *ephemeral*: provisions a single-use sandbox, runs once and tears the
     sandbox down on every path.  If no sandbox can be provisioned and
     simulation is enabled, the run is simulated and tagged as such.

4. **Finalizes**: the record always ends ``completed`` or ``failed``,
   whether the request returns or raises.

A command failure inside a sandbox is not an exception here: it produces a
report with ``success=False`` that the HTTP layer returns with status 200.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from coherex.agent_runtime.errors import (
    AgentNotExecutableError,
    ExecutionError,
    ProvisioningError,
    SessionNotFoundError,
)
from coherex.agent_runtime.execution.environment import prepare_sandbox, sandbox_envs, sandbox_metadata
from coherex.agent_runtime.execution.prompt import render_input
from coherex.agent_runtime.execution.runtime import run_agent
from coherex.agent_runtime.execution.simulation import simulate_execution
from coherex.agent_runtime.managers import executions as execution_records
from coherex.agent_runtime.managers.agents import get_agent
from coherex.agent_runtime.models.agent import AgentConfig
from coherex.agent_runtime.models.enums import ExecutionMode, SessionStatus
from coherex.agent_runtime.models.execution import ExecutionReport, RealOutcome, SimulatedOutcome
from coherex.agent_runtime.registry import ShuttingDownError
from coherex.agent_runtime.sandbox.base import sandbox_scope

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from coherex.agent_runtime.managers.sessions import SessionManager
    from coherex.agent_runtime.registry import ExecutionRegistry
    from coherex.agent_runtime.sandbox.base import SandboxExecutor
    from coherex.agent_runtime.settings import CoherexSettings

logger = logging.getLogger(__name__)


@dataclass
class _PathResult:
    """What one execution path produced, before it is written to the record."""

    success: bool
    outcome: RealOutcome | SimulatedOutcome
    error: str | None = None
    logs: list[str] = field(default_factory=list)
    session_id: str | None = None
    sandbox_ref: str | None = None


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class ExecutionCoordinator:
    """Process-level singleton wiring the execution paths together."""

    def __init__(
        self,
        *,
        sessions: SessionManager,
        sandbox: SandboxExecutor,
        registry: ExecutionRegistry,
        settings: CoherexSettings,
    ) -> None:
        self._sessions = sessions
        self._sandbox = sandbox
        self._registry = registry
        self._settings = settings

    async def execute_agent(
        self,
        db: AsyncSession,
        agent_id: str,
        input: Any,
        *,
        session_id: str | None = None,
        use_session: bool = False,
        include_context: bool = True,
    ) -> ExecutionReport:
        """Execute *agent_id* once and return the finalized report.

        Raises the domain errors of the chosen path (``AgentNotFoundError``,
        ``AgentNotExecutableError``, ``UnsupportedModeError``,
        ``InvalidStateError``, ``SessionBusyError``, ``ProvisioningError``),
        always after the execution record has been marked ``failed``.
        """
        agent = AgentConfig.model_validate(await get_agent(db, agent_id))
        if not agent.is_executable:
            msg = f"Agent '{agent_id}' is {agent.status}; only active or draft agents can be executed"
            raise AgentNotExecutableError(msg)

        if self._registry.is_shutting_down:
            raise ShuttingDownError

        persistent = agent.is_persistent or use_session or session_id is not None
        mode = ExecutionMode.PERSISTENT if persistent else ExecutionMode.EPHEMERAL

        row = await execution_records.create_execution(
            db, agent_id=agent_id, mode=mode, input=input, session_id=session_id
        )
        execution_id = row.execution_id
        started = time.monotonic()

        async with self._registry.track(execution_id):
            try:
                await execution_records.mark_running(db, execution_id)
                if persistent:
                    result = await self._run_persistent(agent, input, session_id, include_context)
                else:
                    result = await self._run_ephemeral(agent, input, execution_id)
            except BaseException as exc:
                logger.warning("Execution %s failed: %s", execution_id, exc)
                await db.rollback()
                await execution_records.finalize_execution(
                    db,
                    execution_id,
                    success=False,
                    error=str(exc) or type(exc).__name__,
                    duration_ms=_elapsed_ms(started),
                )
                raise

            duration_ms = _elapsed_ms(started)
            finished = await execution_records.finalize_execution(
                db,
                execution_id,
                success=result.success,
                outcome=result.outcome.kind,
                output=result.outcome.output,
                error=result.error,
                logs=result.logs,
                duration_ms=duration_ms,
                session_id=result.session_id,
                sandbox_ref=result.sandbox_ref,
            )

        return ExecutionReport(
            execution_id=execution_id,
            agent_id=agent_id,
            session_id=result.session_id,
            mode=mode,
            success=result.success,
            outcome=result.outcome,
            error=result.error,
            logs=result.logs,
            duration_ms=duration_ms,
            completed_at=finished.completed_at,
        )

    # -- Persistent path -------------------------------------------------------

    async def _run_persistent(
        self,
        agent: AgentConfig,
        input: Any,
        session_id: str | None,
        include_context: bool,
    ) -> _PathResult:
        if session_id is not None:
            session = await self._sessions.require_session(session_id)
            if session.agent_id != agent.agent_id:
                raise SessionNotFoundError(session_id)
        else:
            session = await self._sessions.get_or_create_session(agent)

        if session.status == SessionStatus.HIBERNATED:
            logger.info("Resuming hibernated session %s on demand", session.session_id)
            session = await self._sessions.resume_if_hibernated(session.session_id)

        result = await self._sessions.execute_in_session(
            session.session_id,
            render_input(input),
            include_context=include_context,
        )
        return _PathResult(
            success=result.success,
            outcome=RealOutcome(output=result.output),
            error=result.error,
            logs=result.logs,
            session_id=session.session_id,
            sandbox_ref=session.sandbox_ref,
        )

    # -- Ephemeral path --------------------------------------------------------

    async def _run_ephemeral(self, agent: AgentConfig, input: Any, execution_id: str) -> _PathResult:
        settings = self._settings
        try:
            async with sandbox_scope(
                self._sandbox,
                f"exec-{execution_id}",
                timeout_seconds=settings.ephemeral_sandbox_timeout,
                envs=sandbox_envs(agent, settings),
                metadata=sandbox_metadata(agent),
            ) as ref:
                logs = await prepare_sandbox(self._sandbox, ref, agent, settings)
                try:
                    run = await run_agent(
                        self._sandbox,
                        ref,
                        agent,
                        render_input(input),
                        timeout_seconds=settings.command_timeout,
                    )
                except ExecutionError as exc:
                    return _PathResult(
                        success=False,
                        outcome=RealOutcome(),
                        error=str(exc),
                        logs=logs + exc.logs,
                        sandbox_ref=ref.sandbox_id,
                    )
                return _PathResult(
                    success=True,
                    outcome=RealOutcome(output=run.output),
                    logs=logs + run.logs,
                    sandbox_ref=ref.sandbox_id,
                )
        except ProvisioningError as exc:
            if not settings.simulation_fallback:
                raise
            outcome, logs = simulate_execution(agent, input, reason=str(exc))
            return _PathResult(success=True, outcome=outcome, logs=logs)
