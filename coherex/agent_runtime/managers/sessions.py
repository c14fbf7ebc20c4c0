"""Session manager -- persistent-session lifecycle over the store and sandboxes.

The SessionManager is a process-level singleton initialised in the app
lifespan.  It coordinates four collaborators:

- **SessionStore**: durable session rows, conversation turns, activity log
- **SandboxExecutor**: the remote sandboxes that sessions own
- **SnapshotStore**: files carried across hibernation
- **ExecutionRegistry**: per-session leases

State machine::

    active/idle --hibernate--> hibernated --resume--> active
    any non-stopped --stop--> stopped   (terminal)

Every status change is a compare-and-swap in the store, and every
operation on a single session runs under that session's lease, so an
execution never races a hibernate or stop tearing its sandbox down.

The manager never resumes implicitly: ``execute_in_session`` on a
hibernated session is an error, and callers decide whether to resume.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from loguru import logger

from coherex.agent_runtime.errors import (
    AgentNotFoundError,
    ExecutionError,
    InvalidStateError,
    ProvisioningError,
    SessionBusyError,
    SessionConflictError,
    SessionNotFoundError,
    UnsupportedModeError,
)
from coherex.agent_runtime.execution.environment import provision_sandbox
from coherex.agent_runtime.execution.prompt import render_effective_prompt
from coherex.agent_runtime.execution.runtime import run_agent
from coherex.agent_runtime.models.api import SessionDetail
from coherex.agent_runtime.models.enums import (
    LIVE_SESSION_STATUSES,
    OPEN_SESSION_STATUSES,
    ActivityType,
    SessionStatus,
)
from coherex.agent_runtime.models.execution import SessionExecution
from coherex.agent_runtime.models.session import SessionInfo, SessionSnapshot
from coherex.agent_runtime.sandbox.base import SandboxRef, destroy_quietly

if TYPE_CHECKING:
    from coherex.agent_runtime.managers.agents import AgentConfigProvider
    from coherex.agent_runtime.models.agent import AgentConfig
    from coherex.agent_runtime.registry import ExecutionRegistry
    from coherex.agent_runtime.sandbox.base import SandboxExecutor
    from coherex.agent_runtime.settings import CoherexSettings
    from coherex.agent_runtime.store.base import SessionStore, SnapshotStore


SWEEP_LEASE_WAIT = 1.0
"""Seconds the idle sweeper waits for a session lease before skipping it."""


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class SessionManager:
    """Manages persistent sessions (create -> execute -> hibernate/resume -> stop).

    Stateless beyond its collaborators: any number of processes may run one
    against the same database.
    """

    def __init__(
        self,
        *,
        store: SessionStore,
        sandbox: SandboxExecutor,
        agents: AgentConfigProvider,
        registry: ExecutionRegistry,
        snapshots: SnapshotStore,
        settings: CoherexSettings,
    ) -> None:
        self._store = store
        self._sandbox = sandbox
        self._agents = agents
        self._registry = registry
        self._snapshots = snapshots
        self._settings = settings

    # -- Read ------------------------------------------------------------------

    async def require_session(self, session_id: str) -> SessionInfo:
        session = await self._store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def get_session(self, session_id: str) -> SessionDetail:
        """Session row plus its full conversation log."""
        session = await self.require_session(session_id)
        turns = await self._store.list_turns(session_id)
        return SessionDetail(session=session, turns=turns)

    async def list_sessions(self, agent_id: str) -> list[SessionInfo]:
        return await self._store.list_for_agent(agent_id)

    async def get_agent_config(self, agent_id: str) -> AgentConfig:
        """Raises ``AgentNotFoundError`` if the agent does not exist."""
        return await self._agents.get_agent_config(agent_id)

    # -- Create ----------------------------------------------------------------

    async def get_or_create_session(self, agent: AgentConfig, *, force_new: bool = False) -> SessionInfo:
        """Return the agent's open session, or provision a new one.

        An existing session is returned as-is, whatever its open status.
        With *force_new*, open sessions are stopped and a fresh one is
        provisioned.
        """
        if not agent.is_persistent:
            msg = f"Agent '{agent.agent_id}' uses ephemeral execution; sessions are not supported"
            raise UnsupportedModeError(msg)

        if force_new:
            stopped = await self.stop_agent_sessions(agent.agent_id)
            if stopped:
                logger.info("Stopped {} session(s) of agent {} before forced create", stopped, agent.agent_id)
        else:
            existing = await self._store.find_live(agent.agent_id)
            if existing is not None:
                logger.debug("Reusing session {} ({}) for agent {}", existing.session_id, existing.status, agent.agent_id)
                return existing

        ref = await provision_sandbox(
            self._sandbox,
            agent,
            self._settings,
            timeout_seconds=self._settings.session_sandbox_timeout,
        )
        try:
            session = await self._store.create(agent.agent_id, ref.sandbox_id)
        except SessionConflictError:
            # Another request created the agent's session first; adopt it.
            await destroy_quietly(self._sandbox, ref)
            winner = await self._store.find_live(agent.agent_id)
            if winner is None:
                raise
            logger.info("Lost session create race for agent {}; using {}", agent.agent_id, winner.session_id)
            return winner
        except BaseException:
            await destroy_quietly(self._sandbox, ref)
            raise

        logger.info(
            "Session created: {} (agent={}, sandbox={})",
            session.session_id,
            agent.agent_id,
            ref.sandbox_id,
        )
        return session

    # -- Execute ---------------------------------------------------------------

    async def execute_in_session(
        self,
        session_id: str,
        user_input: str,
        *,
        include_context: bool = True,
    ) -> SessionExecution:
        """Run one turn in the session's sandbox.

        On success exactly one (user, assistant) turn pair is appended and
        the session's activity time is refreshed.  A failed run returns
        ``success=False`` and leaves the conversation log untouched.
        """
        async with self._registry.session_lease(session_id):
            session = await self.require_session(session_id)
            if session.status == SessionStatus.STOPPED:
                msg = f"Session '{session_id}' is stopped"
                raise InvalidStateError(msg)
            if session.status == SessionStatus.HIBERNATED:
                msg = f"Session '{session_id}' is hibernated; resume it first"
                raise InvalidStateError(msg)
            assert session.sandbox_ref is not None  # noqa: S101

            agent = await self._agents.get_agent_config(session.agent_id)
            limit = agent.session_config.max_context_messages
            turns = await self._store.list_turns(session_id, limit=limit) if include_context and limit else []
            prompt = render_effective_prompt(turns, user_input)

            started = time.monotonic()
            try:
                run = await run_agent(
                    self._sandbox,
                    SandboxRef(session.sandbox_ref),
                    agent,
                    prompt,
                    timeout_seconds=self._settings.command_timeout,
                )
            except ExecutionError as exc:
                logger.warning("Execution failed in session {}: {}", session_id, exc)
                return SessionExecution(
                    session_id=session_id,
                    success=False,
                    error=str(exc),
                    logs=exc.logs,
                    duration_ms=_elapsed_ms(started),
                )

            await self._store.record_success(session_id, user_input, run.output)
            logger.info("Session {} turn recorded ({} context turns, {}ms)", session_id, len(turns), run.duration_ms)
            return SessionExecution(
                session_id=session_id,
                success=True,
                output=run.output,
                logs=run.logs,
                duration_ms=_elapsed_ms(started),
            )

    # -- Hibernate / resume ----------------------------------------------------

    async def hibernate_session(self, session_id: str, *, wait_timeout: float | None = None) -> SessionInfo:
        """Snapshot files, release the sandbox and mark the session hibernated.

        Hibernating an already hibernated session is a no-op.
        """
        async with self._registry.session_lease(session_id, wait_timeout=wait_timeout):
            session = await self.require_session(session_id)
            if session.status == SessionStatus.HIBERNATED:
                return session
            if session.status == SessionStatus.STOPPED:
                msg = f"Session '{session_id}' is stopped and cannot be hibernated"
                raise InvalidStateError(msg)
            return await self._hibernate_locked(session)

    async def hibernate_if_idle(
        self,
        session_id: str,
        idle_before: datetime,
        *,
        wait_timeout: float | None = None,
    ) -> SessionInfo | None:
        """Hibernate the session only if it is still live and unused since *idle_before*.

        Both conditions are checked under the lease.  Returns ``None`` when
        the session was left alone.
        """
        async with self._registry.session_lease(session_id, wait_timeout=wait_timeout):
            session = await self.require_session(session_id)
            if session.status not in LIVE_SESSION_STATUSES:
                return None
            if session.last_activity_at is not None and session.last_activity_at > idle_before:
                logger.debug("Session {} was used at {}; not hibernating", session_id, session.last_activity_at)
                return None
            return await self._hibernate_locked(session)

    async def _hibernate_locked(self, session: SessionInfo) -> SessionInfo:
        """Hibernate a live session.  The caller holds its lease."""
        session_id = session.session_id
        assert session.sandbox_ref is not None  # noqa: S101
        ref = SandboxRef(session.sandbox_ref)

        await self._take_snapshot(session_id, ref)
        updated = await self._store.transition(
            session_id,
            expected=LIVE_SESSION_STATUSES,
            status=SessionStatus.HIBERNATED,
        )
        if updated is None:
            current = await self.require_session(session_id)
            if current.status == SessionStatus.HIBERNATED:
                return current
            msg = f"Session '{session_id}' is {current.status} and cannot be hibernated"
            raise InvalidStateError(msg)

        await destroy_quietly(self._sandbox, ref)
        await self._store.log_activity(session_id, ActivityType.HIBERNATED, {"sandbox_ref": ref.sandbox_id})
        logger.info("Session hibernated: {} (released sandbox {})", session_id, ref.sandbox_id)
        return updated

    async def resume_session(self, session_id: str) -> SessionInfo:
        """Provision a new sandbox for a hibernated session and restore its files."""
        async with self._registry.session_lease(session_id):
            session = await self.require_session(session_id)
            if session.status != SessionStatus.HIBERNATED:
                msg = f"Session '{session_id}' is {session.status}; only hibernated sessions can be resumed"
                raise InvalidStateError(msg)
            return await self._resume_locked(session)

    async def resume_if_hibernated(self, session_id: str) -> SessionInfo:
        """Resume on demand; any other status is returned unchanged.

        The status is read under the lease, so concurrent callers that all
        saw ``hibernated`` share a single resume.
        """
        async with self._registry.session_lease(session_id):
            session = await self.require_session(session_id)
            if session.status != SessionStatus.HIBERNATED:
                return session
            return await self._resume_locked(session)

    async def _resume_locked(self, session: SessionInfo) -> SessionInfo:
        """Resume a hibernated session.  The caller holds its lease."""
        session_id = session.session_id
        agent = await self._agents.get_agent_config(session.agent_id)
        ref = await provision_sandbox(
            self._sandbox,
            agent,
            self._settings,
            timeout_seconds=self._settings.session_sandbox_timeout,
            session_id=session_id,
        )
        try:
            await self._restore_snapshot(session_id, ref)
            updated = await self._store.transition(
                session_id,
                expected={SessionStatus.HIBERNATED},
                status=SessionStatus.ACTIVE,
                sandbox_ref=ref.sandbox_id,
            )
        except BaseException:
            await destroy_quietly(self._sandbox, ref)
            raise
        if updated is None:
            await destroy_quietly(self._sandbox, ref)
            msg = f"Session '{session_id}' changed state during resume"
            raise InvalidStateError(msg)

        await self._store.log_activity(session_id, ActivityType.RESUMED, {"sandbox_ref": ref.sandbox_id})
        logger.info("Session resumed: {} (sandbox={})", session_id, ref.sandbox_id)
        return updated

    async def _take_snapshot(self, session_id: str, ref: SandboxRef) -> None:
        """Copy configured files out of the sandbox.

        A sandbox that has already expired cannot be read; hibernation then
        proceeds without a snapshot.
        """
        paths = self._settings.snapshot_files
        if not paths:
            return
        files: dict[str, str] = {}
        for path in paths:
            try:
                content = await self._sandbox.download_file(ref, path)
            except ExecutionError as exc:
                logger.warning("Snapshot of {} in session {} skipped: {}", path, session_id, exc)
                continue
            if content is not None:
                files[path] = content
        await self._snapshots.write_snapshot(session_id, SessionSnapshot(files=files, taken_at=datetime.now(UTC)))
        logger.debug("Snapshot written for session {} ({} files)", session_id, len(files))

    async def _restore_snapshot(self, session_id: str, ref: SandboxRef) -> None:
        if not await self._snapshots.exists(session_id):
            return
        snapshot = await self._snapshots.read_snapshot(session_id)
        for path, content in snapshot.files.items():
            try:
                await self._sandbox.upload_file(ref, path, content)
            except ExecutionError as exc:
                msg = f"Failed to restore {path} into sandbox {ref.sandbox_id}: {exc}"
                raise ProvisioningError(msg) from exc
        logger.debug("Snapshot restored for session {} ({} files)", session_id, len(snapshot.files))

    # -- Stop ------------------------------------------------------------------

    async def stop_session(self, session_id: str) -> SessionInfo:
        """Stop the session and release its sandbox.  Idempotent."""
        async with self._registry.session_lease(session_id):
            session = await self.require_session(session_id)
            if session.status == SessionStatus.STOPPED:
                return session

            updated = await self._store.transition(
                session_id,
                expected=OPEN_SESSION_STATUSES,
                status=SessionStatus.STOPPED,
            )
            if updated is None:
                # Only a concurrent stop can make the CAS fail here.
                return await self.require_session(session_id)

            if session.sandbox_ref is not None:
                await destroy_quietly(self._sandbox, SandboxRef(session.sandbox_ref))
            await self._snapshots.delete(session_id)
            await self._store.log_activity(session_id, ActivityType.STOPPED, {"previous_status": str(session.status)})
            logger.info("Session stopped: {} (was {})", session_id, session.status)
            return updated

    async def stop_agent_sessions(self, agent_id: str) -> int:
        """Stop every open session of an agent.  Returns how many were stopped."""
        count = 0
        for session in await self._store.list_for_agent(agent_id):
            if session.status == SessionStatus.STOPPED:
                continue
            await self.stop_session(session.session_id)
            count += 1
        return count

    # -- Idle sweep ------------------------------------------------------------

    async def mark_idle_sessions(self, now: datetime | None = None) -> int:
        """Move ``active`` sessions untouched for ``idle_after_seconds`` to ``idle``."""
        now = now or datetime.now(UTC)
        before = now - timedelta(seconds=self._settings.idle_after_seconds)
        count = 0
        for session in await self._store.find_idle_candidates({SessionStatus.ACTIVE}, before):
            updated = await self._store.transition(
                session.session_id,
                expected={SessionStatus.ACTIVE},
                status=SessionStatus.IDLE,
            )
            if updated is not None:
                await self._store.log_activity(session.session_id, ActivityType.IDLED)
                count += 1
        if count:
            logger.info("Idle sweep: marked {} session(s) idle", count)
        return count

    async def hibernate_expired_sessions(self, now: datetime | None = None) -> int:
        """Hibernate live sessions idle past their agent's ``idle_timeout_minutes``.

        Busy sessions are skipped and picked up by a later sweep.
        """
        now = now or datetime.now(UTC)
        # Every agent's timeout is at least one minute.
        candidates = await self._store.find_idle_candidates(LIVE_SESSION_STATUSES, now - timedelta(minutes=1))
        configs: dict[str, AgentConfig | None] = {}
        count = 0
        for session in candidates:
            if session.agent_id not in configs:
                try:
                    configs[session.agent_id] = await self._agents.get_agent_config(session.agent_id)
                except AgentNotFoundError:
                    configs[session.agent_id] = None
            agent = configs[session.agent_id]
            if agent is None or session.last_activity_at is None:
                continue
            idle_before = now - timedelta(minutes=agent.session_config.idle_timeout_minutes)
            if session.last_activity_at > idle_before:
                continue
            try:
                hibernated = await self.hibernate_if_idle(
                    session.session_id, idle_before, wait_timeout=SWEEP_LEASE_WAIT
                )
            except SessionBusyError:
                logger.debug("Idle sweep: session {} busy, skipping", session.session_id)
                continue
            except InvalidStateError as exc:
                logger.debug("Idle sweep: session {} skipped: {}", session.session_id, exc)
                continue
            if hibernated is not None:
                count += 1
        if count:
            logger.info("Idle sweep: hibernated {} session(s)", count)
        return count

    async def sweep(self, now: datetime | None = None) -> None:
        """One pass of the background idle sweeper."""
        now = now or datetime.now(UTC)
        await self.mark_idle_sessions(now)
        await self.hibernate_expired_sessions(now)
