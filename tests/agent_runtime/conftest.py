"""Shared fixtures for agent-runtime tests.

Unit tests run the session manager and the coordinator against in-memory
fakes of the session store, snapshot store, agent provider and sandbox
service.  HTTP tests (``client``) run the real SQL store against the
savepoint-isolated PostgreSQL connection from the root conftest, with the
fake sandbox service standing in for E2B.
"""

from __future__ import annotations

import json
import shlex
import uuid
from collections.abc import AsyncIterator, Callable, Collection
from datetime import UTC, datetime
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coherex.agent_runtime.app import app
from coherex.agent_runtime.deps import get_db
from coherex.agent_runtime.errors import (
    AgentNotFoundError,
    ExecutionError,
    InvalidStateError,
    SessionConflictError,
    SessionNotFoundError,
)
from coherex.agent_runtime.execution.coordinator import ExecutionCoordinator
from coherex.agent_runtime.execution.runner import RUNNER_PATH
from coherex.agent_runtime.managers.agents import SqlAgentConfigProvider
from coherex.agent_runtime.managers.sessions import SessionManager
from coherex.agent_runtime.models.agent import AgentConfig
from coherex.agent_runtime.models.enums import (
    LIVE_SESSION_STATUSES,
    ActivityType,
    AgentStatus,
    ExecutionMode,
    SessionStatus,
    TurnRole,
)
from coherex.agent_runtime.models.session import ConversationTurn, SessionInfo, SessionSnapshot
from coherex.agent_runtime.registry import ExecutionRegistry
from coherex.agent_runtime.sandbox.base import CommandResult, SandboxRef
from coherex.agent_runtime.settings import CoherexSettings
from coherex.agent_runtime.store.local import LocalSnapshotStore
from coherex.agent_runtime.store.sql import SqlSessionStore

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


def echo_responder(request: dict) -> CommandResult:
    """Default runner behaviour: echo the new user input back."""
    last_line = request["prompt"].splitlines()[-1].removeprefix("User: ")
    return CommandResult(stdout=json.dumps({"success": True, "output": f"echo: {last_line}"}) + "\n")


class FakeSandbox:
    """In-memory ``SandboxExecutor``.

    Each live sandbox is a dict of uploaded files.  The runner command reads
    its request file and hands it to ``responder``, so tests can see exactly
    which prompt reached the sandbox.
    """

    def __init__(self) -> None:
        self.live: dict[str, dict[str, str]] = {}
        self.created: list[str] = []
        self.destroyed: list[str] = []
        self.requests: list[dict] = []
        self.create_error: Exception | None = None
        self.upload_error: Exception | None = None
        self.responder: Callable[[dict], CommandResult] = echo_responder

    async def create_sandbox(
        self,
        id: str,
        *,
        timeout_seconds: int,
        envs: dict[str, str] | None = None,
        metadata: dict[str, str] | None = None,
    ) -> SandboxRef:
        if self.create_error is not None:
            raise self.create_error
        sandbox_id = f"sbx-{len(self.created) + 1}"
        self.live[sandbox_id] = {}
        self.created.append(sandbox_id)
        return SandboxRef(sandbox_id)

    def _files(self, ref: SandboxRef) -> dict[str, str]:
        if ref.sandbox_id not in self.live:
            msg = f"Sandbox {ref.sandbox_id} not found"
            raise ExecutionError(msg)
        return self.live[ref.sandbox_id]

    async def run_command(self, ref: SandboxRef, command: str, *, timeout_seconds: int | None = None) -> CommandResult:
        files = self._files(ref)
        if command.startswith("pip install"):
            return CommandResult(stdout="installed\n")
        argv = shlex.split(command)
        if argv[:2] == ["python3", RUNNER_PATH]:
            request = json.loads(files[argv[2]])
            self.requests.append(request)
            return self.responder(request)
        return CommandResult(stderr=f"unknown command: {command}", exit_code=127)

    async def upload_file(self, ref: SandboxRef, path: str, content: str) -> None:
        files = self._files(ref)
        if self.upload_error is not None:
            raise self.upload_error
        files[path] = content

    async def download_file(self, ref: SandboxRef, path: str) -> str | None:
        return self._files(ref).get(path)

    async def destroy_sandbox(self, ref: SandboxRef) -> None:
        if self.live.pop(ref.sandbox_id, None) is not None:
            self.destroyed.append(ref.sandbox_id)


class InMemorySessionStore:
    """``SessionStore`` over plain dicts, with the same CAS and uniqueness rules as SQL."""

    def __init__(self) -> None:
        self.sessions: dict[str, SessionInfo] = {}
        self.turns: dict[str, list[ConversationTurn]] = {}
        self.activities: list[tuple[str, ActivityType, dict | None]] = []

    async def create(self, agent_id: str, sandbox_ref: str) -> SessionInfo:
        if await self.find_live(agent_id) is not None:
            msg = f"Agent '{agent_id}' already has a live session"
            raise SessionConflictError(msg)
        now = datetime.now(UTC)
        session = SessionInfo(
            session_id=uuid.uuid4().hex,
            agent_id=agent_id,
            sandbox_ref=sandbox_ref,
            created_at=now,
            last_activity_at=now,
        )
        self.sessions[session.session_id] = session
        self.turns[session.session_id] = []
        self.activities.append((session.session_id, ActivityType.STARTED, None))
        return session

    async def get(self, session_id: str) -> SessionInfo | None:
        return self.sessions.get(session_id)

    async def find_live(self, agent_id: str) -> SessionInfo | None:
        for session in self.sessions.values():
            if session.agent_id == agent_id and session.status != SessionStatus.STOPPED:
                return session
        return None

    async def list_for_agent(self, agent_id: str) -> list[SessionInfo]:
        return [s for s in self.sessions.values() if s.agent_id == agent_id]

    async def transition(
        self,
        session_id: str,
        *,
        expected: Collection[SessionStatus],
        status: SessionStatus,
        sandbox_ref: str | None = None,
    ) -> SessionInfo | None:
        session = self.sessions.get(session_id)
        if session is None or session.status not in expected:
            return None
        now = datetime.now(UTC)
        changes: dict[str, Any] = {"status": status}
        if status in LIVE_SESSION_STATUSES:
            if sandbox_ref is not None:
                changes["sandbox_ref"] = sandbox_ref
            if status == SessionStatus.ACTIVE:
                changes["last_activity_at"] = now
        else:
            changes["sandbox_ref"] = None
        if status == SessionStatus.HIBERNATED:
            changes["hibernated_at"] = now
        elif status == SessionStatus.STOPPED:
            changes["stopped_at"] = now
        updated = session.model_copy(update=changes)
        self.sessions[session_id] = updated
        return updated

    async def record_success(self, session_id: str, user_content: str, assistant_content: str) -> SessionInfo:
        session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        if session.status not in LIVE_SESSION_STATUSES:
            msg = f"Session '{session_id}' is {session.status}; cannot record a turn"
            raise InvalidStateError(msg)
        log = self.turns[session_id]
        seq = len(log)
        log.append(ConversationTurn(seq=seq + 1, role=TurnRole.USER, content=user_content))
        log.append(ConversationTurn(seq=seq + 2, role=TurnRole.ASSISTANT, content=assistant_content))
        self.activities.append((session_id, ActivityType.EXECUTION, {"seq": seq + 2}))
        updated = session.model_copy(
            update={
                "execution_count": session.execution_count + 1,
                "last_activity_at": datetime.now(UTC),
                "status": SessionStatus.ACTIVE,
            }
        )
        self.sessions[session_id] = updated
        return updated

    async def list_turns(self, session_id: str, limit: int | None = None) -> list[ConversationTurn]:
        log = self.turns.get(session_id, [])
        return list(log[-limit:]) if limit is not None else list(log)

    async def find_idle_candidates(self, statuses: Collection[SessionStatus], before: datetime) -> list[SessionInfo]:
        return [
            s
            for s in self.sessions.values()
            if s.status in statuses and s.last_activity_at is not None and s.last_activity_at < before
        ]

    async def log_activity(self, session_id: str, activity_type: ActivityType, detail: dict | None = None) -> None:
        self.activities.append((session_id, activity_type, detail))

    # -- Test helpers ------------------------------------------------------------

    def backdate(self, session_id: str, when: datetime) -> None:
        self.sessions[session_id] = self.sessions[session_id].model_copy(update={"last_activity_at": when})

    def activity_types(self, session_id: str) -> list[ActivityType]:
        return [kind for sid, kind, _ in self.activities if sid == session_id]


class InMemorySnapshotStore:
    def __init__(self) -> None:
        self.snapshots: dict[str, SessionSnapshot] = {}

    async def write_snapshot(self, session_id: str, snapshot: SessionSnapshot) -> None:
        self.snapshots[session_id] = snapshot

    async def read_snapshot(self, session_id: str) -> SessionSnapshot:
        if session_id not in self.snapshots:
            raise FileNotFoundError(session_id)
        return self.snapshots[session_id]

    async def exists(self, session_id: str) -> bool:
        return session_id in self.snapshots

    async def delete(self, session_id: str) -> None:
        self.snapshots.pop(session_id, None)


class StaticAgentProvider:
    def __init__(self, *agents: AgentConfig) -> None:
        self.agents = {a.agent_id: a for a in agents}

    def add(self, agent: AgentConfig) -> AgentConfig:
        self.agents[agent.agent_id] = agent
        return agent

    async def get_agent_config(self, agent_id: str) -> AgentConfig:
        if agent_id not in self.agents:
            raise AgentNotFoundError(agent_id)
        return self.agents[agent_id]


def make_agent(**overrides: Any) -> AgentConfig:
    defaults: dict[str, Any] = {
        "agent_id": "agent-1",
        "name": "Helper",
        "status": AgentStatus.ACTIVE,
        "execution_mode": ExecutionMode.PERSISTENT,
        "model": "gpt-4",
    }
    defaults.update(overrides)
    return AgentConfig(**defaults)


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------

SNAPSHOT_PATH = "/home/user/notes.txt"


@pytest.fixture
def settings(tmp_path) -> CoherexSettings:
    return CoherexSettings(
        _env_file=None,
        database_url=None,
        redis_url=None,
        data_root=str(tmp_path),
        e2b_api_key=None,
        simulation_fallback=True,
        snapshot_files=[SNAPSHOT_PATH],
        idle_after_seconds=60,
        lock_wait_timeout=1.0,
    )


@pytest.fixture
def sandbox() -> FakeSandbox:
    return FakeSandbox()


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def snapshots() -> InMemorySnapshotStore:
    return InMemorySnapshotStore()


@pytest.fixture
def agent() -> AgentConfig:
    return make_agent()


@pytest.fixture
def agent_factory() -> Callable[..., AgentConfig]:
    return make_agent


@pytest.fixture
def agents(agent: AgentConfig) -> StaticAgentProvider:
    return StaticAgentProvider(agent)


@pytest.fixture
def registry(settings: CoherexSettings) -> ExecutionRegistry:
    return ExecutionRegistry(lock_wait_timeout=settings.lock_wait_timeout)


@pytest.fixture
def manager(
    store: InMemorySessionStore,
    sandbox: FakeSandbox,
    agents: StaticAgentProvider,
    registry: ExecutionRegistry,
    snapshots: InMemorySnapshotStore,
    settings: CoherexSettings,
) -> SessionManager:
    return SessionManager(
        store=store,
        sandbox=sandbox,
        agents=agents,
        registry=registry,
        snapshots=snapshots,
        settings=settings,
    )


@pytest.fixture
def coordinator(
    manager: SessionManager,
    sandbox: FakeSandbox,
    registry: ExecutionRegistry,
    settings: CoherexSettings,
) -> ExecutionCoordinator:
    return ExecutionCoordinator(sessions=manager, sandbox=sandbox, registry=registry, settings=settings)


# ---------------------------------------------------------------------------
# HTTP fixture (integration)
# ---------------------------------------------------------------------------


@pytest.fixture
async def client(
    db_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
    sandbox: FakeSandbox,
    settings: CoherexSettings,
    tmp_path,
) -> AsyncIterator[AsyncClient]:
    """Async HTTP client wired to the app with a test DB session.

    Overrides ``get_db`` so every request uses the savepoint-isolated
    ``db_session`` fixture from the root conftest.  The app lifespan does
    NOT run under ``ASGITransport``, so state fields are pre-set here.
    """

    async def _override_get_db() -> AsyncIterator[AsyncSession]:
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db

    registry = ExecutionRegistry(lock_wait_timeout=settings.lock_wait_timeout)
    manager = SessionManager(
        store=SqlSessionStore(session_factory),
        sandbox=sandbox,
        agents=SqlAgentConfigProvider(session_factory),
        registry=registry,
        snapshots=LocalSnapshotStore(tmp_path),
        settings=settings,
    )

    # Pre-set state fields (lifespan does not run under ASGITransport).
    app.state.db_engine = None
    app.state.db_session_factory = session_factory
    app.state.redis = None
    app.state.registry = registry
    app.state.session_manager = manager
    app.state.coordinator = ExecutionCoordinator(
        sessions=manager,
        sandbox=sandbox,
        registry=registry,
        settings=settings,
    )

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
