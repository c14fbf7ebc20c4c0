"""Store interfaces for session persistence.

Two stores back a persistent session:

- **SessionStore**: the durable session index, its append-only conversation
  log and its lifecycle activity log.  Always read fresh; nothing is cached
  in process, so every worker sees the same state.
- **SnapshotStore**: file snapshots captured from a sandbox on hibernate and
  replayed into the replacement sandbox on resume.
"""

from __future__ import annotations

from collections.abc import Collection
from datetime import datetime
from typing import Protocol, runtime_checkable

from coherex.agent_runtime.models.enums import ActivityType, SessionStatus
from coherex.agent_runtime.models.session import ConversationTurn, SessionInfo, SessionSnapshot


@runtime_checkable
class SessionStore(Protocol):
    """Async protocol for session rows, turns and activities."""

    async def create(self, agent_id: str, sandbox_ref: str) -> SessionInfo:
        """Insert a new ``active`` session.

        Raises ``SessionConflictError`` if the agent already has a
        non-stopped session.
        """
        ...

    async def get(self, session_id: str) -> SessionInfo | None: ...

    async def find_live(self, agent_id: str) -> SessionInfo | None:
        """Return the agent's non-stopped session, if any."""
        ...

    async def list_for_agent(self, agent_id: str) -> list[SessionInfo]:
        """All sessions of an agent, newest first."""
        ...

    async def transition(
        self,
        session_id: str,
        *,
        expected: Collection[SessionStatus],
        status: SessionStatus,
        sandbox_ref: str | None = None,
    ) -> SessionInfo | None:
        """Compare-and-swap the session status.

        The update applies only while the stored status is one of *expected*;
        otherwise nothing changes and ``None`` is returned.  Moving to a
        non-live status clears ``sandbox_ref``; moving to a live status sets it
        to *sandbox_ref*, or keeps the current one when omitted.
        """
        ...

    async def record_success(self, session_id: str, user_content: str, assistant_content: str) -> SessionInfo:
        """Atomically append a (user, assistant) turn pair and mark activity.

        Also bumps ``execution_count`` and moves an ``idle`` session back to
        ``active``.
        """
        ...

    async def list_turns(self, session_id: str, limit: int | None = None) -> list[ConversationTurn]:
        """Turns in ``seq`` order; with *limit*, only the newest *limit* turns."""
        ...

    async def find_idle_candidates(self, statuses: Collection[SessionStatus], before: datetime) -> list[SessionInfo]:
        """Sessions in *statuses* whose last activity is older than *before*."""
        ...

    async def log_activity(self, session_id: str, activity_type: ActivityType, detail: dict | None = None) -> None: ...


@runtime_checkable
class SnapshotStore(Protocol):
    """Async protocol for hibernation snapshots, keyed by session_id."""

    async def write_snapshot(self, session_id: str, snapshot: SessionSnapshot) -> None: ...

    async def read_snapshot(self, session_id: str) -> SessionSnapshot:
        """Raises ``FileNotFoundError`` if no snapshot exists."""
        ...

    async def exists(self, session_id: str) -> bool: ...

    async def delete(self, session_id: str) -> None:
        """No-op if not found."""
        ...
