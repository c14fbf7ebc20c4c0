"""Session data models.

A session binds one persistent-mode agent to a (possibly hibernated) sandbox
and to its append-only conversation log.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from coherex.agent_runtime.models.enums import SessionStatus, TurnRole

# -- Session -----------------------------------------------------------------


class SessionInfo(BaseModel):
    """Durable session row.

    Invariant: ``sandbox_ref`` is set iff ``status`` is ``active`` or ``idle``.
    """

    model_config = ConfigDict(from_attributes=True)

    session_id: str
    agent_id: str
    status: SessionStatus = SessionStatus.ACTIVE
    sandbox_ref: str | None = None
    execution_count: int = 0
    created_at: datetime | None = None
    last_activity_at: datetime | None = None
    hibernated_at: datetime | None = None
    stopped_at: datetime | None = None


class ConversationTurn(BaseModel):
    """One entry of a session's conversation log, ordered by ``seq``."""

    model_config = ConfigDict(from_attributes=True)

    seq: int
    role: TurnRole
    content: str
    created_at: datetime | None = None


# -- Hibernation snapshot ----------------------------------------------------


class SessionSnapshot(BaseModel):
    """Sandbox files captured on hibernate, replayed into the next sandbox on resume."""

    files: dict[str, str] = Field(default_factory=dict, description="Sandbox path -> text content")
    taken_at: datetime | None = None
