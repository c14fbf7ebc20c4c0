"""API request / response schemas.

These thin schemas sit between HTTP and the managers.  They are separate
from the domain models in ``agent.py`` / ``session.py`` / ``execution.py``
because they serve a different purpose:

- **Create** schemas validate user input and provide defaults.
- **Update** schemas allow partial updates via ``exclude_unset``.
- **Response** schemas serialize ORM rows via ``from_attributes``.

Every endpoint answers with the ``ApiResponse`` envelope
(``{"success": ..., "data": ..., "error": ...}``); failures raised as domain
exceptions are rendered as ``ErrorResponse`` by the app's exception handlers.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

from coherex.agent_runtime.models.agent import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_MODEL,
    DEFAULT_TEMPERATURE,
    SessionConfig,
    VersionConfig,
)
from coherex.agent_runtime.models.enums import AgentStatus, AgentType, ExecutionMode, SessionAction, VersionStatus
from coherex.agent_runtime.models.session import ConversationTurn, SessionInfo

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


class ApiResponse(BaseModel, Generic[T]):
    """Success envelope.

    ``success`` may be ``False`` with HTTP 200 for executions whose sandbox ran
    but whose command failed, so a UI can render the degraded result.
    """

    success: bool = True
    data: T | None = None
    error: str | None = None
    message: str | None = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    details: str | None = None


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------


class AgentCreate(BaseModel):
    """Input for creating a new agent."""

    agent_id: str | None = Field(default=None, description="Optional; auto-generated UUID if omitted.")
    name: str
    description: str | None = None
    agent_type: AgentType = AgentType.CHATBOT
    status: AgentStatus = AgentStatus.DRAFT
    execution_mode: ExecutionMode = ExecutionMode.EPHEMERAL
    model: str = DEFAULT_MODEL
    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0.0, le=2.0)
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, ge=1)
    system_prompt: str | None = None
    session_config: SessionConfig = Field(default_factory=SessionConfig)


class AgentUpdate(BaseModel):
    """Partial update -- only fields explicitly set by the caller are applied."""

    name: str | None = None
    description: str | None = None
    agent_type: AgentType | None = None
    status: AgentStatus | None = None
    execution_mode: ExecutionMode | None = None
    model: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1)
    system_prompt: str | None = None
    session_config: SessionConfig | None = None


class AgentResponse(BaseModel):
    """Serialized agent returned to clients."""

    model_config = ConfigDict(from_attributes=True)

    agent_id: str
    name: str
    description: str | None = None
    agent_type: AgentType
    status: AgentStatus
    execution_mode: ExecutionMode
    model: str
    temperature: float
    max_tokens: int
    system_prompt: str | None = None
    session_config: SessionConfig
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class SessionCreateRequest(BaseModel):
    force_new: bool = Field(default=False, description="Stop any live session and provision a fresh one.")


class SessionExecuteRequest(BaseModel):
    input: str = Field(min_length=1)
    include_context: bool = True


class SessionActionRequest(BaseModel):
    action: SessionAction


class SessionDetail(BaseModel):
    """Session row plus its conversation log."""

    session: SessionInfo
    turns: list[ConversationTurn] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class ExecuteRequest(BaseModel):
    """Body of ``POST /agents/{agent_id}/execute``.

    The persistent path is taken when the agent is persistent, when
    ``use_session`` is set, or when ``session_id`` is given.
    """

    input: Any
    session_id: str | None = None
    use_session: bool = False
    include_context: bool = True


# ---------------------------------------------------------------------------
# Version
# ---------------------------------------------------------------------------


class VersionUpdate(BaseModel):
    """Partial update of a draft version."""

    name: str | None = None
    description: str | None = None
    config: VersionConfig | None = None


class VersionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    version_id: str
    agent_id: str
    version_number: int
    status: VersionStatus
    name: str
    description: str | None = None
    config: VersionConfig
    published_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Preview links
# ---------------------------------------------------------------------------


class PreviewLinkCreate(BaseModel):
    password: str | None = Field(default=None, min_length=1, description="Protect the link with a password.")
    expiration_hours: int = Field(default=72, ge=1, le=24 * 90)
    max_conversations: int = Field(default=100, ge=1)
    include_feedback: bool = True


class PreviewLinkResponse(BaseModel):
    """A preview link as shown to the agent's owner.  The password hash is never exposed."""

    link_id: str
    version_id: str
    token: str
    url: str
    expires_at: datetime
    requires_password: bool
    max_conversations: int
    conversation_count: int
    include_feedback: bool
    created_at: datetime
    revoked_at: datetime | None = None
    last_accessed_at: datetime | None = None
    is_expired: bool
    is_active: bool


class PreviewInfo(BaseModel):
    """What a preview visitor sees: the version and its agent, without secrets."""

    link_id: str
    agent_id: str
    agent_name: str
    version_id: str
    version_number: int
    version_name: str
    description: str | None = None
    config: VersionConfig
    requires_password: bool
    include_feedback: bool
    conversations_remaining: int
    expires_at: datetime


class PreviewVerifyRequest(BaseModel):
    password: str = Field(min_length=1)


class FeedbackCreate(BaseModel):
    name: str | None = None
    email: str | None = None
    rating: int | None = Field(default=None, ge=1, le=5)
    feedback_text: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _rating_or_text(self) -> FeedbackCreate:
        if self.rating is None and not self.feedback_text:
            msg = "Provide a rating or feedback text"
            raise ValueError(msg)
        return self


class FeedbackResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    feedback_id: str
    link_id: str
    name: str | None = None
    email: str | None = None
    rating: int | None = None
    feedback_text: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime


class FeedbackSummary(BaseModel):
    feedback: list[FeedbackResponse] = Field(default_factory=list)
    total: int = 0
    average_rating: float | None = None
    """Mean of the rated entries; ``None`` when nothing was rated."""
    rating_distribution: dict[int, int] = Field(default_factory=dict)
