"""Agent configuration models.

The agent row is owned by the agents CRUD endpoints; the session manager and
the execution coordinator only ever read it, as an ``AgentConfig``.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from coherex.agent_runtime.models.enums import (
    EXECUTABLE_AGENT_STATUSES,
    AgentStatus,
    AgentType,
    ExecutionMode,
)

DEFAULT_MODEL = "gpt-4"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 2000


class SessionConfig(BaseModel):
    """Per-agent knobs for persistent sessions."""

    idle_timeout_minutes: int = Field(default=30, ge=1, description="Hibernate after this much inactivity.")
    max_context_messages: int = Field(default=50, ge=0, description="Newest turns replayed into a prompt.")


class VersionConfig(BaseModel):
    """The behavioural part of an agent that a version captures.

    Publishing a version writes these fields back onto the agent row.
    """

    model_config = ConfigDict(from_attributes=True)

    agent_type: AgentType = AgentType.CHATBOT
    execution_mode: ExecutionMode = ExecutionMode.EPHEMERAL
    model: str = DEFAULT_MODEL
    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0.0, le=2.0)
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, ge=1)
    system_prompt: str | None = None
    session_config: SessionConfig = Field(default_factory=SessionConfig)


class AgentConfig(BaseModel):
    """Read-only view of an agent, as consumed by the execution pipeline."""

    model_config = ConfigDict(from_attributes=True)

    agent_id: str
    name: str
    description: str | None = None
    agent_type: AgentType = AgentType.CHATBOT
    status: AgentStatus = AgentStatus.DRAFT
    execution_mode: ExecutionMode = ExecutionMode.EPHEMERAL
    model: str = DEFAULT_MODEL
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    system_prompt: str | None = None
    session_config: SessionConfig = Field(default_factory=SessionConfig)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_executable(self) -> bool:
        return self.status in EXECUTABLE_AGENT_STATUSES

    @property
    def is_persistent(self) -> bool:
        return self.execution_mode == ExecutionMode.PERSISTENT

    @property
    def effective_system_prompt(self) -> str:
        return self.system_prompt or f"You are {self.name}, a helpful AI assistant."
