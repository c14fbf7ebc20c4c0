"""Shared enumerations used across the agent runtime."""

from __future__ import annotations

from enum import StrEnum

# -- Agent -------------------------------------------------------------------


class AgentStatus(StrEnum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


EXECUTABLE_AGENT_STATUSES = frozenset({AgentStatus.ACTIVE, AgentStatus.DRAFT})


class ExecutionMode(StrEnum):
    """How an agent's invocations map onto sandboxes."""

    EPHEMERAL = "ephemeral"
    PERSISTENT = "persistent"


class AgentType(StrEnum):
    DATA_PROCESSOR = "data_processor"
    ANALYZER = "analyzer"
    CHATBOT = "chatbot"
    AUTOMATION = "automation"
    CUSTOM = "custom"


class VersionStatus(StrEnum):
    """Lifecycle of an agent version.

    An agent has at most one ``draft`` and at most one ``production``
    version; publishing archives the previous production version.
    """

    DRAFT = "draft"
    PRODUCTION = "production"
    ARCHIVED = "archived"


# -- Session -----------------------------------------------------------------


class SessionStatus(StrEnum):
    """Durable session status.

    ``active`` and ``idle`` both hold a live sandbox and obey the same
    transition rules; ``idle`` only marks a session that has not been used
    recently.  ``stopped`` is terminal.
    """

    ACTIVE = "active"
    IDLE = "idle"
    HIBERNATED = "hibernated"
    STOPPED = "stopped"


LIVE_SESSION_STATUSES = frozenset({SessionStatus.ACTIVE, SessionStatus.IDLE})
"""Statuses that own a sandbox (``sandbox_ref`` is non-null)."""

OPEN_SESSION_STATUSES = frozenset({SessionStatus.ACTIVE, SessionStatus.IDLE, SessionStatus.HIBERNATED})
"""Every non-terminal status."""


class TurnRole(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"


class ActivityType(StrEnum):
    """Lifecycle events written to the session activity log."""

    STARTED = "started"
    EXECUTION = "execution"
    IDLED = "idled"
    HIBERNATED = "hibernated"
    RESUMED = "resumed"
    STOPPED = "stopped"


class SessionAction(StrEnum):
    """Actions accepted by the session PATCH endpoint."""

    HIBERNATE = "hibernate"
    RESUME = "resume"
    STOP = "stop"


# -- Execution record --------------------------------------------------------


class ExecutionStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


FINISHED_EXECUTION_STATUSES = frozenset({ExecutionStatus.COMPLETED, ExecutionStatus.FAILED})


class OutcomeKind(StrEnum):
    """Whether an execution really ran in a sandbox or was simulated."""

    REAL = "real"
    SIMULATED = "simulated"
