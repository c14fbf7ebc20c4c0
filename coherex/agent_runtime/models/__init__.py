"""Data models for the agent runtime."""

from coherex.agent_runtime.models.agent import AgentConfig, SessionConfig, VersionConfig
from coherex.agent_runtime.models.api import (
    AgentCreate,
    AgentResponse,
    AgentUpdate,
    ApiResponse,
    ErrorResponse,
    ExecuteRequest,
    FeedbackCreate,
    FeedbackResponse,
    FeedbackSummary,
    PreviewInfo,
    PreviewLinkCreate,
    PreviewLinkResponse,
    PreviewVerifyRequest,
    SessionActionRequest,
    SessionCreateRequest,
    SessionDetail,
    SessionExecuteRequest,
    VersionResponse,
    VersionUpdate,
)
from coherex.agent_runtime.models.enums import (
    ActivityType,
    AgentStatus,
    AgentType,
    ExecutionMode,
    ExecutionStatus,
    OutcomeKind,
    SessionAction,
    SessionStatus,
    TurnRole,
    VersionStatus,
)
from coherex.agent_runtime.models.execution import (
    ExecutionOutcome,
    ExecutionRecord,
    ExecutionReport,
    RealOutcome,
    SessionExecution,
    SimulatedOutcome,
)
from coherex.agent_runtime.models.session import (
    ConversationTurn,
    SessionInfo,
    SessionSnapshot,
)

__all__ = [
    # Enums
    "ActivityType",
    # Agent
    "AgentConfig",
    # API schemas
    "AgentCreate",
    "AgentResponse",
    "AgentStatus",
    "AgentType",
    "AgentUpdate",
    "ApiResponse",
    # Session
    "ConversationTurn",
    "ErrorResponse",
    "ExecuteRequest",
    "ExecutionMode",
    # Execution
    "ExecutionOutcome",
    "ExecutionRecord",
    "ExecutionReport",
    "ExecutionStatus",
    "FeedbackCreate",
    "FeedbackResponse",
    "FeedbackSummary",
    "OutcomeKind",
    "PreviewInfo",
    "PreviewLinkCreate",
    "PreviewLinkResponse",
    "PreviewVerifyRequest",
    "RealOutcome",
    "SessionAction",
    "SessionActionRequest",
    "SessionConfig",
    "SessionCreateRequest",
    "SessionDetail",
    "SessionExecuteRequest",
    "SessionExecution",
    "SessionInfo",
    "SessionSnapshot",
    "SessionStatus",
    "SimulatedOutcome",
    "TurnRole",
    "VersionConfig",
    "VersionResponse",
    "VersionStatus",
    "VersionUpdate",
]
