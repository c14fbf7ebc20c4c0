"""Domain exceptions shared by managers, the sandbox layer and routers.

Exceptions derive from the builtin they specialise (``LookupError`` for
missing things, ``ValueError`` for illegal requests, ``RuntimeError`` for
failures of external collaborators).  Managers raise these; translating them
into HTTP responses is the job of the handlers registered in ``app``.
"""

from __future__ import annotations

# -- Not found ---------------------------------------------------------------


class NotFoundError(LookupError):
    """A referenced agent, session, execution, version or preview link does not exist."""


class AgentNotFoundError(NotFoundError):
    def __init__(self, agent_id: str) -> None:
        super().__init__(f"Agent '{agent_id}' not found")
        self.agent_id = agent_id


class SessionNotFoundError(NotFoundError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session '{session_id}' not found")
        self.session_id = session_id


class ExecutionNotFoundError(NotFoundError):
    def __init__(self, execution_id: str) -> None:
        super().__init__(f"Execution '{execution_id}' not found")
        self.execution_id = execution_id


class VersionNotFoundError(NotFoundError):
    def __init__(self, version_id: str) -> None:
        super().__init__(f"Version '{version_id}' not found")
        self.version_id = version_id


class PreviewLinkNotFoundError(NotFoundError):
    """Unknown token.  The message never echoes the token back."""

    def __init__(self) -> None:
        super().__init__("Invalid preview link")


class PreviewLinkGoneError(NotFoundError):
    """The preview link exists but has expired or been revoked."""


# -- Illegal requests --------------------------------------------------------


class InvalidStateError(ValueError):
    """The requested transition is illegal for the current status."""


class AgentNotExecutableError(InvalidStateError):
    """Only ``active`` and ``draft`` agents can be executed."""


class SessionBusyError(InvalidStateError):
    """Another execution holds the session lease."""


class UnsupportedModeError(ValueError):
    """A persistent-session operation was requested on an ephemeral agent."""


class DuplicateAgentError(ValueError):
    """An agent with the given ID already exists."""


class SessionConflictError(ValueError):
    """A live session already exists for the agent (single-live-session rule)."""


class PreviewLimitReachedError(InvalidStateError):
    """The preview link has used up its conversations."""


class FeedbackDisabledError(InvalidStateError):
    """The preview link was created without feedback collection."""


class PreviewPasswordError(ValueError):
    """The password given for a protected preview does not match."""


# -- External collaborator failures ------------------------------------------


class ProvisioningError(RuntimeError):
    """The sandbox service could not create or resume a sandbox."""


class ExecutionError(RuntimeError):
    """The sandbox ran but the dispatched command failed."""

    def __init__(self, message: str, *, logs: list[str] | None = None) -> None:
        super().__init__(message)
        self.logs = logs or []
