"""SQLAlchemy ORM models for PostgreSQL.

These are the single source of truth for the database schema. Alembic reads
``Base.metadata`` to autogenerate migration scripts.

Uses SQLAlchemy 2.0 declarative style with ``Mapped`` type annotations.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, DateTime, ForeignKey, Index, Text, UniqueConstraint, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Timezone-aware timestamp type for all datetime columns.
TimestampTZ = DateTime(timezone=True)


class Base(DeclarativeBase):
    """Declarative base with naming convention for constraints."""

    pass


# Apply naming convention to the metadata for deterministic constraint names.
Base.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Agent(Base):
    __tablename__ = "agents"
    # Server defaults come back via RETURNING; async sessions cannot lazy-load them.
    __mapper_args__ = {"eager_defaults": True}

    agent_id: Mapped[str] = mapped_column(primary_key=True)
    name: Mapped[str]
    description: Mapped[str | None] = mapped_column(Text)
    agent_type: Mapped[str] = mapped_column(server_default="chatbot")
    status: Mapped[str] = mapped_column(server_default="draft")
    execution_mode: Mapped[str] = mapped_column(server_default="ephemeral")
    model: Mapped[str] = mapped_column(server_default="gpt-4")
    temperature: Mapped[float] = mapped_column(server_default="0.7")
    max_tokens: Mapped[int] = mapped_column(server_default="2000")
    system_prompt: Mapped[str | None] = mapped_column(Text)
    session_config: Mapped[dict] = mapped_column(JSONB, nullable=False, server_default="{}")
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now(), onupdate=func.now())


class AgentSession(Base):
    __tablename__ = "agent_sessions"
    __table_args__ = (
        Index("ix_agent_sessions_agent_id", "agent_id"),
        Index("ix_agent_sessions_status", "status"),
        # At most one non-stopped session per agent.
        Index(
            "uq_agent_sessions_open_agent_id",
            "agent_id",
            unique=True,
            postgresql_where=text("status <> 'stopped'"),
        ),
        CheckConstraint(
            "(sandbox_ref IS NOT NULL) = (status IN ('active', 'idle'))",
            name="sandbox_ref_live",
        ),
    )

    session_id: Mapped[str] = mapped_column(primary_key=True)
    agent_id: Mapped[str] = mapped_column(
        ForeignKey("agents.agent_id", name="fk_agent_sessions_agent_id", ondelete="CASCADE"),
    )
    status: Mapped[str] = mapped_column(server_default="active")
    sandbox_ref: Mapped[str | None]
    execution_count: Mapped[int] = mapped_column(default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())
    last_activity_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())
    hibernated_at: Mapped[datetime | None] = mapped_column(TimestampTZ)
    stopped_at: Mapped[datetime | None] = mapped_column(TimestampTZ)


class SessionTurn(Base):
    """Append-only conversation log, one row per turn."""

    __tablename__ = "session_turns"

    session_id: Mapped[str] = mapped_column(
        ForeignKey("agent_sessions.session_id", name="fk_session_turns_session_id", ondelete="CASCADE"),
        primary_key=True,
    )
    seq: Mapped[int] = mapped_column(primary_key=True)
    role: Mapped[str]
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())


class SessionActivityRow(Base):
    __tablename__ = "session_activities"
    __table_args__ = (Index("ix_session_activities_session_id", "session_id"),)

    activity_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(
        ForeignKey("agent_sessions.session_id", name="fk_session_activities_session_id", ondelete="CASCADE"),
    )
    activity_type: Mapped[str]
    detail: Mapped[dict | None] = mapped_column(JSONB)
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())


class AgentExecution(Base):
    __tablename__ = "agent_executions"
    __table_args__ = (
        Index("ix_agent_executions_agent_id", "agent_id"),
        Index("ix_agent_executions_status", "status"),
        CheckConstraint(
            "(completed_at IS NOT NULL) = (status IN ('completed', 'failed'))",
            name="completed_at_finished",
        ),
    )

    __mapper_args__ = {"eager_defaults": True}

    execution_id: Mapped[str] = mapped_column(primary_key=True)
    agent_id: Mapped[str] = mapped_column(
        ForeignKey("agents.agent_id", name="fk_agent_executions_agent_id", ondelete="CASCADE"),
    )
    # Plain column: the audit trail outlives the session row.
    session_id: Mapped[str | None]
    sandbox_ref: Mapped[str | None]
    mode: Mapped[str]
    status: Mapped[str] = mapped_column(server_default="pending")
    outcome: Mapped[str | None]
    input: Mapped[object | None] = mapped_column(JSONB)
    output: Mapped[object | None] = mapped_column(JSONB)
    error: Mapped[str | None] = mapped_column(Text)
    logs: Mapped[list] = mapped_column(JSONB, nullable=False, server_default="[]")
    duration_ms: Mapped[int | None]
    started_at: Mapped[datetime | None] = mapped_column(TimestampTZ)
    completed_at: Mapped[datetime | None] = mapped_column(TimestampTZ)
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())


class AgentVersion(Base):
    __tablename__ = "agent_versions"
    __table_args__ = (
        UniqueConstraint("agent_id", "version_number", name="uq_agent_versions_agent_id_version_number"),
        # At most one draft and one production version per agent.
        Index(
            "uq_agent_versions_draft_agent_id",
            "agent_id",
            unique=True,
            postgresql_where=text("status = 'draft'"),
        ),
        Index(
            "uq_agent_versions_production_agent_id",
            "agent_id",
            unique=True,
            postgresql_where=text("status = 'production'"),
        ),
    )

    __mapper_args__ = {"eager_defaults": True}

    version_id: Mapped[str] = mapped_column(primary_key=True)
    agent_id: Mapped[str] = mapped_column(
        ForeignKey("agents.agent_id", name="fk_agent_versions_agent_id", ondelete="CASCADE"),
    )
    version_number: Mapped[int]
    status: Mapped[str] = mapped_column(server_default="draft")
    name: Mapped[str]
    description: Mapped[str | None] = mapped_column(Text)
    config: Mapped[dict] = mapped_column(JSONB, nullable=False, server_default="{}")
    published_at: Mapped[datetime | None] = mapped_column(TimestampTZ)
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now(), onupdate=func.now())


class PreviewLink(Base):
    """Shareable, expiring link to one agent version."""

    __tablename__ = "preview_links"
    __table_args__ = (Index("ix_preview_links_version_id", "version_id"),)

    __mapper_args__ = {"eager_defaults": True}

    link_id: Mapped[str] = mapped_column(primary_key=True)
    version_id: Mapped[str] = mapped_column(
        ForeignKey("agent_versions.version_id", name="fk_preview_links_version_id", ondelete="CASCADE"),
    )
    token: Mapped[str] = mapped_column(unique=True)
    expires_at: Mapped[datetime] = mapped_column(TimestampTZ)
    # Hex SHA-256 of the password; NULL for open links.
    password_hash: Mapped[str | None]
    max_conversations: Mapped[int] = mapped_column(server_default="100")
    conversation_count: Mapped[int] = mapped_column(default=0, server_default="0")
    include_feedback: Mapped[bool] = mapped_column(server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())
    revoked_at: Mapped[datetime | None] = mapped_column(TimestampTZ)
    last_accessed_at: Mapped[datetime | None] = mapped_column(TimestampTZ)


class PreviewFeedback(Base):
    __tablename__ = "preview_feedback"
    __table_args__ = (
        Index("ix_preview_feedback_link_id", "link_id"),
        CheckConstraint("rating IS NULL OR rating BETWEEN 1 AND 5", name="rating_range"),
    )

    __mapper_args__ = {"eager_defaults": True}

    feedback_id: Mapped[str] = mapped_column(primary_key=True)
    link_id: Mapped[str] = mapped_column(
        ForeignKey("preview_links.link_id", name="fk_preview_feedback_link_id", ondelete="CASCADE"),
    )
    name: Mapped[str | None]
    email: Mapped[str | None]
    rating: Mapped[int | None]
    feedback_text: Mapped[str | None] = mapped_column(Text)
    context: Mapped[dict] = mapped_column(JSONB, nullable=False, server_default="{}")
    ip_address: Mapped[str | None]
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())
