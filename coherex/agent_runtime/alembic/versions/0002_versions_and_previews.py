"""Agent versions, preview links and preview feedback.

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-18 00:00:00

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0002"
down_revision: str | None = "0001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "agent_versions",
        sa.Column("version_id", sa.String(), nullable=False),
        sa.Column("agent_id", sa.String(), nullable=False),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), server_default="draft", nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("config", postgresql.JSONB(astext_type=sa.Text()), server_default="{}", nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(
            ["agent_id"], ["agents.agent_id"], name="fk_agent_versions_agent_id", ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("version_id", name=op.f("pk_agent_versions")),
        sa.UniqueConstraint("agent_id", "version_number", name="uq_agent_versions_agent_id_version_number"),
    )
    op.create_index(
        "uq_agent_versions_draft_agent_id",
        "agent_versions",
        ["agent_id"],
        unique=True,
        postgresql_where=sa.text("status = 'draft'"),
    )
    op.create_index(
        "uq_agent_versions_production_agent_id",
        "agent_versions",
        ["agent_id"],
        unique=True,
        postgresql_where=sa.text("status = 'production'"),
    )

    op.create_table(
        "preview_links",
        sa.Column("link_id", sa.String(), nullable=False),
        sa.Column("version_id", sa.String(), nullable=False),
        sa.Column("token", sa.String(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("password_hash", sa.String(), nullable=True),
        sa.Column("max_conversations", sa.Integer(), server_default="100", nullable=False),
        sa.Column("conversation_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("include_feedback", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_accessed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["version_id"],
            ["agent_versions.version_id"],
            name="fk_preview_links_version_id",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("link_id", name=op.f("pk_preview_links")),
        sa.UniqueConstraint("token", name=op.f("uq_preview_links_token")),
    )
    op.create_index("ix_preview_links_version_id", "preview_links", ["version_id"])

    op.create_table(
        "preview_feedback",
        sa.Column("feedback_id", sa.String(), nullable=False),
        sa.Column("link_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("rating", sa.Integer(), nullable=True),
        sa.Column("feedback_text", sa.Text(), nullable=True),
        sa.Column("context", postgresql.JSONB(astext_type=sa.Text()), server_default="{}", nullable=False),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint(
            "rating IS NULL OR rating BETWEEN 1 AND 5",
            name=op.f("ck_preview_feedback_rating_range"),
        ),
        sa.ForeignKeyConstraint(
            ["link_id"], ["preview_links.link_id"], name="fk_preview_feedback_link_id", ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("feedback_id", name=op.f("pk_preview_feedback")),
    )
    op.create_index("ix_preview_feedback_link_id", "preview_feedback", ["link_id"])


def downgrade() -> None:
    op.drop_index("ix_preview_feedback_link_id", table_name="preview_feedback")
    op.drop_table("preview_feedback")
    op.drop_index("ix_preview_links_version_id", table_name="preview_links")
    op.drop_table("preview_links")
    op.drop_index("uq_agent_versions_production_agent_id", table_name="agent_versions")
    op.drop_index("uq_agent_versions_draft_agent_id", table_name="agent_versions")
    op.drop_table("agent_versions")
