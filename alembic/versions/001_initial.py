"""Initial schema: users, roles, role_assignments, api_tokens, workspaces, configuration_versions.

Revision ID: 001
Revises: None
Create Date: 2026-10-16
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("username", sa.String(255), primary_key=True),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column(
            "is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")
        ),
        _created_at(),
    )

    op.create_table(
        "roles",
        sa.Column("name", sa.String(63), primary_key=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "allow_labels",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "allow_names",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column(
            "deny_labels",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "deny_names",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column(
            "workspace_permission",
            sa.String(20),
            nullable=False,
            server_default="read",
        ),
        _created_at(),
    )

    op.create_table(
        "role_assignments",
        sa.Column(
            "username",
            sa.String(255),
            sa.ForeignKey("users.username", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("role_name", sa.String(63), primary_key=True),
        _created_at(),
    )

    op.create_table(
        "api_tokens",
        sa.Column("id", sa.String(63), primary_key=True),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column("description", sa.String(255), nullable=False, server_default=""),
        sa.Column("username", sa.String(255), nullable=False),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index("ix_api_tokens_token_hash", "api_tokens", ["token_hash"], unique=True)
    op.create_index("ix_api_tokens_username", "api_tokens", ["username"])

    op.create_table(
        "workspaces",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("org_name", sa.String(63), nullable=False, server_default="default"),
        sa.Column("name", sa.String(90), nullable=False),
        sa.Column(
            "labels",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("owner_username", sa.String(255), nullable=False, server_default=""),
        _created_at(),
        sa.UniqueConstraint("org_name", "name", name="uq_workspaces"),
    )

    op.create_table(
        "configuration_versions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "workspace_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("workspaces.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("source", sa.String(20), nullable=False, server_default="tfe-api"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column(
            "auto_queue_runs", sa.Boolean(), nullable=False, server_default=sa.text("true")
        ),
        sa.Column(
            "speculative", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column("commit_sha", sa.String(40), nullable=True),
        sa.Column("commit_url", sa.String(500), nullable=True),
        _created_at(),
    )
    op.create_index(
        "ix_configuration_versions_workspace_id", "configuration_versions", ["workspace_id"]
    )

    op.create_table(
        "configuration_version_status_timestamps",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "configuration_version_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("configuration_versions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_cv_status_timestamps_cv_id",
        "configuration_version_status_timestamps",
        ["configuration_version_id"],
    )


def downgrade() -> None:
    op.drop_table("configuration_version_status_timestamps")
    op.drop_table("configuration_versions")
    op.drop_table("workspaces")
    op.drop_table("api_tokens")
    op.drop_table("role_assignments")
    op.drop_table("roles")
    op.drop_table("users")
