"""
SQLAlchemy database models for tfgate.

All models use:
- UUIDv7 primary keys (time-sortable), except users (username PK) and roles (name PK)
- snake_case column names
- Plural table names
- TIMESTAMPTZ with UTC for all timestamps
- Hard deletes (no soft delete columns)
"""

import uuid
from datetime import UTC, datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def generate_uuid7() -> uuid.UUID:
    """Generate a UUIDv7 (time-sortable UUID)."""
    import time

    timestamp_ms = int(time.time() * 1000)
    rand_bytes = uuid.uuid4().bytes[6:]

    uuid_bytes = (
        timestamp_ms.to_bytes(6, "big")
        + bytes([0x70 | (rand_bytes[0] & 0x0F)])  # Version 7
        + bytes([0x80 | (rand_bytes[1] & 0x3F)])  # Variant
        + rand_bytes[2:]
    )
    return uuid.UUID(bytes=uuid_bytes)


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all models."""

    type_annotation_map = {
        dict[str, Any]: JSONB,
    }


class User(Base):
    """User account model.

    PK is the username, which is what authorization codes carry and what
    API tokens are bound to. Credentials are handled by the login
    machinery in front of tfgate, never stored here.
    """

    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String(255), primary_key=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )


class Role(Base):
    """Custom role model for workspace RBAC.

    Built-in roles (admin, audit, everyone) are defined in
    tfgate.auth.builtin_roles and have no rows here.
    """

    __tablename__ = "roles"

    name: Mapped[str] = mapped_column(String(63), primary_key=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    allow_labels: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict, nullable=False)
    allow_names: Mapped[list[str]] = mapped_column(JSONB, default=list, nullable=False)
    deny_labels: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict, nullable=False)
    deny_names: Mapped[list[str]] = mapped_column(JSONB, default=list, nullable=False)
    workspace_permission: Mapped[str] = mapped_column(
        String(20), nullable=False, default="read"
    )  # read, plan, write, admin

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )


class RoleAssignment(Base):
    """Maps usernames to role names (built-in or custom)."""

    __tablename__ = "role_assignments"

    username: Mapped[str] = mapped_column(
        String(255), ForeignKey("users.username", ondelete="CASCADE"), primary_key=True
    )
    role_name: Mapped[str] = mapped_column(String(63), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )


class APIToken(Base):
    """Long-lived API tokens minted by `terraform login`.

    Tokens are hashed at rest (SHA-256). The raw token value is only
    returned once at creation time. Lookup by hash on every request
    (indexed column).
    """

    __tablename__ = "api_tokens"

    id: Mapped[str] = mapped_column(String(63), primary_key=True)  # "at-{hex}"
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    description: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    username: Mapped[str] = mapped_column(String(255), nullable=False)

    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (
        Index("ix_api_tokens_username", "username"),
    )


class Workspace(Base):
    """Terraform workspace, the RBAC boundary for configuration versions."""

    __tablename__ = "workspaces"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=generate_uuid7
    )
    org_name: Mapped[str] = mapped_column(String(63), nullable=False, default="default")
    name: Mapped[str] = mapped_column(String(90), nullable=False)

    # RBAC
    labels: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict, nullable=False)
    owner_username: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    configuration_versions: Mapped[list["ConfigurationVersion"]] = relationship(
        back_populates="workspace", cascade="all, delete-orphan"
    )

    __table_args__ = (
        sa.UniqueConstraint("org_name", "name", name="uq_workspaces"),
    )


# --- Configuration Versions ---


class ConfigurationVersion(Base):
    """Configuration version: an uploaded Terraform configuration archive.

    Lifecycle: pending → uploaded | errored. Both end states are terminal.
    The archive bytes live in object storage under config_version_key().
    """

    __tablename__ = "configuration_versions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=generate_uuid7
    )
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
    )
    source: Mapped[str] = mapped_column(
        String(20), nullable=False, default="tfe-api"
    )  # tfe-api, terraform+cloud
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending"
    )  # pending, uploaded, errored
    auto_queue_runs: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    speculative: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Ingress attributes (set when the configuration came from a VCS commit)
    commit_sha: Mapped[str | None] = mapped_column(String(40), nullable=True)
    commit_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    workspace: Mapped["Workspace"] = relationship(back_populates="configuration_versions")
    status_timestamps: Mapped[list["ConfigurationVersionStatusTimestamp"]] = relationship(
        back_populates="configuration_version",
        cascade="all, delete-orphan",
        order_by="ConfigurationVersionStatusTimestamp.timestamp",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_configuration_versions_workspace_id", "workspace_id"),
    )


class ConfigurationVersionStatusTimestamp(Base):
    """One row per status transition of a configuration version."""

    __tablename__ = "configuration_version_status_timestamps"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=generate_uuid7
    )
    configuration_version_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("configuration_versions.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    configuration_version: Mapped["ConfigurationVersion"] = relationship(
        back_populates="status_timestamps"
    )

    __table_args__ = (
        Index("ix_cv_status_timestamps_cv_id", "configuration_version_id"),
    )
