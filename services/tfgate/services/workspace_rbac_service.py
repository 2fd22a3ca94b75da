"""Workspace authorization for configuration version operations.

Resolves the highest permission level a user has on a workspace using the
label-based RBAC model, then checks it against the level each action needs.

Permission hierarchy: read < plan < write < admin
Resolution order: platform admin > workspace owner > label RBAC > audit > everyone > none
Deny rules on a custom role take precedence over that role's allow rules.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tfgate.auth.builtin_roles import ADMIN_ROLE, AUDIT_ROLE, BUILTIN_ROLE_NAMES
from tfgate.db.models import Role, Workspace
from tfgate.logging_config import get_logger

if TYPE_CHECKING:
    from tfgate.api.dependencies import AuthenticatedUser

logger = get_logger(__name__)

PERMISSION_HIERARCHY = {"read": 0, "plan": 1, "write": 2, "admin": 3}


class Action(StrEnum):
    CREATE_CONFIGURATION_VERSION = "create_configuration_version"
    LIST_CONFIGURATION_VERSIONS = "list_configuration_versions"
    GET_CONFIGURATION_VERSION = "get_configuration_version"
    DOWNLOAD_CONFIGURATION_VERSION = "download_configuration_version"
    DELETE_CONFIGURATION_VERSION = "delete_configuration_version"


# Minimum workspace permission required per action
ACTION_PERMISSIONS: dict[Action, str] = {
    Action.CREATE_CONFIGURATION_VERSION: "plan",
    Action.LIST_CONFIGURATION_VERSIONS: "read",
    Action.GET_CONFIGURATION_VERSION: "read",
    Action.DOWNLOAD_CONFIGURATION_VERSION: "read",
    Action.DELETE_CONFIGURATION_VERSION: "admin",
}


class AuthorizationError(Exception):
    """Raised when a subject may not perform an action on a workspace."""

    def __init__(self, username: str, action: Action, workspace_id: str) -> None:
        self.username = username
        self.action = action
        self.workspace_id = workspace_id
        super().__init__(f"{username!r} may not {action} on workspace {workspace_id}")


def merge_labels(target: dict[str, set[str]], source: dict) -> None:
    """Merge label permissions from source into target."""
    for key, values in source.items():
        bucket = target.setdefault(key, set())
        if isinstance(values, list):
            bucket.update(values)
        else:
            bucket.add(values)


def matches_labels(resource_labels: dict, permission_labels: dict[str, set[str]]) -> bool:
    """True if any permission label key is on the resource with an allowed value."""
    return any(
        key in resource_labels and resource_labels[key] in values
        for key, values in permission_labels.items()
    )


def has_permission(effective: str | None, required: str) -> bool:
    """Check if effective permission meets the required level."""
    if effective is None:
        return False
    return PERMISSION_HIERARCHY.get(effective, -1) >= PERMISSION_HIERARCHY.get(required, 99)


def _higher(a: str | None, b: str) -> str:
    if a is None or PERMISSION_HIERARCHY.get(b, -1) > PERMISSION_HIERARCHY.get(a, -1):
        return b
    return a


async def resolve_workspace_permission(
    db: AsyncSession,
    username: str,
    user_roles: list[str],
    workspace: Workspace,
) -> str | None:
    """Returns the highest permission level for a user on a workspace, or None."""
    role_set = set(user_roles)

    if ADMIN_ROLE in role_set:
        return "admin"

    if workspace.owner_username and workspace.owner_username == username:
        return "admin"

    best: str | None = None
    resource_labels = workspace.labels or {}

    custom_role_names = role_set - BUILTIN_ROLE_NAMES
    if custom_role_names:
        result = await db.execute(select(Role).where(Role.name.in_(custom_role_names)))
        for role in result.scalars().all():
            deny_labels: dict[str, set[str]] = {}
            merge_labels(deny_labels, role.deny_labels)
            if workspace.name in role.deny_names or matches_labels(resource_labels, deny_labels):
                continue

            allow_labels: dict[str, set[str]] = {}
            merge_labels(allow_labels, role.allow_labels)
            if workspace.name in role.allow_names or matches_labels(resource_labels, allow_labels):
                best = _higher(best, role.workspace_permission)

    if AUDIT_ROLE in role_set:
        best = _higher(best, "read")

    if resource_labels.get("access") == "everyone":
        best = _higher(best, "read")

    return best


async def can_access(
    db: AsyncSession,
    user: AuthenticatedUser,
    action: Action,
    workspace: Workspace,
) -> AuthenticatedUser:
    """Authorize user for action on workspace.

    Returns the subject unchanged so callers can log who acted.

    Raises:
        AuthorizationError: The user's effective permission is insufficient.
    """
    effective = await resolve_workspace_permission(db, user.username, user.roles, workspace)
    if not has_permission(effective, ACTION_PERMISSIONS[action]):
        logger.info(
            "Workspace access denied",
            username=user.username,
            action=str(action),
            workspace_id=str(workspace.id),
            effective=effective,
        )
        raise AuthorizationError(user.username, action, str(workspace.id))
    return user
