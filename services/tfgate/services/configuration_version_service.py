"""Configuration version lifecycle service.

A configuration version starts pending, and moves exactly once to either
uploaded (archive stored) or errored (archive write failed). Every
subject-bearing operation is authorized against the owning workspace.
Upload is authorized by the signed URL that routed the request here, so it
takes no subject.
"""

import uuid
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tfgate.api.dependencies import AuthenticatedUser
from tfgate.db.models import (
    ConfigurationVersion,
    ConfigurationVersionStatusTimestamp,
    Workspace,
    utc_now,
)
from tfgate.logging_config import get_logger
from tfgate.services.workspace_rbac_service import Action, can_access
from tfgate.storage import get_storage
from tfgate.storage.keys import config_version_key
from tfgate.storage.protocol import ObjectNotFoundError, ObjectStoreError

logger = get_logger(__name__)

SOURCE_API = "tfe-api"
SOURCE_CLI = "terraform+cloud"
VALID_SOURCES = {SOURCE_API, SOURCE_CLI}

# Valid state transitions
VALID_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"uploaded", "errored"},
}


class ConfigurationVersionNotFoundError(Exception):
    """Raised when a configuration version or its workspace does not exist."""


class ConfigurationVersionStateError(Exception):
    """Raised when an operation is not valid for the version's current status."""


class ConfigurationVersionUploadError(Exception):
    """Raised when the archive could not be stored. The version is now errored."""


@dataclass
class ConfigurationVersionPage:
    items: list[ConfigurationVersion]
    current_page: int
    total_count: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return max(1, -(-self.total_count // self.page_size))


def can_transition(current: str, target: str) -> bool:
    """Check if a state transition is valid."""
    return target in VALID_TRANSITIONS.get(current, set())


def _transition(cv: ConfigurationVersion, target_status: str) -> None:
    if not can_transition(cv.status, target_status):
        raise ConfigurationVersionStateError(
            f"Invalid transition: {cv.status} → {target_status}"
        )
    cv.status = target_status
    cv.status_timestamps.append(
        ConfigurationVersionStatusTimestamp(status=target_status, timestamp=utc_now())
    )


async def _get_workspace(db: AsyncSession, workspace_id: uuid.UUID) -> Workspace:
    ws = await db.get(Workspace, workspace_id)
    if ws is None:
        raise ConfigurationVersionNotFoundError(f"Workspace {workspace_id} not found")
    return ws


async def _get_cv(
    db: AsyncSession, cv_id: uuid.UUID, for_update: bool = False
) -> ConfigurationVersion:
    stmt = select(ConfigurationVersion).where(ConfigurationVersion.id == cv_id)
    if for_update:
        stmt = stmt.with_for_update()
    cv = (await db.execute(stmt)).scalar_one_or_none()
    if cv is None:
        raise ConfigurationVersionNotFoundError(f"Configuration version {cv_id} not found")
    return cv


async def _authorize_cv(
    db: AsyncSession, user: AuthenticatedUser, action: Action, cv_id: uuid.UUID
) -> ConfigurationVersion:
    cv = await _get_cv(db, cv_id)
    await can_access(db, user, action, await _get_workspace(db, cv.workspace_id))
    return cv


async def create_configuration_version(
    db: AsyncSession,
    user: AuthenticatedUser,
    workspace_id: uuid.UUID,
    source: str = SOURCE_API,
    auto_queue_runs: bool = True,
    speculative: bool = False,
    commit_sha: str | None = None,
    commit_url: str | None = None,
) -> ConfigurationVersion:
    """Create a pending configuration version in a workspace."""
    ws = await _get_workspace(db, workspace_id)
    await can_access(db, user, Action.CREATE_CONFIGURATION_VERSION, ws)

    if source not in VALID_SOURCES:
        raise ValueError(f"Invalid configuration version source: {source!r}")

    cv = ConfigurationVersion(
        workspace_id=ws.id,
        source=source,
        status="pending",
        auto_queue_runs=auto_queue_runs,
        speculative=speculative,
        commit_sha=commit_sha,
        commit_url=commit_url,
        status_timestamps=[
            ConfigurationVersionStatusTimestamp(status="pending", timestamp=utc_now())
        ],
    )
    db.add(cv)
    await db.flush()

    logger.info(
        "Configuration version created",
        cv_id=str(cv.id),
        workspace=ws.name,
        source=source,
        username=user.username,
    )
    return cv


async def list_configuration_versions(
    db: AsyncSession,
    user: AuthenticatedUser,
    workspace_id: uuid.UUID,
    page_number: int = 1,
    page_size: int = 20,
) -> ConfigurationVersionPage:
    """List a workspace's configuration versions, newest first."""
    ws = await _get_workspace(db, workspace_id)
    await can_access(db, user, Action.LIST_CONFIGURATION_VERSIONS, ws)

    page_number = max(page_number, 1)
    page_size = min(max(page_size, 1), 100)

    total = await db.scalar(
        select(func.count())
        .select_from(ConfigurationVersion)
        .where(ConfigurationVersion.workspace_id == ws.id)
    )
    result = await db.execute(
        select(ConfigurationVersion)
        .where(ConfigurationVersion.workspace_id == ws.id)
        .order_by(ConfigurationVersion.created_at.desc())
        .offset((page_number - 1) * page_size)
        .limit(page_size)
    )
    return ConfigurationVersionPage(
        items=list(result.scalars().all()),
        current_page=page_number,
        total_count=total or 0,
        page_size=page_size,
    )


async def get_configuration_version(
    db: AsyncSession, user: AuthenticatedUser, cv_id: uuid.UUID
) -> ConfigurationVersion:
    return await _authorize_cv(db, user, Action.GET_CONFIGURATION_VERSION, cv_id)


async def get_latest_configuration_version(
    db: AsyncSession, user: AuthenticatedUser, workspace_id: uuid.UUID
) -> ConfigurationVersion:
    """Most recently created configuration version of a workspace, any status."""
    ws = await _get_workspace(db, workspace_id)
    await can_access(db, user, Action.GET_CONFIGURATION_VERSION, ws)

    result = await db.execute(
        select(ConfigurationVersion)
        .where(ConfigurationVersion.workspace_id == ws.id)
        .order_by(ConfigurationVersion.created_at.desc())
        .limit(1)
    )
    cv = result.scalar_one_or_none()
    if cv is None:
        raise ConfigurationVersionNotFoundError(
            f"Workspace {workspace_id} has no configuration versions"
        )
    return cv


async def delete_configuration_version(
    db: AsyncSession, user: AuthenticatedUser, cv_id: uuid.UUID
) -> None:
    """Delete a configuration version and its archive."""
    cv = await _authorize_cv(db, user, Action.DELETE_CONFIGURATION_VERSION, cv_id)
    key = config_version_key(str(cv.workspace_id), str(cv.id))

    await db.delete(cv)
    await db.flush()
    await get_storage().delete(key)

    logger.info("Configuration version deleted", cv_id=str(cv_id), username=user.username)


async def upload_configuration_version(
    db: AsyncSession, cv_id: uuid.UUID, data: bytes
) -> ConfigurationVersion:
    """Store the archive for a pending configuration version.

    The row is locked for the duration of the write so concurrent uploads
    to the same version serialize; the loser sees a non-pending status.

    Raises:
        ConfigurationVersionNotFoundError: No such configuration version.
        ConfigurationVersionStateError: The version is not pending.
        ConfigurationVersionUploadError: Storage failed; the version is now
            errored and that status has been committed.
    """
    cv = await _get_cv(db, cv_id, for_update=True)
    if cv.status != "pending":
        raise ConfigurationVersionStateError(
            f"Configuration version is {cv.status}, not pending"
        )

    key = config_version_key(str(cv.workspace_id), str(cv.id))
    try:
        await get_storage().put(key, data)
    except ObjectStoreError as e:
        logger.error(
            "Configuration upload failed", cv_id=str(cv.id), key=key, exc_info=True
        )
        _transition(cv, "errored")
        # The caller's session rolls back on the raise below
        await db.commit()
        raise ConfigurationVersionUploadError(str(cv.id)) from e

    _transition(cv, "uploaded")
    await db.flush()

    logger.info("Configuration uploaded", cv_id=str(cv.id), size=len(data))
    return cv


async def download_configuration_version(
    db: AsyncSession, user: AuthenticatedUser, cv_id: uuid.UUID
) -> bytes:
    """Return the stored archive of an uploaded configuration version."""
    cv = await _authorize_cv(db, user, Action.DOWNLOAD_CONFIGURATION_VERSION, cv_id)
    if cv.status != "uploaded":
        raise ConfigurationVersionStateError(
            f"Configuration version is {cv.status}, not uploaded"
        )

    key = config_version_key(str(cv.workspace_id), str(cv.id))
    try:
        return await get_storage().get(key)
    except ObjectNotFoundError:
        raise ConfigurationVersionNotFoundError(f"Archive for {cv_id} not found") from None
