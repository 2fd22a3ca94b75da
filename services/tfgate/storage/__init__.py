"""
Object storage for configuration version archives.

Provides init_storage() / close_storage() for app lifespan and
get_storage() as a FastAPI dependency.
"""

from __future__ import annotations

from tfgate.config import settings
from tfgate.logging_config import get_logger
from tfgate.storage.protocol import ObjectStore

logger = get_logger(__name__)

# Module-level storage instance
_store: ObjectStore | None = None


async def init_storage() -> None:
    """Initialize the storage backend. Called during app startup (lifespan)."""
    global _store  # noqa: PLW0603
    from tfgate.storage.filesystem import FilesystemStore

    root_dir = settings.storage.filesystem.root_dir
    _store = FilesystemStore(root_dir=root_dir)
    logger.info("Storage initialized", backend="filesystem", root_dir=root_dir)


async def close_storage() -> None:
    """Close the storage backend. Called during app shutdown (lifespan)."""
    global _store  # noqa: PLW0603
    if _store is not None:
        await _store.close()
        _store = None
        logger.info("Storage closed")


def get_storage() -> ObjectStore:
    """FastAPI dependency that returns the storage backend.

    Raises RuntimeError if storage has not been initialized.
    """
    if _store is None:
        raise RuntimeError("Storage not initialized. Call init_storage() first.")
    return _store


def get_storage_or_none() -> ObjectStore | None:
    """Return the storage backend if initialized, otherwise None."""
    return _store
