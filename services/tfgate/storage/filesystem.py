"""
Filesystem storage backend for tfgate.

Uses aiofiles for async I/O against a local directory. Writes land in a
hidden temp file beside the target and are renamed into place, so a
crashed or cancelled upload never leaves a truncated archive behind.
"""

from __future__ import annotations

import contextlib
import hashlib
import secrets
from datetime import UTC, datetime
from pathlib import Path

import aiofiles
import aiofiles.os

from tfgate.logging_config import get_logger
from tfgate.storage.protocol import ObjectMeta, ObjectNotFoundError, ObjectStoreError

logger = get_logger(__name__)

_TMP_SUFFIX = ".tmp"


class FilesystemStore:
    """Object store backed by the local filesystem."""

    def __init__(self, root_dir: str) -> None:
        self._root = Path(root_dir)
        self._root.mkdir(parents=True, exist_ok=True)
        logger.info("Filesystem store initialized", root_dir=str(self._root))

    def _full_path(self, key: str) -> Path:
        """Resolve key to a full filesystem path, preventing path traversal."""
        clean = Path(key)
        if not key or clean.is_absolute() or ".." in clean.parts:
            raise ObjectStoreError(f"Invalid key: {key}")
        return self._root / clean

    async def put(self, key: str, data: bytes) -> ObjectMeta:
        path = self._full_path(key)
        tmp_path = path.with_name(f".{path.name}.{secrets.token_hex(8)}{_TMP_SUFFIX}")

        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            async with aiofiles.open(tmp_path, "wb") as f:
                await f.write(data)
            await aiofiles.os.replace(tmp_path, path)
        except OSError as e:
            raise ObjectStoreError(f"Failed to write {key}: {e}") from e
        finally:
            # Partial file from a failed or cancelled write
            with contextlib.suppress(FileNotFoundError):
                tmp_path.unlink()

        stat = await aiofiles.os.stat(path)
        return ObjectMeta(
            key=key,
            size_bytes=len(data),
            etag=hashlib.md5(data).hexdigest(),  # noqa: S324
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=UTC),
        )

    async def get(self, key: str) -> bytes:
        path = self._full_path(key)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            raise ObjectNotFoundError(key) from None

    async def delete(self, key: str) -> None:
        path = self._full_path(key)
        with contextlib.suppress(FileNotFoundError):
            await aiofiles.os.remove(path)

    async def exists(self, key: str) -> bool:
        return await aiofiles.os.path.exists(self._full_path(key))

    async def close(self) -> None:
        """No resources to release for filesystem backend."""

    @property
    def root_dir(self) -> Path:
        """The root directory for stored objects."""
        return self._root
