"""
Object storage protocol and types for tfgate.

Defines the ObjectStore Protocol that storage backends must satisfy,
along with shared data types and exceptions.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, runtime_checkable

# --- Data Types ---


@dataclass(frozen=True)
class ObjectMeta:
    """Metadata about a stored object."""

    key: str
    size_bytes: int
    etag: str
    last_modified: datetime


# --- Exceptions ---


class ObjectStoreError(Exception):
    """Base exception for object store operations."""


class ObjectNotFoundError(ObjectStoreError):
    """Raised when a requested object does not exist."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Object not found: {key}")


# --- Protocol ---


@runtime_checkable
class ObjectStore(Protocol):
    """Protocol defining the object storage interface.

    All methods are async. Implementations satisfy this interface
    structurally; no inheritance required.
    """

    async def put(self, key: str, data: bytes) -> ObjectMeta:
        """Store an object, replacing any existing object atomically.

        Readers never observe a partially written object.

        Raises:
            ObjectStoreError: The write failed; no object was stored.
        """
        ...

    async def get(self, key: str) -> bytes:
        """Retrieve an object's content.

        Raises:
            ObjectNotFoundError: If the object does not exist.
        """
        ...

    async def delete(self, key: str) -> None:
        """Delete an object. Does not raise if the object does not exist."""
        ...

    async def exists(self, key: str) -> bool:
        ...

    async def close(self) -> None:
        """Release any resources held by the backend."""
        ...
