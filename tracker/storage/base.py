"""
Persistence interfaces.

Workflows only ever talk to these three ABCs; which backend sits behind
each one is decided in storage/factory.py.

Integration Points:
- MetadataStorage -> relational store (users, projects, tickets, ...)
- CacheStorage -> Redis (token revocation list, one-time action tokens)
- ContentStorage -> S3 (ticket file attachments)

Every MetadataStorage method is a single atomic operation. Workflows rely on
that for uniqueness (project name per owner, one pending role request per
user) and for membership/assignment set changes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel


# =============================================================================
# Errors
# =============================================================================


class StorageError(Exception):
    """A storage backend failed."""
    pass


class DuplicateKeyError(StorageError):
    """An insert or update violated a unique constraint."""

    def __init__(self, collection: str, fields: tuple[str, ...]):
        self.collection = collection
        self.fields = fields
        super().__init__(f"Unique constraint {fields} violated in '{collection}'")


# =============================================================================
# Storage Interfaces
# =============================================================================


class MetadataStorage(ABC):
    """
    Storage for structured records, keyed by integer id.

    Implementations enforce the unique keys in `UNIQUE_KEYS` on insert and
    update, raising DuplicateKeyError.
    """

    @abstractmethod
    async def insert(self, collection: str, data: dict[str, Any]) -> dict[str, Any]:
        """Insert a record, assigning the next id. Returns the stored record."""
        pass

    @abstractmethod
    async def get(self, collection: str, id: int) -> dict[str, Any] | None:
        """Get a record by id."""
        pass

    @abstractmethod
    async def find_one(self, collection: str, filters: dict[str, Any]) -> dict[str, Any] | None:
        """Get the first record matching all filters."""
        pass

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int = 100,
        offset: int = 0,
        contains: dict[str, Any] | None = None,
        after_id: int | None = None,
        search: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        """
        Query records ordered by id.

        Args:
            filters: Field equality filters
            contains: Field -> value that must be an element of that list field
            search: Field -> text that must occur in that string field, ignoring case
            after_id: Only records with a larger id (cursor pagination)
        """
        pass

    @abstractmethod
    async def update(
        self,
        collection: str,
        id: int,
        updates: dict[str, Any] | None = None,
        add_to_set: dict[str, list[Any]] | None = None,
        remove_from_set: dict[str, list[Any]] | None = None,
    ) -> dict[str, Any] | None:
        """
        Atomically update one record.

        `updates` replaces fields; `add_to_set` / `remove_from_set` modify
        list fields with set semantics. Returns the updated record, or None
        if it does not exist.
        """
        pass

    @abstractmethod
    async def delete(self, collection: str, id: int) -> bool:
        """Delete a record. Returns False if it did not exist."""
        pass

    @abstractmethod
    async def delete_where(self, collection: str, filters: dict[str, Any]) -> int:
        """Delete every record matching the filters. Returns the count."""
        pass

    @abstractmethod
    async def next_sequence(self, name: str) -> int:
        """Atomically increment and return a named counter (starts at 1)."""
        pass


class CacheStorage(ABC):
    """
    Fast key-value store with per-key expiry.

    Production Implementation: Redis
    Local Implementation: In-memory dict
    """

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store `value` under `key`, expiring after `ttl` seconds when given."""
        pass

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Get a value."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove `key`. True only if a live entry was removed."""
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """True while `key` holds an unexpired value."""
        pass


class ContentStorage(ABC):
    """
    Storage for binary file attachments.

    Production Implementation: S3
    Local Implementation: Filesystem
    """

    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        """Write `data` under `key`; returns where it landed (file path or object URL)."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove the object. False if it was not there."""
        pass

    @abstractmethod
    async def get_metadata(self, key: str) -> dict[str, Any] | None:
        """Size and content type of a stored object, or None if missing."""
        pass


# =============================================================================
# Provider
# =============================================================================


class StorageProvider(BaseModel):
    """
    The three backends a TrackerEngine is built from.

    Built once per process by create_storage().
    Workflows receive this and use the interfaces without knowing
    the underlying implementation.
    """

    model_config = {"arbitrary_types_allowed": True}

    metadata: MetadataStorage
    cache: CacheStorage
    content: ContentStorage


# =============================================================================
# Collections
# =============================================================================


class Collections:
    """Record collection names."""

    USERS = "users"
    PROJECTS = "projects"
    TICKETS = "tickets"
    COMMENTS = "comments"
    ROLE_REQUESTS = "role_requests"
    ACTIVITIES = "activities"
    FILES = "files"


# Unique constraints per collection (each entry is one composite key)
UNIQUE_KEYS: dict[str, list[tuple[str, ...]]] = {
    Collections.USERS: [("username",), ("email",)],
    Collections.PROJECTS: [("name", "created_by_id")],
    Collections.TICKETS: [("project_id", "number")],
    Collections.ROLE_REQUESTS: [("author_id",)],
    Collections.FILES: [("storage_key",)],
}
