"""
Storage abstractions.

Integration Points:
- MetadataStorage -> relational store (users, projects, tickets, ...)
- CacheStorage -> Redis (revocation list, one-time action tokens)
- ContentStorage -> S3 (ticket attachments)
"""

from tracker.storage.base import (
    UNIQUE_KEYS,
    CacheStorage,
    Collections,
    ContentStorage,
    DuplicateKeyError,
    MetadataStorage,
    StorageError,
    StorageProvider,
)
from tracker.storage.factory import create_storage
from tracker.storage.local import create_local_storage

__all__ = [
    "UNIQUE_KEYS",
    "CacheStorage",
    "Collections",
    "ContentStorage",
    "DuplicateKeyError",
    "MetadataStorage",
    "StorageError",
    "StorageProvider",
    "create_local_storage",
    "create_storage",
]
