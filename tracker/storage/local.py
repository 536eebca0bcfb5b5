"""
Process-local backends: dicts for records and cache, a directory for files.

Used in development and by the test suite. Metadata calls never await, so
each one finishes before another coroutine can run; a single call is
therefore atomic, the way one SQL statement would be.
"""

from __future__ import annotations

import copy
import mimetypes
import time
from collections import defaultdict
from pathlib import Path
from typing import Any

from tracker.storage.base import (
    UNIQUE_KEYS,
    CacheStorage,
    ContentStorage,
    DuplicateKeyError,
    MetadataStorage,
    StorageProvider,
)


# =============================================================================
# Records
# =============================================================================


class InMemoryMetadataStorage(MetadataStorage):
    """In-memory record storage with unique-key enforcement."""

    def __init__(self, unique_keys: dict[str, list[tuple[str, ...]]] | None = None):
        self._data: dict[str, dict[int, dict[str, Any]]] = defaultdict(dict)
        self._sequences: dict[str, int] = defaultdict(int)
        self._unique_keys = unique_keys if unique_keys is not None else UNIQUE_KEYS

    def _check_unique(self, collection: str, record: dict[str, Any], skip_id: int | None = None) -> None:
        for fields in self._unique_keys.get(collection, []):
            key = tuple(record.get(f) for f in fields)
            if any(v is None for v in key):
                continue
            for other_id, other in self._data[collection].items():
                if other_id == skip_id:
                    continue
                if tuple(other.get(f) for f in fields) == key:
                    raise DuplicateKeyError(collection, fields)

    @staticmethod
    def _matches(
        doc: dict[str, Any],
        filters: dict[str, Any] | None,
        contains: dict[str, Any] | None,
        search: dict[str, str] | None = None,
    ) -> bool:
        for key, value in (filters or {}).items():
            if doc.get(key) != value:
                return False
        for key, value in (contains or {}).items():
            if value not in (doc.get(key) or []):
                return False
        for key, text in (search or {}).items():
            if text.casefold() not in str(doc.get(key) or "").casefold():
                return False
        return True

    async def insert(self, collection: str, data: dict[str, Any]) -> dict[str, Any]:
        self._check_unique(collection, data)
        self._sequences[f"__id__:{collection}"] += 1
        record_id = self._sequences[f"__id__:{collection}"]
        record = {**copy.deepcopy(data), "id": record_id}
        self._data[collection][record_id] = record
        return copy.deepcopy(record)

    async def get(self, collection: str, id: int) -> dict[str, Any] | None:
        record = self._data[collection].get(id)
        return copy.deepcopy(record) if record is not None else None

    async def find_one(self, collection: str, filters: dict[str, Any]) -> dict[str, Any] | None:
        for record_id in sorted(self._data[collection]):
            record = self._data[collection][record_id]
            if self._matches(record, filters, None):
                return copy.deepcopy(record)
        return None

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
        results = [
            copy.deepcopy(self._data[collection][record_id])
            for record_id in sorted(self._data[collection])
            if (after_id is None or record_id > after_id)
            and self._matches(self._data[collection][record_id], filters, contains, search)
        ]
        return results[offset:offset + limit]

    async def update(
        self,
        collection: str,
        id: int,
        updates: dict[str, Any] | None = None,
        add_to_set: dict[str, list[Any]] | None = None,
        remove_from_set: dict[str, list[Any]] | None = None,
    ) -> dict[str, Any] | None:
        current = self._data[collection].get(id)
        if current is None:
            return None

        candidate = copy.deepcopy(current)
        candidate.update(copy.deepcopy(updates or {}))
        for key, values in (add_to_set or {}).items():
            items = list(candidate.get(key) or [])
            for value in values:
                if value not in items:
                    items.append(value)
            candidate[key] = items
        for key, values in (remove_from_set or {}).items():
            candidate[key] = [v for v in candidate.get(key) or [] if v not in values]
        candidate["id"] = id

        self._check_unique(collection, candidate, skip_id=id)
        self._data[collection][id] = candidate
        return copy.deepcopy(candidate)

    async def delete(self, collection: str, id: int) -> bool:
        return self._data[collection].pop(id, None) is not None

    async def delete_where(self, collection: str, filters: dict[str, Any]) -> int:
        doomed = [
            record_id
            for record_id, record in self._data[collection].items()
            if self._matches(record, filters, None)
        ]
        for record_id in doomed:
            del self._data[collection][record_id]
        return len(doomed)

    async def next_sequence(self, name: str) -> int:
        self._sequences[name] += 1
        return self._sequences[name]


# =============================================================================
# Cache
# =============================================================================


class InMemoryCacheStorage(CacheStorage):
    """Dict-backed cache; expiry is checked lazily on read."""

    def __init__(self):
        self._entries: dict[str, tuple[Any, float]] = {}

    def _live(self, key: str) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry[1] and entry[1] <= time.monotonic():
            self._entries.pop(key)
            return False
        return True

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        deadline = time.monotonic() + ttl if ttl else 0.0
        self._entries[key] = (value, deadline)

    async def get(self, key: str) -> Any | None:
        return self._entries[key][0] if self._live(key) else None

    async def delete(self, key: str) -> bool:
        return self._live(key) and self._entries.pop(key, None) is not None

    async def exists(self, key: str) -> bool:
        return self._live(key)


# =============================================================================
# Attachments
# =============================================================================


class LocalContentStorage(ContentStorage):
    """Attachment bytes as plain files under `root`."""

    def __init__(self, root: str = "./data/files"):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.root / key

    async def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        target = self._path(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return str(target)

    async def delete(self, key: str) -> bool:
        target = self._path(key)
        if not target.is_file():
            return False
        target.unlink()
        return True

    async def get_metadata(self, key: str) -> dict[str, Any] | None:
        target = self._path(key)
        if not target.is_file():
            return None
        guessed, _ = mimetypes.guess_type(target.name)
        return {"size": target.stat().st_size, "content_type": guessed or "application/octet-stream"}


def create_local_storage(data_dir: str = "./data") -> StorageProvider:
    """Storage bundle that needs no external services."""
    return StorageProvider(
        metadata=InMemoryMetadataStorage(),
        cache=InMemoryCacheStorage(),
        content=LocalContentStorage(f"{data_dir}/files"),
    )
