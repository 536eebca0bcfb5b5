"""
Build the StorageProvider for the configured environment.
"""

from __future__ import annotations

import logging

from tracker.config import Settings
from tracker.storage.base import StorageProvider
from tracker.storage.local import (
    InMemoryCacheStorage,
    InMemoryMetadataStorage,
    LocalContentStorage,
)

logger = logging.getLogger(__name__)


def create_storage(settings: Settings) -> StorageProvider:
    """
    Pick storage backends from settings.

    - REDIS_URL set -> Redis revocation list / action tokens
    - AWS credentials set -> S3 attachments
    - otherwise in-memory / local filesystem
    """
    if settings.redis_url:
        from tracker.storage.redis_cache import RedisCacheStorage
        cache = RedisCacheStorage.from_url(settings.redis_url)
    else:
        if settings.is_production:
            logger.warning("REDIS_URL not set - token revocations are process-local")
        cache = InMemoryCacheStorage()

    if settings.use_aws:
        from tracker.storage.s3 import S3ContentStorage
        content = S3ContentStorage(settings)
    else:
        content = LocalContentStorage(f"{settings.data_dir}/files")

    return StorageProvider(
        metadata=InMemoryMetadataStorage(),
        cache=cache,
        content=content,
    )
