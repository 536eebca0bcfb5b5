# =============================================================================
# S3 Content Storage (ticket attachments)
# =============================================================================
#
# Setup:
#   1. Create a private bucket
#   2. Set env vars:
#      - AWS_S3_BUCKET=tracker-attachments
#      - AWS_ACCESS_KEY_ID=...
#      - AWS_SECRET_ACCESS_KEY=...
#      - AWS_REGION=us-east-1
#
# boto3 is blocking, so every call runs in a worker thread.
#
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from typing import Any

from tracker.config import Settings
from tracker.storage.base import ContentStorage, StorageError

logger = logging.getLogger(__name__)

# Boto3 is optional - gracefully degrade if not installed
try:
    import boto3
    from botocore.exceptions import BotoCoreError, ClientError
    BOTO3_AVAILABLE = True
except ImportError:
    BOTO3_AVAILABLE = False
    boto3 = None


class S3ContentStorage(ContentStorage):
    """Store file attachments in an S3 bucket."""

    def __init__(self, settings: Settings, client: Any = None):
        if client is None and not BOTO3_AVAILABLE:
            raise StorageError("boto3 is not installed - S3 storage unavailable")
        self.bucket = settings.aws_s3_bucket
        self.region = settings.aws_region
        self._client = client or boto3.client(
            "s3",
            region_name=settings.aws_region,
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
        )

    async def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"S3 upload failed for {key}") from e
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    async def delete(self, key: str) -> bool:
        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"S3 delete failed for {key}") from e
        return True

    async def get_metadata(self, key: str) -> dict[str, Any] | None:
        try:
            head = await asyncio.to_thread(self._client.head_object, Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return None
            raise StorageError(f"S3 head failed for {key}") from e
        except BotoCoreError as e:
            raise StorageError(f"S3 head failed for {key}") from e
        return {
            "size": head.get("ContentLength", 0),
            "content_type": head.get("ContentType", "application/octet-stream"),
        }
