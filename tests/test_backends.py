"""
Tests for the production storage backends, run against in-process clients.

RedisCacheStorage gets a dict-backed stand-in for redis.asyncio.Redis;
S3ContentStorage gets a stand-in for the boto3 S3 client. Both check the
JSON/TTL handling and that backend errors surface as StorageError.
"""

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError
from redis.exceptions import ConnectionError as RedisConnectionError

from tracker.storage.base import StorageError
from tracker.storage.redis_cache import RedisCacheStorage
from tracker.storage.s3 import S3ContentStorage


class DictRedis:
    """The slice of redis.asyncio.Redis the cache uses, kept in a dict."""

    def __init__(self):
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.closed = False

    async def setex(self, key, ttl, value):
        self.values[key] = value
        self.ttls[key] = ttl

    async def set(self, key, value):
        self.values[key] = value
        self.ttls.pop(key, None)

    async def get(self, key):
        return self.values.get(key)

    async def delete(self, key):
        self.ttls.pop(key, None)
        return 1 if self.values.pop(key, None) is not None else 0

    async def exists(self, key):
        return 1 if key in self.values else 0

    async def aclose(self):
        self.closed = True


class DownRedis(DictRedis):
    async def setex(self, key, ttl, value):
        raise RedisConnectionError("connection refused")

    async def get(self, key):
        raise RedisConnectionError("connection refused")

    async def delete(self, key):
        raise RedisConnectionError("connection refused")

    async def exists(self, key):
        raise RedisConnectionError("connection refused")


class BucketClient:
    """The slice of the boto3 S3 client the content store uses."""

    def __init__(self):
        self.objects: dict[tuple[str, str], tuple[bytes, str]] = {}

    def put_object(self, Bucket, Key, Body, ContentType):
        self.objects[(Bucket, Key)] = (Body, ContentType)
        return {"ETag": '"etag"'}

    def delete_object(self, Bucket, Key):
        self.objects.pop((Bucket, Key), None)
        return {}

    def head_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
        body, content_type = self.objects[(Bucket, Key)]
        return {"ContentLength": len(body), "ContentType": content_type}


class DeniedBucketClient(BucketClient):
    def put_object(self, Bucket, Key, Body, ContentType):
        raise ClientError({"Error": {"Code": "AccessDenied", "Message": "Denied"}}, "PutObject")

    def head_object(self, Bucket, Key):
        raise ClientError({"Error": {"Code": "AccessDenied", "Message": "Denied"}}, "HeadObject")


class UnreachableBucketClient(BucketClient):
    def delete_object(self, Bucket, Key):
        raise EndpointConnectionError(endpoint_url="https://s3.us-east-1.amazonaws.com")


# =============================================================================
# Redis
# =============================================================================


class TestRedisCache:
    @pytest.mark.asyncio
    async def test_values_round_trip_as_json(self):
        client = DictRedis()
        cache = RedisCacheStorage(client)

        await cache.set("action_abc", {"purpose": "password_reset", "user_id": 3}, ttl=3600)

        assert client.values["action_abc"] == '{"purpose": "password_reset", "user_id": 3}'
        assert client.ttls["action_abc"] == 3600
        assert await cache.get("action_abc") == {"purpose": "password_reset", "user_id": 3}

    @pytest.mark.asyncio
    async def test_no_ttl_uses_plain_set(self):
        client = DictRedis()
        cache = RedisCacheStorage(client)

        await cache.set("flag", 1)

        assert "flag" not in client.ttls
        assert await cache.get("flag") == 1

    @pytest.mark.asyncio
    async def test_missing_key(self):
        cache = RedisCacheStorage(DictRedis())

        assert await cache.get("nothing") is None
        assert await cache.exists("nothing") is False

    @pytest.mark.asyncio
    async def test_delete_reports_whether_key_existed(self):
        cache = RedisCacheStorage(DictRedis())
        await cache.set("bl_token", 1, ttl=60)

        assert await cache.exists("bl_token") is True
        assert await cache.delete("bl_token") is True
        assert await cache.delete("bl_token") is False
        assert await cache.exists("bl_token") is False

    @pytest.mark.asyncio
    async def test_undecodable_value_reads_as_missing(self):
        client = DictRedis()
        client.values["legacy"] = "not json {"

        assert await RedisCacheStorage(client).get("legacy") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("call", [
        lambda cache: cache.set("k", 1, ttl=5),
        lambda cache: cache.get("k"),
        lambda cache: cache.delete("k"),
        lambda cache: cache.exists("k"),
    ])
    async def test_redis_errors_become_storage_errors(self, call):
        with pytest.raises(StorageError):
            await call(RedisCacheStorage(DownRedis()))

    @pytest.mark.asyncio
    async def test_close(self):
        client = DictRedis()
        await RedisCacheStorage(client).close()
        assert client.closed


# =============================================================================
# S3
# =============================================================================


class TestS3Content:
    @pytest.mark.asyncio
    async def test_put_and_metadata(self, settings):
        client = BucketClient()
        content = S3ContentStorage(settings, client=client)

        location = await content.put("tickets/1/plan.txt", b"step one", "text/plain")

        assert location == f"https://{settings.aws_s3_bucket}.s3.{settings.aws_region}.amazonaws.com/tickets/1/plan.txt"
        assert client.objects[(settings.aws_s3_bucket, "tickets/1/plan.txt")] == (b"step one", "text/plain")
        assert await content.get_metadata("tickets/1/plan.txt") == {"size": 8, "content_type": "text/plain"}

    @pytest.mark.asyncio
    async def test_missing_object_has_no_metadata(self, settings):
        content = S3ContentStorage(settings, client=BucketClient())
        assert await content.get_metadata("tickets/1/gone.txt") is None

    @pytest.mark.asyncio
    async def test_delete(self, settings):
        client = BucketClient()
        content = S3ContentStorage(settings, client=client)
        await content.put("tickets/1/plan.txt", b"x")

        assert await content.delete("tickets/1/plan.txt") is True
        assert client.objects == {}

    @pytest.mark.asyncio
    async def test_refused_upload(self, settings):
        content = S3ContentStorage(settings, client=DeniedBucketClient())
        with pytest.raises(StorageError):
            await content.put("tickets/1/plan.txt", b"x")

    @pytest.mark.asyncio
    async def test_refused_head_is_not_a_missing_object(self, settings):
        content = S3ContentStorage(settings, client=DeniedBucketClient())
        with pytest.raises(StorageError):
            await content.get_metadata("tickets/1/plan.txt")

    @pytest.mark.asyncio
    async def test_unreachable_endpoint(self, settings):
        content = S3ContentStorage(settings, client=UnreachableBucketClient())
        with pytest.raises(StorageError):
            await content.delete("tickets/1/plan.txt")
