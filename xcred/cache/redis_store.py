"""Redis-backed persistent profile store."""

import json

import redis.asyncio as redis
from pydantic import ValidationError

from xcred.cache.base import ProfileStore
from xcred.exceptions import StoreError
from xcred.models.profile import ProfileRecord


class RedisProfileStore(ProfileStore):
    """
    Redis-based profile store.

    Records are JSON strings; two sorted sets index them by last access
    and by write time (split by error flag so TTL sweeps are range
    deletes).

    Example:
        store = RedisProfileStore("redis://localhost:6379/0")
        async with store:
            await store.put(record)
            cached = await store.get("jack")
    """

    def __init__(self, redis_url: str = "redis://localhost:6379/0", key_prefix: str = "xcred:"):
        """
        Args:
            redis_url: Redis connection URL
            key_prefix: Namespace for every key this store writes
        """
        self.redis_url = redis_url
        self._client: redis.Redis | None = None
        self._key_prefix = key_prefix
        self._accessed_key = f"{key_prefix}idx:last_accessed"
        self._written_key = f"{key_prefix}idx:written"
        self._written_error_key = f"{key_prefix}idx:written_error"

    async def _ensure_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(self.redis_url, decode_responses=True)
        return self._client

    def _make_key(self, username: str) -> str:
        return f"{self._key_prefix}profile:{username.lower()}"

    async def get(self, username: str) -> ProfileRecord | None:
        client = await self._ensure_client()
        try:
            data = await client.get(self._make_key(username))
        except redis.RedisError as e:
            raise StoreError(f"Redis read failed: {e}") from e

        if data is None:
            return None

        try:
            return ProfileRecord.model_validate_json(data)
        except ValidationError:
            await self.delete(username)
            return None

    async def put(self, record: ProfileRecord) -> None:
        client = await self._ensure_client()
        key = record.username
        written_key = self._written_error_key if record.error else self._written_key
        stale_key = self._written_key if record.error else self._written_error_key

        pipe = client.pipeline()
        pipe.set(self._make_key(key), json.dumps(record.persisted()))
        pipe.zadd(self._accessed_key, {key: record.last_accessed})
        pipe.zadd(written_key, {key: record.timestamp})
        pipe.zrem(stale_key, key)
        try:
            await pipe.execute()
        except redis.RedisError as e:
            raise StoreError(f"Redis write failed: {e}") from e

    async def touch(self, username: str, last_accessed: float) -> None:
        client = await self._ensure_client()
        key = username.lower()
        try:
            data = await client.get(self._make_key(key))
            if data is None:
                return
            record = ProfileRecord.model_validate_json(data)
            record.last_accessed = max(record.last_accessed or 0.0, last_accessed)
            pipe = client.pipeline()
            pipe.set(self._make_key(key), json.dumps(record.persisted()))
            pipe.zadd(self._accessed_key, {key: record.last_accessed}, gt=True)
            await pipe.execute()
        except ValidationError:
            await self.delete(key)
        except redis.RedisError as e:
            raise StoreError(f"Redis touch failed: {e}") from e

    async def delete(self, username: str) -> None:
        await self.delete_many([username])

    async def delete_many(self, usernames: list[str]) -> None:
        if not usernames:
            return
        client = await self._ensure_client()
        keys = [username.lower() for username in usernames]

        pipe = client.pipeline()
        pipe.delete(*(self._make_key(key) for key in keys))
        pipe.zrem(self._accessed_key, *keys)
        pipe.zrem(self._written_key, *keys)
        pipe.zrem(self._written_error_key, *keys)
        try:
            await pipe.execute()
        except redis.RedisError as e:
            raise StoreError(f"Redis delete failed: {e}") from e

    async def clear(self) -> None:
        client = await self._ensure_client()
        cursor = 0
        try:
            while True:
                cursor, keys = await client.scan(cursor, match=f"{self._key_prefix}*")
                if keys:
                    await client.delete(*keys)
                if cursor == 0:
                    break
        except redis.RedisError as e:
            raise StoreError(f"Redis clear failed: {e}") from e

    async def count(self) -> int:
        client = await self._ensure_client()
        try:
            return await client.zcard(self._accessed_key)
        except redis.RedisError as e:
            raise StoreError(f"Redis count failed: {e}") from e

    async def least_recently_accessed(self, limit: int) -> list[str]:
        if limit <= 0:
            return []
        client = await self._ensure_client()
        try:
            return list(await client.zrange(self._accessed_key, 0, limit - 1))
        except redis.RedisError as e:
            raise StoreError(f"Redis read failed: {e}") from e

    async def delete_expired(self, ok_before: float, error_before: float) -> int:
        client = await self._ensure_client()
        try:
            expired = list(await client.zrangebyscore(self._written_key, "-inf", ok_before))
            expired += await client.zrangebyscore(self._written_error_key, "-inf", error_before)
        except redis.RedisError as e:
            raise StoreError(f"Redis read failed: {e}") from e
        await self.delete_many(expired)
        return len(expired)

    async def all_records(self) -> list[ProfileRecord]:
        client = await self._ensure_client()
        try:
            usernames = await client.zrange(self._accessed_key, 0, -1)
            values = await client.mget([self._make_key(username) for username in usernames]) if usernames else []
        except redis.RedisError as e:
            raise StoreError(f"Redis read failed: {e}") from e

        records = []
        for data in values:
            if data is None:
                continue
            try:
                records.append(ProfileRecord.model_validate_json(data))
            except ValidationError:
                continue
        return records

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def ping(self) -> bool:
        """Check if Redis is available."""
        try:
            client = await self._ensure_client()
            return await client.ping()
        except redis.RedisError:
            return False
