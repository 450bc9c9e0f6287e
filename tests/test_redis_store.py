"""Tests for the Redis store - skipped when no local Redis server answers."""

import uuid

import pytest

from conftest import make_record
from xcred.cache.redis_store import RedisProfileStore


async def open_store() -> RedisProfileStore:
    store = RedisProfileStore(key_prefix=f"xcred-test-{uuid.uuid4().hex[:8]}:")
    if not await store.ping():
        await store.close()
        pytest.skip("Redis server not reachable")
    return store


def stamped(username: str, timestamp: float = 1000.0, **kw):
    return make_record(username, timestamp=timestamp, last_accessed=timestamp, **kw)


class TestRedisProfileStore:

    @pytest.mark.asyncio
    async def test_put_get_delete(self):
        store = await open_store()
        try:
            await store.put(stamped("alice", tier=2))
            record = await store.get("ALICE")
            assert record.tier == 2
            assert await store.count() == 1

            await store.delete("alice")
            assert await store.get("alice") is None
            assert await store.count() == 0
        finally:
            await store.clear()
            await store.close()

    @pytest.mark.asyncio
    async def test_least_recently_accessed_follows_touch(self):
        store = await open_store()
        try:
            await store.put(stamped("a", 100.0))
            await store.put(stamped("b", 200.0))
            await store.touch("a", 300.0)

            assert await store.least_recently_accessed(1) == ["b"]
            assert (await store.get("a")).last_accessed == 300.0
        finally:
            await store.clear()
            await store.close()

    @pytest.mark.asyncio
    async def test_delete_expired_uses_separate_error_cutoff(self):
        store = await open_store()
        try:
            await store.put(stamped("old", 100.0))
            await store.put(stamped("fresh", 900.0))
            await store.put(make_record("failed", error=True, timestamp=500.0, last_accessed=500.0))

            removed = await store.delete_expired(ok_before=200.0, error_before=600.0)

            assert removed == 2
            assert [r.username for r in await store.all_records()] == ["fresh"]
        finally:
            await store.clear()
            await store.close()
