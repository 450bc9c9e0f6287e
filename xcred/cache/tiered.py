"""Three-level profile cache: memory -> persistent store -> remote store."""

import asyncio
import random
import time
from collections.abc import Callable
from dataclasses import dataclass

from pydantic import BaseModel

from xcred.cache.base import ProfileStore
from xcred.cache.memory import MemoryCache
from xcred.cache.remote import RemoteStore
from xcred.config import EngineConfig, SettingsSnapshot
from xcred.exceptions import RemoteStoreError, StoreError
from xcred.logging import get_logger
from xcred.models.profile import CacheSource, ProfileRecord
from xcred.scoring import CredibilityScorer


class CacheStats(BaseModel):
    """Entry counts across tiers."""

    entries: int
    max_entries: int
    memory_entries: int
    memory_max: int
    remote_entries: int | None = None


@dataclass
class SweepResult:
    expired: int
    evicted: int


class TieredCache:
    """
    Read-through cache over an in-process LRU map, a durable local store
    and an optional remote shared store.

    Example:
        cache = TieredCache(SQLiteProfileStore(path), scorer=CredibilityScorer())
        await cache.put("jack", record)
        record = await cache.get("jack")
    """

    def __init__(
        self,
        store: ProfileStore | None,
        remote: RemoteStore | None = None,
        *,
        scorer: CredibilityScorer | None = None,
        settings: Callable[[], SettingsSnapshot] | None = None,
        ttl_seconds: float = 24 * 60 * 60,
        error_ttl_seconds: float = 30 * 60,
        memory_max: int = 200,
        max_entries: int = 5000,
        eviction_batch_size: int = 500,
        eviction_probability: float = 0.05,
        remote_sync_batch_size: int = 50,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ):
        """
        Args:
            store: Persistent tier, None for memory-only operation
            remote: Remote tier, None when not configured
            scorer: Recomputes tiers on local writes
            settings: Toggle snapshot provider (remote sync gate)
            ttl_seconds: Lifetime of regular entries
            error_ttl_seconds: Lifetime of error entries
            memory_max: In-process LRU capacity
            max_entries: Persistent entry ceiling before eviction
            eviction_batch_size: Extra entries dropped per eviction
            eviction_probability: Chance a write triggers an eviction check
            remote_sync_batch_size: Rows per bulk upload
            clock: Epoch-seconds source
            rng: Random source for the eviction trigger
        """
        self._store = store
        self._remote = remote
        self._scorer = scorer or CredibilityScorer(clock=clock)
        self._settings = settings or SettingsSnapshot
        self.ttl_seconds = ttl_seconds
        self.error_ttl_seconds = error_ttl_seconds
        self.max_entries = max_entries
        self.eviction_batch_size = eviction_batch_size
        self.eviction_probability = eviction_probability
        self.remote_sync_batch_size = remote_sync_batch_size
        self._memory = MemoryCache(memory_max)
        self._clock = clock
        self._rng = rng or random.Random()
        self._remote_tasks: set[asyncio.Task] = set()
        self._log = get_logger("cache")

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        store: ProfileStore | None,
        remote: RemoteStore | None = None,
        **kwargs,
    ) -> "TieredCache":
        return cls(
            store,
            remote,
            ttl_seconds=config.cache_ttl_seconds,
            error_ttl_seconds=config.error_cache_ttl_seconds,
            memory_max=config.memory_cache_max,
            max_entries=config.max_entries,
            eviction_batch_size=config.eviction_batch_size,
            eviction_probability=config.eviction_check_probability,
            remote_sync_batch_size=config.remote_sync_batch_size,
            **kwargs,
        )

    @property
    def memory(self) -> MemoryCache:
        return self._memory

    @property
    def remote_enabled(self) -> bool:
        return self._remote is not None and self._settings().remote_sync_enabled

    def _expired(self, record: ProfileRecord, now: float) -> bool:
        max_age = self.error_ttl_seconds if record.error else self.ttl_seconds
        return now - (record.timestamp or 0.0) > max_age

    async def _store_call(self, operation: str, coro):
        """Run a persistent-store coroutine, degrading to a miss on failure."""
        try:
            return await coro
        except StoreError as e:
            self._log.warning("store_unavailable", operation=operation, error=str(e))
            return None

    async def get(self, username: str) -> ProfileRecord | None:
        """
        Look a username up in memory, then the persistent store, then the
        remote store.

        Expired and invalid hits are deleted from the tier they were found
        in and the lookup falls through.

        Returns:
            Copy of the cached record with ``cache_source`` set, or None
        """
        key = username.lstrip("@").lower()
        now = self._clock()

        record = self._memory.get(key)
        if record is not None:
            if self._expired(record, now):
                self._memory.delete(key)
            elif not record.is_cacheable():
                self._log.warning("invalid_entry_purged", username=key, tier="memory")
                self._memory.delete(key)
                if self._store is not None:
                    await self._store_call("delete", self._store.delete(key))
            else:
                record.last_accessed = max(record.last_accessed or 0.0, now)
                if self._store is not None:
                    await self._store_call("touch", self._store.touch(key, record.last_accessed))
                return record.model_copy(update={"cache_source": CacheSource.MEMORY.value})

        if self._store is not None:
            record = await self._store_call("get", self._store.get(key))
            if record is not None:
                if self._expired(record, now):
                    await self._store_call("delete", self._store.delete(key))
                elif not record.is_cacheable():
                    self._log.warning("invalid_entry_purged", username=key, tier="persistent")
                    await self._store_call("delete", self._store.delete(key))
                else:
                    record.last_accessed = max(record.last_accessed or 0.0, now)
                    await self._store_call("touch", self._store.touch(key, record.last_accessed))
                    self._memory.put(key, record)
                    return record.model_copy(update={"cache_source": CacheSource.PERSISTENT.value})

        if self.remote_enabled:
            try:
                record = await self._remote.get(key)
            except RemoteStoreError as e:
                self._log.warning("remote_unavailable", username=key, error=str(e))
                record = None

            if record is not None and not record.error and record.is_valid():
                await self.put(key, record, trusted_tier=True, publish=False)
                self._log.debug("remote_backfill", username=key)
                backfilled = self._memory.get(key) or record
                return backfilled.model_copy(update={"cache_source": CacheSource.REMOTE.value})

        return None

    async def put(
        self,
        username: str,
        record: ProfileRecord,
        *,
        skip_rate_limited: bool = False,
        trusted_tier: bool = False,
        publish: bool = True,
    ) -> bool:
        """
        Write a record to every tier.

        Memory and persistent writes complete before returning; the remote
        write runs in the background and its failures are only logged.

        Args:
            username: Handle the record belongs to
            record: Record to store
            skip_rate_limited: Drop records carrying the rate-limit marker
            trusted_tier: Keep the record's tier instead of recomputing it
            publish: Also upload to the remote store

        Returns:
            True if the record was stored
        """
        if skip_rate_limited and record.rate_limited:
            return False

        if not record.is_cacheable():
            self._log.warning("invalid_record_rejected", username=username)
            return False

        key = username.lstrip("@").lower()
        now = self._clock()

        if not record.error and not trusted_tier:
            record = self._scorer.rescore(record)

        record = record.model_copy(update={
            "username": key,
            "timestamp": now,
            "last_accessed": now,
            "rate_limited": False,
            "cache_source": None,
        })

        self._memory.put(key, record)

        if self._store is not None:
            await self._store_call("put", self._store.put(record))
            if self._rng.random() < self.eviction_probability:
                await self.evict_excess()

        if publish and self.remote_enabled and not record.error and record.is_valid():
            self._schedule_remote_write(key, record)

        return True

    def _schedule_remote_write(self, key: str, record: ProfileRecord) -> None:
        task = asyncio.create_task(self._remote_write(key, record))
        self._remote_tasks.add(task)
        task.add_done_callback(self._remote_write_done)

    async def _remote_write(self, key: str, record: ProfileRecord) -> None:
        try:
            await self._remote.upsert(key, record)
        except RemoteStoreError as e:
            self._log.debug("remote_write_failed", username=key, error=str(e))

    def _remote_write_done(self, task: asyncio.Task) -> None:
        self._remote_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self._log.warning("remote_write_failed", error=str(task.exception()))

    async def invalidate(self, username: str) -> None:
        """Remove a username from the local tiers."""
        key = username.lstrip("@").lower()
        self._memory.delete(key)
        if self._store is not None:
            await self._store_call("delete", self._store.delete(key))

    async def clear(self) -> None:
        """Clear the local tiers."""
        self._memory.clear()
        if self._store is not None:
            await self._store_call("clear", self._store.clear())

    async def evict_excess(self) -> int:
        """
        Drop least-recently-accessed entries once the store is over its ceiling.

        Removes the overflow plus ``eviction_batch_size`` more, so a full
        store settles at ``max_entries - eviction_batch_size``.

        Returns:
            Number of entries evicted
        """
        if self._store is None:
            return 0

        count = await self._store_call("count", self._store.count())
        if count is None or count <= self.max_entries:
            return 0

        excess = count - self.max_entries + self.eviction_batch_size
        keys = await self._store_call(
            "least_recently_accessed", self._store.least_recently_accessed(excess)
        )
        if not keys:
            return 0

        await self._store_call("delete_many", self._store.delete_many(keys))
        for key in keys:
            self._memory.delete(key)

        self._log.info("cache_evicted", evicted=len(keys), entries_before=count)
        return len(keys)

    async def sweep(self) -> SweepResult:
        """Purge expired entries from every local tier, then evict excess."""
        now = self._clock()
        for key in self._memory.keys():
            record = self._memory.get(key)
            if record is not None and self._expired(record, now):
                self._memory.delete(key)

        expired = 0
        if self._store is not None:
            expired = await self._store_call(
                "delete_expired",
                self._store.delete_expired(now - self.ttl_seconds, now - self.error_ttl_seconds),
            ) or 0

        evicted = await self.evict_excess()
        self._log.info("cache_swept", expired=expired, evicted=evicted)
        return SweepResult(expired=expired, evicted=evicted)

    async def sync_to_remote(self) -> int:
        """
        Upload valid local records to the remote store in batches.

        Returns:
            Number of records uploaded
        """
        if not self.remote_enabled or self._store is None:
            return 0

        records = await self._store_call("all_records", self._store.all_records()) or []
        latest: dict[str, ProfileRecord] = {}
        for record in records:
            if record.error or not record.is_valid():
                continue
            current = latest.get(record.username)
            if current is None or (record.timestamp or 0) > (current.timestamp or 0):
                latest[record.username] = record

        rows = list(latest.values())
        synced = 0
        for start in range(0, len(rows), self.remote_sync_batch_size):
            batch = rows[start:start + self.remote_sync_batch_size]
            try:
                await self._remote.upsert_many(batch)
            except RemoteStoreError as e:
                self._log.warning("remote_sync_failed", synced=synced, error=str(e))
                break
            synced += len(batch)

        self._log.info("remote_sync_complete", synced=synced)
        return synced

    async def stats(self) -> CacheStats:
        entries = 0
        if self._store is not None:
            entries = await self._store_call("count", self._store.count()) or 0

        remote_entries = None
        if self.remote_enabled:
            try:
                remote_entries = await self._remote.count()
            except RemoteStoreError as e:
                self._log.debug("remote_stats_failed", error=str(e))

        return CacheStats(
            entries=entries,
            max_entries=self.max_entries,
            memory_entries=len(self._memory),
            memory_max=self._memory.max_size,
            remote_entries=remote_entries,
        )

    async def close(self) -> None:
        """Wait for background remote writes, then close the stores."""
        if self._remote_tasks:
            await asyncio.gather(*list(self._remote_tasks), return_exceptions=True)
        if self._store is not None:
            await self._store.close()
        if self._remote is not None:
            await self._remote.close()
