"""Profile cache tiers."""

from xcred.cache.base import ProfileStore
from xcred.cache.memory import InMemoryProfileStore, MemoryCache
from xcred.cache.redis_store import RedisProfileStore
from xcred.cache.remote import RemoteStore, RestRemoteStore
from xcred.cache.sqlite_store import SQLiteProfileStore
from xcred.cache.tiered import CacheStats, SweepResult, TieredCache

__all__ = [
    "ProfileStore",
    "MemoryCache",
    "InMemoryProfileStore",
    "SQLiteProfileStore",
    "RedisProfileStore",
    "RemoteStore",
    "RestRemoteStore",
    "TieredCache",
    "CacheStats",
    "SweepResult",
]
