"""In-process tiers: bounded LRU map and a dict-backed store."""

from collections import OrderedDict

from xcred.cache.base import ProfileStore
from xcred.models.profile import ProfileRecord


class MemoryCache:
    """
    Bounded LRU map. Iteration order is recency order; the oldest entry
    is dropped when a new key would exceed ``max_size``.
    """

    def __init__(self, max_size: int = 200):
        self.max_size = max_size
        self._entries: OrderedDict[str, ProfileRecord] = OrderedDict()

    def get(self, key: str) -> ProfileRecord | None:
        record = self._entries.get(key)
        if record is not None:
            self._entries.move_to_end(key)
        return record

    def put(self, key: str, record: ProfileRecord) -> None:
        if key in self._entries:
            self._entries.move_to_end(key)
        elif len(self._entries) >= self.max_size:
            self._entries.popitem(last=False)
        self._entries[key] = record

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class InMemoryProfileStore(ProfileStore):
    """Non-durable store for tests and ``StoreBackend.MEMORY``."""

    def __init__(self):
        self._records: dict[str, ProfileRecord] = {}

    async def get(self, username: str) -> ProfileRecord | None:
        record = self._records.get(username.lower())
        return record.model_copy() if record is not None else None

    async def put(self, record: ProfileRecord) -> None:
        self._records[record.username] = record.model_copy()

    async def touch(self, username: str, last_accessed: float) -> None:
        record = self._records.get(username.lower())
        if record is not None:
            record.last_accessed = max(record.last_accessed or 0.0, last_accessed)

    async def delete(self, username: str) -> None:
        self._records.pop(username.lower(), None)

    async def delete_many(self, usernames: list[str]) -> None:
        for username in usernames:
            self._records.pop(username.lower(), None)

    async def clear(self) -> None:
        self._records.clear()

    async def count(self) -> int:
        return len(self._records)

    async def least_recently_accessed(self, limit: int) -> list[str]:
        ordered = sorted(
            self._records.values(),
            key=lambda record: (record.last_accessed or 0.0, record.username),
        )
        return [record.username for record in ordered[:limit]]

    async def delete_expired(self, ok_before: float, error_before: float) -> int:
        expired = [
            username
            for username, record in self._records.items()
            if (record.timestamp or 0.0) <= (error_before if record.error else ok_before)
        ]
        for username in expired:
            del self._records[username]
        return len(expired)

    async def all_records(self) -> list[ProfileRecord]:
        return [record.model_copy() for record in self._records.values()]

    async def close(self) -> None:
        pass
