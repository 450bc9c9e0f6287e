"""Abstract persistent store interface."""

from abc import ABC, abstractmethod

from xcred.models.profile import ProfileRecord


class ProfileStore(ABC):
    """
    Durable local key-value store of profile records.

    Keys are lowercase usernames. Every stored record carries
    ``timestamp`` (write time, used for TTL expiry) and ``last_accessed``
    (read time, used for LRU eviction).
    """

    @abstractmethod
    async def get(self, username: str) -> ProfileRecord | None:
        """
        Retrieve the stored record for a username.

        Args:
            username: Lowercase handle

        Returns:
            Stored ProfileRecord with bookkeeping fields set, or None
        """
        ...

    @abstractmethod
    async def put(self, record: ProfileRecord) -> None:
        """
        Insert or replace a record. ``timestamp`` and ``last_accessed``
        must already be set.
        """
        ...

    @abstractmethod
    async def touch(self, username: str, last_accessed: float) -> None:
        """Move an entry's last access time forward (never backward)."""
        ...

    @abstractmethod
    async def delete(self, username: str) -> None:
        ...

    @abstractmethod
    async def delete_many(self, usernames: list[str]) -> None:
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Remove every entry."""
        ...

    @abstractmethod
    async def count(self) -> int:
        ...

    @abstractmethod
    async def least_recently_accessed(self, limit: int) -> list[str]:
        """
        Usernames ordered by last access, oldest first.

        Args:
            limit: Maximum number of keys to return
        """
        ...

    @abstractmethod
    async def delete_expired(self, ok_before: float, error_before: float) -> int:
        """
        Remove entries written before their TTL cutoff.

        Args:
            ok_before: Cutoff write time for regular records
            error_before: Cutoff write time for error records

        Returns:
            Number of entries removed
        """
        ...

    @abstractmethod
    async def all_records(self) -> list[ProfileRecord]:
        ...

    @abstractmethod
    async def close(self) -> None:
        """Cleanup connections and resources."""
        ...

    async def __aenter__(self) -> "ProfileStore":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
