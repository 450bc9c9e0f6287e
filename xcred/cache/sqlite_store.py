"""SQLite-backed persistent profile store."""

import json
from pathlib import Path

import aiosqlite
from pydantic import ValidationError

from xcred.cache.base import ProfileStore
from xcred.exceptions import StoreError
from xcred.logging import get_logger
from xcred.models.profile import ProfileRecord

# Each version only adds objects, so upgrading never drops stored rows.
MIGRATIONS: dict[int, list[str]] = {
    1: [
        """
        CREATE TABLE IF NOT EXISTS profiles (
            username TEXT PRIMARY KEY,
            record_json TEXT NOT NULL,
            is_error INTEGER NOT NULL DEFAULT 0,
            timestamp REAL NOT NULL,
            last_accessed REAL NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_profiles_timestamp ON profiles(timestamp)",
    ],
    2: [
        "CREATE INDEX IF NOT EXISTS idx_profiles_last_accessed ON profiles(last_accessed)",
    ],
}

SCHEMA_VERSION = max(MIGRATIONS)


class SQLiteProfileStore(ProfileStore):
    """SQLite-based local store using aiosqlite."""

    def __init__(self, db_path: str = ".xcred_cache.db"):
        """
        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None
        self._log = get_logger("sqlite_store")

    async def _ensure_db(self) -> aiosqlite.Connection:
        """Open the connection and bring the schema up to date."""
        if self._db is None:
            try:
                self._db = await aiosqlite.connect(self.db_path)
                await self._migrate(self._db)
            except aiosqlite.Error as e:
                raise StoreError(f"Cannot open {self.db_path}: {e}") from e
        return self._db

    async def _migrate(self, db: aiosqlite.Connection) -> None:
        async with db.execute("PRAGMA user_version") as cursor:
            row = await cursor.fetchone()
        current = row[0] if row else 0

        for version in sorted(v for v in MIGRATIONS if v > current):
            for statement in MIGRATIONS[version]:
                await db.execute(statement)
            await db.execute(f"PRAGMA user_version = {version}")
            self._log.info("schema_migrated", path=str(self.db_path), version=version)
        await db.commit()

    async def schema_version(self) -> int:
        db = await self._ensure_db()
        async with db.execute("PRAGMA user_version") as cursor:
            row = await cursor.fetchone()
        return row[0]

    async def _write(self, sql: str, params: tuple = ()) -> int:
        db = await self._ensure_db()
        try:
            cursor = await db.execute(sql, params)
            await db.commit()
        except aiosqlite.Error as e:
            raise StoreError(f"SQLite write failed: {e}") from e
        return cursor.rowcount

    async def _read(self, sql: str, params: tuple = ()) -> list[tuple]:
        db = await self._ensure_db()
        try:
            async with db.execute(sql, params) as cursor:
                return list(await cursor.fetchall())
        except aiosqlite.Error as e:
            raise StoreError(f"SQLite read failed: {e}") from e

    async def get(self, username: str) -> ProfileRecord | None:
        rows = await self._read(
            "SELECT record_json, timestamp, last_accessed FROM profiles WHERE username = ?",
            (username.lower(),),
        )
        if not rows:
            return None

        record_json, timestamp, last_accessed = rows[0]
        try:
            record = ProfileRecord.model_validate_json(record_json)
        except ValidationError:
            self._log.warning("corrupt_entry_removed", username=username)
            await self.delete(username)
            return None

        return record.model_copy(update={"timestamp": timestamp, "last_accessed": last_accessed})

    async def put(self, record: ProfileRecord) -> None:
        await self._write(
            """
            INSERT OR REPLACE INTO profiles (username, record_json, is_error, timestamp, last_accessed)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                record.username,
                json.dumps(record.persisted()),
                int(record.error),
                record.timestamp,
                record.last_accessed,
            ),
        )

    async def touch(self, username: str, last_accessed: float) -> None:
        await self._write(
            "UPDATE profiles SET last_accessed = MAX(last_accessed, ?) WHERE username = ?",
            (last_accessed, username.lower()),
        )

    async def delete(self, username: str) -> None:
        await self._write("DELETE FROM profiles WHERE username = ?", (username.lower(),))

    async def delete_many(self, usernames: list[str]) -> None:
        if not usernames:
            return
        db = await self._ensure_db()
        try:
            await db.executemany(
                "DELETE FROM profiles WHERE username = ?",
                [(username.lower(),) for username in usernames],
            )
            await db.commit()
        except aiosqlite.Error as e:
            raise StoreError(f"SQLite batch delete failed: {e}") from e

    async def clear(self) -> None:
        await self._write("DELETE FROM profiles")

    async def count(self) -> int:
        rows = await self._read("SELECT COUNT(*) FROM profiles")
        return rows[0][0]

    async def least_recently_accessed(self, limit: int) -> list[str]:
        rows = await self._read(
            "SELECT username FROM profiles ORDER BY last_accessed ASC, username ASC LIMIT ?",
            (limit,),
        )
        return [row[0] for row in rows]

    async def delete_expired(self, ok_before: float, error_before: float) -> int:
        return await self._write(
            """
            DELETE FROM profiles
            WHERE (is_error = 0 AND timestamp <= ?) OR (is_error = 1 AND timestamp <= ?)
            """,
            (ok_before, error_before),
        )

    async def all_records(self) -> list[ProfileRecord]:
        rows = await self._read("SELECT record_json, timestamp, last_accessed FROM profiles")
        records = []
        for record_json, timestamp, last_accessed in rows:
            try:
                record = ProfileRecord.model_validate_json(record_json)
            except ValidationError:
                continue
            records.append(
                record.model_copy(update={"timestamp": timestamp, "last_accessed": last_accessed})
            )
        return records

    async def close(self) -> None:
        """Close database connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None
