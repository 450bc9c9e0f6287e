"""Persistence for the validator budget and node identity."""

from abc import ABC, abstractmethod
from pathlib import Path

import aiosqlite

from xcred.exceptions import StoreError
from xcred.models.task import ValidatorBudget


class BudgetStore(ABC):
    """Durable home for this node's validator state."""

    @abstractmethod
    async def load_budget(self) -> ValidatorBudget | None:
        """Return the saved budget, or None on first run."""
        ...

    @abstractmethod
    async def save_budget(self, budget: ValidatorBudget) -> None:
        ...

    @abstractmethod
    async def load_node_id(self) -> str | None:
        ...

    @abstractmethod
    async def save_node_id(self, node_id: str) -> None:
        ...

    async def close(self) -> None:
        pass


class MemoryBudgetStore(BudgetStore):
    """Non-durable store for tests and memory-only engines."""

    def __init__(self):
        self._budget: ValidatorBudget | None = None
        self._node_id: str | None = None

    async def load_budget(self) -> ValidatorBudget | None:
        return self._budget.model_copy() if self._budget else None

    async def save_budget(self, budget: ValidatorBudget) -> None:
        self._budget = budget.model_copy()

    async def load_node_id(self) -> str | None:
        return self._node_id

    async def save_node_id(self, node_id: str) -> None:
        self._node_id = node_id


class SQLiteBudgetStore(BudgetStore):
    """Single-row ``validator_state`` table, usually in the cache database file."""

    def __init__(self, db_path: str = ".xcred_cache.db"):
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None

    async def _ensure_db(self) -> aiosqlite.Connection:
        if self._db is None:
            try:
                self._db = await aiosqlite.connect(self.db_path)
                await self._db.execute("""
                    CREATE TABLE IF NOT EXISTS validator_state (
                        id INTEGER PRIMARY KEY CHECK (id = 1),
                        node_id TEXT,
                        remaining INTEGER,
                        capacity INTEGER,
                        window_start REAL
                    )
                """)
                await self._db.execute("INSERT OR IGNORE INTO validator_state (id) VALUES (1)")
                await self._db.commit()
            except aiosqlite.Error as e:
                raise StoreError(f"Cannot open {self.db_path}: {e}") from e
        return self._db

    async def _row(self) -> tuple:
        db = await self._ensure_db()
        try:
            async with db.execute(
                "SELECT node_id, remaining, capacity, window_start FROM validator_state WHERE id = 1"
            ) as cursor:
                return await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StoreError(f"Validator state read failed: {e}") from e

    async def _update(self, sql: str, params: tuple) -> None:
        db = await self._ensure_db()
        try:
            await db.execute(sql, params)
            await db.commit()
        except aiosqlite.Error as e:
            raise StoreError(f"Validator state write failed: {e}") from e

    async def load_budget(self) -> ValidatorBudget | None:
        _, remaining, capacity, window_start = await self._row()
        if remaining is None or capacity is None or window_start is None:
            return None
        return ValidatorBudget(remaining=remaining, capacity=capacity, window_start=window_start)

    async def save_budget(self, budget: ValidatorBudget) -> None:
        await self._update(
            "UPDATE validator_state SET remaining = ?, capacity = ?, window_start = ? WHERE id = 1",
            (budget.remaining, budget.capacity, budget.window_start),
        )

    async def load_node_id(self) -> str | None:
        node_id, *_ = await self._row()
        return node_id

    async def save_node_id(self, node_id: str) -> None:
        await self._update("UPDATE validator_state SET node_id = ? WHERE id = 1", (node_id,))

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None
