"""SQLite and in-memory implementations of StateRepository."""
from __future__ import annotations

import copy
import json
import logging
from datetime import datetime, timezone
from typing import Any

import aiosqlite

logger = logging.getLogger("copilotdash.db.state")


class SqliteStateRepository:
    """Key-value state in the ``app_state`` table."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def get(self, key: str) -> Any | None:
        async with self.db.execute(
            "SELECT value_json FROM app_state WHERE key = ?", (key,)
        ) as cur:
            row = await cur.fetchone()
        if not row:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError:
            logger.warning(f"Discarding corrupt state value for {key}")
            return None

    async def set(self, key: str, value: Any) -> None:
        now = datetime.now(timezone.utc).isoformat()
        await self.db.execute(
            """INSERT INTO app_state (key, value_json, updated_at)
               VALUES (?, ?, ?)
               ON CONFLICT(key) DO UPDATE SET
                 value_json=excluded.value_json, updated_at=excluded.updated_at""",
            (key, json.dumps(value), now),
        )
        await self.db.commit()

    async def delete(self, key: str) -> None:
        await self.db.execute("DELETE FROM app_state WHERE key = ?", (key,))
        await self.db.commit()

    async def keys(self) -> list[str]:
        async with self.db.execute("SELECT key FROM app_state ORDER BY key") as cur:
            return [row[0] for row in await cur.fetchall()]


class InMemoryStateRepository:
    """Process-local state, for embedding and tests."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self._values: dict[str, Any] = copy.deepcopy(initial or {})

    async def get(self, key: str) -> Any | None:
        value = self._values.get(key)
        return copy.deepcopy(value) if value is not None else None

    async def set(self, key: str, value: Any) -> None:
        self._values[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> None:
        self._values.pop(key, None)

    async def keys(self) -> list[str]:
        return sorted(self._values)
