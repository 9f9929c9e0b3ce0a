"""PostgreSQL implementation of StateRepository."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

import asyncpg


class PostgresStateRepository:
    def __init__(self, db: asyncpg.Pool):
        self.db = db

    async def get(self, key: str) -> Any | None:
        raw = await self.db.fetchval("SELECT value_json FROM app_state WHERE key = $1", key)
        return json.loads(raw) if raw else None

    async def set(self, key: str, value: Any) -> None:
        now = datetime.now(timezone.utc).isoformat()
        await self.db.execute(
            """INSERT INTO app_state (key, value_json, updated_at)
               VALUES ($1, $2, $3)
               ON CONFLICT (key) DO UPDATE SET
                 value_json = EXCLUDED.value_json, updated_at = EXCLUDED.updated_at""",
            key, json.dumps(value), now,
        )

    async def delete(self, key: str) -> None:
        await self.db.execute("DELETE FROM app_state WHERE key = $1", key)

    async def keys(self) -> list[str]:
        rows = await self.db.fetch("SELECT key FROM app_state ORDER BY key")
        return [row["key"] for row in rows]
