"""Repository factory to abstract DB backend (SQLite vs Postgres)."""
from __future__ import annotations

from typing import Any

import aiosqlite

from copilotdash.db.repositories.state import SqliteStateRepository


def get_state_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteStateRepository(db)
    from copilotdash.db.repositories.postgres.state import PostgresStateRepository
    return PostgresStateRepository(db)
