"""PostgreSQL schema creation and versioning."""
from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger("copilotdash.db")

SCHEMA_VERSION = 1

_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS app_state (
    key         TEXT PRIMARY KEY,
    value_json  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);
"""


async def run_migrations(db: Any) -> None:
    """Create tables on an asyncpg pool or connection."""
    await db.execute(_TABLES)
    current = await db.fetchval("SELECT MAX(version) FROM schema_version")
    if current is not None and int(current) >= SCHEMA_VERSION:
        logger.debug(f"Postgres schema up to date (version {current})")
        return
    await db.execute("INSERT INTO schema_version (version) VALUES ($1)", SCHEMA_VERSION)
    logger.info(f"Postgres migrations complete, schema version {SCHEMA_VERSION}")
