"""SQLite schema creation and versioning.

Uses IF NOT EXISTS for idempotent runs.
"""
from __future__ import annotations

import logging

import aiosqlite

logger = logging.getLogger("copilotdash.db")

SCHEMA_VERSION = 1

_TABLES = """
-- ── Schema version tracking ────────────────────────────────────────
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TEXT NOT NULL DEFAULT (datetime('now'))
);

-- ── Key-value application state (usage index, scan stats) ─────────
CREATE TABLE IF NOT EXISTS app_state (
    key         TEXT PRIMARY KEY,
    value_json  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);
"""


async def _get_schema_version(db: aiosqlite.Connection) -> int:
    async with db.execute("SELECT MAX(version) FROM schema_version") as cur:
        row = await cur.fetchone()
    return int(row[0]) if row and row[0] is not None else 0


async def run_migrations(db: aiosqlite.Connection) -> None:
    """Create tables and record the schema version if it changed."""
    await db.executescript(_TABLES)
    current = await _get_schema_version(db)
    if current >= SCHEMA_VERSION:
        logger.debug(f"SQLite schema up to date (version {current})")
        return
    await db.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
    await db.commit()
    logger.info(f"Migrations complete, schema version {SCHEMA_VERSION}")
