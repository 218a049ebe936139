from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Protocol, Sequence

import aiosqlite

from beacon.config import DATABASE_PATH

logger = logging.getLogger(__name__)


class DatabaseAdapter(Protocol):
    """Minimal async query surface the session store is written against."""

    async def execute(self, query: str, params: Sequence | None = None) -> None: ...

    async def executemany(self, query: str, seq_params: Iterable[Sequence]) -> None: ...

    async def fetch_one(self, query: str, params: Sequence | None = None): ...

    async def fetch_all(self, query: str, params: Sequence | None = None): ...

    async def commit(self) -> None: ...

    async def close(self) -> None: ...


@dataclass
class SQLiteAdapter:
    conn: aiosqlite.Connection

    async def execute(self, query: str, params: Sequence | None = None) -> None:
        await self.conn.execute(query, params or ())

    async def executemany(self, query: str, seq_params: Iterable[Sequence]) -> None:
        await self.conn.executemany(query, seq_params)

    async def fetch_one(self, query: str, params: Sequence | None = None):
        async with self.conn.execute(query, params or ()) as cursor:
            return await cursor.fetchone()

    async def fetch_all(self, query: str, params: Sequence | None = None):
        async with self.conn.execute(query, params or ()) as cursor:
            return await cursor.fetchall()

    async def commit(self) -> None:
        await self.conn.commit()

    async def close(self) -> None:
        await self.conn.close()


_db: SQLiteAdapter | None = None


async def get_db() -> SQLiteAdapter:
    global _db
    if _db is None:
        conn = await aiosqlite.connect(DATABASE_PATH)
        conn.row_factory = aiosqlite.Row
        if DATABASE_PATH != ":memory:":
            # Autosave writes land every few seconds while history is being read
            await conn.execute("PRAGMA journal_mode=WAL")
        _db = SQLiteAdapter(conn)
        logger.info("Opened report store at %s", DATABASE_PATH)
    return _db


# One row per session record. ``data`` holds the JSON-encoded report; the
# other columns mirror it so ownership and status queries never need to parse.
REPORTS_SCHEMA = """
    CREATE TABLE IF NOT EXISTS reports (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL DEFAULT '',
        mode TEXT NOT NULL DEFAULT 'EMS',
        status TEXT NOT NULL DEFAULT 'in_progress',
        timestamp TEXT NOT NULL DEFAULT '',
        data TEXT DEFAULT '{}'
    );

    CREATE INDEX IF NOT EXISTS idx_reports_owner
        ON reports (user_id, mode, status);
"""


async def init_db() -> None:
    db = await get_db()
    await db.conn.executescript(REPORTS_SCHEMA)
    await db.commit()
    logger.info("Report store ready")


async def close_db() -> None:
    global _db
    if _db is not None:
        await _db.close()
        _db = None
