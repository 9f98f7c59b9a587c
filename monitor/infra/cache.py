"""
Response cache with SQLite and async support.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import aiosqlite


logger = logging.getLogger(__name__)


def cache_key(params: Mapping[str, str]) -> str:
    """Stable key for a parameter map, independent of insertion order."""
    canonical = json.dumps(dict(params), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class ResponseCache:
    """Time-limited store of search responses keyed by their parameters."""

    def __init__(self, db_path: str = "state/cache.db", ttl: float = 3600.0):
        self.db_path = Path(db_path)
        self.ttl = ttl
        self._connection: Optional[aiosqlite.Connection] = None
        self.hits = 0
        self.misses = 0

    async def connect(self) -> None:
        """Open the database and create the table."""
        if self._connection:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self.db_path, timeout=30)
        self._connection.row_factory = aiosqlite.Row
        await self._connection.execute("PRAGMA journal_mode=WAL;")
        await self._connection.execute("PRAGMA busy_timeout=30000;")
        await self._connection.execute(
            """
            CREATE TABLE IF NOT EXISTS responses (
                key TEXT PRIMARY KEY,
                payload TEXT NOT NULL,
                created_at REAL NOT NULL,
                expires_at REAL NOT NULL
            )
            """
        )
        await self._connection.commit()

    async def close(self) -> None:
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def _conn(self) -> aiosqlite.Connection:
        if not self._connection:
            await self.connect()
        return self._connection

    async def get(self, params: Mapping[str, str]) -> Optional[Any]:
        conn = await self._conn()
        cursor = await conn.execute(
            "SELECT payload, expires_at FROM responses WHERE key = ?",
            (cache_key(params),),
        )
        row = await cursor.fetchone()
        if row is None or row["expires_at"] <= time.time():
            self.misses += 1
            return None
        self.hits += 1
        return json.loads(row["payload"])

    async def set(self, params: Mapping[str, str], payload: Any, ttl: Optional[float] = None) -> None:
        conn = await self._conn()
        now = time.time()
        await conn.execute(
            """
            INSERT INTO responses (key, payload, created_at, expires_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                payload = excluded.payload,
                created_at = excluded.created_at,
                expires_at = excluded.expires_at
            """,
            (cache_key(params), json.dumps(payload), now, now + (self.ttl if ttl is None else ttl)),
        )
        await conn.commit()

    async def delete(self, params: Mapping[str, str]) -> None:
        conn = await self._conn()
        await conn.execute("DELETE FROM responses WHERE key = ?", (cache_key(params),))
        await conn.commit()

    async def clear(self) -> None:
        conn = await self._conn()
        await conn.execute("DELETE FROM responses")
        await conn.commit()
        self.hits = self.misses = 0

    async def purge_expired(self) -> int:
        conn = await self._conn()
        cursor = await conn.execute("DELETE FROM responses WHERE expires_at <= ?", (time.time(),))
        await conn.commit()
        removed = cursor.rowcount
        if removed:
            logger.info(f"Purged {removed} expired cache entries")
        return removed

    async def stats(self) -> Dict[str, Any]:
        conn = await self._conn()
        cursor = await conn.execute(
            "SELECT COUNT(*) AS total, SUM(expires_at <= ?) AS expired FROM responses",
            (time.time(),),
        )
        row = await cursor.fetchone()
        lookups = self.hits + self.misses
        return {
            "entries": row["total"] or 0,
            "expired": row["expired"] or 0,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / lookups if lookups else 0.0,
        }
