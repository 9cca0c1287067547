"""
Nexus Scheduling Agent - Persisted State
Key-value store over PostgreSQL (asyncpg) with an in-memory fallback.

Holds session messages and memory, cached knowledge embeddings and the
last-fetch timestamp of each provider resource. Values must be JSON-serializable.
"""

import copy
import json
import logging
from typing import Any, Dict, List, Optional, Protocol

import asyncpg

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[Any]:
        ...

    async def set(self, key: str, value: Any) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...


# ============================================
# IN-MEMORY STORE
# ============================================

class InMemoryStore:
    """Process-local store used when no DATABASE_URL is configured."""

    def __init__(self):
        self._data: Dict[str, Any] = {}

    async def get(self, key: str) -> Optional[Any]:
        return copy.deepcopy(self._data.get(key))

    async def set(self, key: str, value: Any) -> None:
        # Round-trip through JSON so both stores accept exactly the same values
        self._data[key] = json.loads(json.dumps(value))

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


# ============================================
# POSTGRES STORE
# ============================================

SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value JSONB NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""


class Database:
    """Async database connection manager."""

    def __init__(self, database_url: str):
        self.database_url = database_url
        self._pool = None

    async def connect(self):
        """Create connection pool."""
        self._pool = await asyncpg.create_pool(self.database_url, min_size=1, max_size=5)
        logger.info("Database connected")

    async def disconnect(self):
        """Close connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Database disconnected")

    async def fetch_one(self, query: str, *args) -> Optional[dict]:
        """Fetch single row."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(query, *args)
            return dict(row) if row else None

    async def fetch(self, query: str, *args) -> List[dict]:
        """Fetch multiple rows."""
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, *args)
            return [dict(row) for row in rows]

    async def execute(self, query: str, *args) -> str:
        """Execute query (INSERT, UPDATE, DELETE)."""
        async with self._pool.acquire() as conn:
            return await conn.execute(query, *args)


class PostgresStore:
    """``kv_store`` table with JSONB values."""

    def __init__(self, db: Database):
        self.db = db

    async def initialize(self):
        await self.db.execute(SCHEMA)

    async def get(self, key: str) -> Optional[Any]:
        row = await self.db.fetch_one("SELECT value FROM kv_store WHERE key = $1", key)
        if row is None:
            return None
        return json.loads(row["value"])

    async def set(self, key: str, value: Any) -> None:
        await self.db.execute(
            """INSERT INTO kv_store (key, value, updated_at)
               VALUES ($1, $2::jsonb, NOW())
               ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value, updated_at = NOW()""",
            key, json.dumps(value)
        )

    async def delete(self, key: str) -> None:
        await self.db.execute("DELETE FROM kv_store WHERE key = $1", key)

    async def keys(self, prefix: str = "") -> List[str]:
        rows = await self.db.fetch(
            "SELECT key FROM kv_store WHERE key LIKE $1 ORDER BY key", prefix + "%"
        )
        return [row["key"] for row in rows]
