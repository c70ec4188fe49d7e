"""Database connection management and schema initialisation.

Provides:
- ``init_db(conn)``: Enable PRAGMAs, create the 4 tables and their indexes.
- ``DatabasePool``: Simple connection pool for concurrent reads.

Chats and messages live here; the remote CRM data never does.
"""

from __future__ import annotations

import asyncio

import aiosqlite


# ---------------------------------------------------------------------------
# Schema SQL
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS users (
    id              TEXT PRIMARY KEY,
    email           TEXT NOT NULL,
    name            TEXT NOT NULL,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sessions (
    id              TEXT PRIMARY KEY,
    user_id         TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    created_at      TEXT NOT NULL,
    expires_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS chats (
    id              TEXT PRIMARY KEY,
    user_id         TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    title           TEXT NOT NULL,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id              TEXT PRIMARY KEY,
    chat_id         TEXT NOT NULL REFERENCES chats(id) ON DELETE CASCADE,
    role            TEXT NOT NULL CHECK(role IN ('user', 'assistant')),
    content         TEXT NOT NULL,
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sessions_user_id ON sessions(user_id);
CREATE INDEX IF NOT EXISTS idx_chats_user_id ON chats(user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_messages_chat_id ON messages(chat_id, created_at);
"""


# ---------------------------------------------------------------------------
# Connection Pool
# ---------------------------------------------------------------------------


class DatabasePool:
    """Simple connection pool for concurrent read operations.

    SQLite with WAL mode allows multiple concurrent readers but only one writer.
    This pool maintains a small number of read connections to handle concurrent
    GET requests while keeping a single write connection for INSERT/UPDATE/DELETE.
    """

    def __init__(self, db_path: str, pool_size: int = 5):
        self.db_path = db_path
        self.pool_size = pool_size
        self._pool: asyncio.Queue[aiosqlite.Connection] = asyncio.Queue(maxsize=pool_size)
        self._write_conn: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Create all connections and initialize the database schema."""
        self._write_conn = await aiosqlite.connect(self.db_path)
        self._write_conn.row_factory = aiosqlite.Row
        await init_db(self._write_conn)

        for _ in range(self.pool_size):
            conn = await aiosqlite.connect(self.db_path)
            conn.row_factory = aiosqlite.Row
            # Read-only connections don't need full init, just PRAGMAs
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA foreign_keys=ON")
            await self._pool.put(conn)

    async def close(self) -> None:
        """Close all connections in the pool."""
        if self._write_conn:
            await self._write_conn.close()
            self._write_conn = None

        while not self._pool.empty():
            conn = await self._pool.get()
            await conn.close()

    async def acquire_read(self) -> aiosqlite.Connection:
        """Acquire a read connection from the pool."""
        return await self._pool.get()

    async def release_read(self, conn: aiosqlite.Connection) -> None:
        """Release a read connection back to the pool."""
        await self._pool.put(conn)

    def get_write_connection(self) -> aiosqlite.Connection:
        """Get the dedicated write connection.

        Chat turns also persist through this connection from their
        background task, after the request that started them has returned.
        """
        if not self._write_conn:
            raise RuntimeError("Pool not initialized")
        return self._write_conn


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def init_db(conn: aiosqlite.Connection) -> None:
    """Initialise the database: enable PRAGMAs, create tables and indexes.

    The caller is responsible for opening and closing the connection.
    """
    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA foreign_keys=ON")
    await conn.executescript(_SCHEMA_SQL)
    await conn.commit()
