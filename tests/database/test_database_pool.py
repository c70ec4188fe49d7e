"""Tests for the database connection pool.

Tests the DatabasePool class for concurrent read operations.
"""

import pytest

from crmchat.database import DatabasePool


@pytest.mark.asyncio
async def test_pool_initialization(tmp_path):
    """The pool opens one write connection plus ``pool_size`` readers."""
    pool = DatabasePool(str(tmp_path / "crmchat.db"), pool_size=3)
    await pool.initialize()

    try:
        assert pool.get_write_connection() is not None

        connections = [await pool.acquire_read() for _ in range(3)]
        assert len(connections) == 3

        for conn in connections:
            await pool.release_read(conn)
    finally:
        await pool.close()


@pytest.mark.asyncio
async def test_reads_see_committed_writes(tmp_path):
    pool = DatabasePool(str(tmp_path / "crmchat.db"), pool_size=2)
    await pool.initialize()

    try:
        writer = pool.get_write_connection()
        await writer.execute(
            "INSERT INTO users (id, email, name, created_at) VALUES (?, ?, ?, ?)",
            ("u1", "u1@test.com", "U1", "2025-01-01T00:00:00"),
        )
        await writer.commit()

        reader = await pool.acquire_read()
        try:
            cursor = await reader.execute("SELECT name FROM users WHERE id = ?", ("u1",))
            row = await cursor.fetchone()
            assert row["name"] == "U1"
        finally:
            await pool.release_read(reader)
    finally:
        await pool.close()


@pytest.mark.asyncio
async def test_write_connection_requires_initialize(tmp_path):
    pool = DatabasePool(str(tmp_path / "crmchat.db"))

    with pytest.raises(RuntimeError, match="Pool not initialized"):
        pool.get_write_connection()
