"""Chat and message persistence.

Every chat row carries its owner; callers pass the owner id on every
write that must be scoped to it (rename, delete) so that a non-owner
update simply matches zero rows.
"""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

import aiosqlite

DEFAULT_CHAT_TITLE = "Nouvelle conversation"
TITLE_WORD_COUNT = 5


def _now() -> str:
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat()


def title_from_text(text: str) -> str:
    """Return the first five whitespace-separated words of *text*.

    Falls back to the placeholder title when *text* is empty or blank.
    """
    words = text.split()[:TITLE_WORD_COUNT]
    return " ".join(words) or DEFAULT_CHAT_TITLE


# ---------------------------------------------------------------------------
# Chats
# ---------------------------------------------------------------------------


async def create_chat(db: aiosqlite.Connection, chat_id: str, user_id: str) -> bool:
    """Insert the chat if absent. Returns ``True`` when a row was created.

    An existing row (whatever its owner or title) is left untouched.
    """
    cursor = await db.execute(
        "INSERT INTO chats (id, user_id, title, created_at) VALUES (?, ?, ?, ?) "
        "ON CONFLICT(id) DO NOTHING",
        (chat_id, user_id, DEFAULT_CHAT_TITLE, _now()),
    )
    await db.commit()
    return cursor.rowcount == 1


async def get_chat(db: aiosqlite.Connection, chat_id: str) -> dict | None:
    cursor = await db.execute(
        "SELECT id, user_id, title, created_at FROM chats WHERE id = ?",
        (chat_id,),
    )
    row = await cursor.fetchone()
    return dict(row) if row is not None else None


async def list_chats(db: aiosqlite.Connection, user_id: str) -> list[dict]:
    """Return the caller's chats, newest first."""
    cursor = await db.execute(
        "SELECT id, title, created_at FROM chats WHERE user_id = ? "
        "ORDER BY created_at DESC",
        (user_id,),
    )
    rows = await cursor.fetchall()
    return [dict(r) for r in rows]


async def rename_chat(
    db: aiosqlite.Connection, chat_id: str, user_id: str, title: str
) -> int:
    """Set the chat title. Returns the number of rows updated (0 or 1)."""
    cursor = await db.execute(
        "UPDATE chats SET title = ? WHERE id = ? AND user_id = ?",
        (title.strip(), chat_id, user_id),
    )
    await db.commit()
    return cursor.rowcount


async def apply_auto_title(db: aiosqlite.Connection, chat_id: str, text: str) -> bool:
    """Rename a chat from the placeholder to a title derived from *text*.

    Only applies while the title is still the placeholder, so a manual
    rename is never overwritten.
    """
    cursor = await db.execute(
        "UPDATE chats SET title = ? WHERE id = ? AND title = ?",
        (title_from_text(text), chat_id, DEFAULT_CHAT_TITLE),
    )
    await db.commit()
    return cursor.rowcount == 1


async def delete_chat(db: aiosqlite.Connection, chat_id: str, user_id: str) -> int:
    """Delete a chat and (via ON DELETE CASCADE) its messages."""
    cursor = await db.execute(
        "DELETE FROM chats WHERE id = ? AND user_id = ?",
        (chat_id, user_id),
    )
    await db.commit()
    return cursor.rowcount


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


async def insert_message(
    db: aiosqlite.Connection, chat_id: str, role: str, content: str
) -> dict:
    message = {
        "id": str(uuid4()),
        "chat_id": chat_id,
        "role": role,
        "content": content,
        "created_at": _now(),
    }
    await db.execute(
        "INSERT INTO messages (id, chat_id, role, content, created_at) "
        "VALUES (?, ?, ?, ?, ?)",
        (
            message["id"],
            message["chat_id"],
            message["role"],
            message["content"],
            message["created_at"],
        ),
    )
    await db.commit()
    return message


async def list_messages(db: aiosqlite.Connection, chat_id: str) -> list[dict]:
    """Return the chat's messages in insertion order."""
    cursor = await db.execute(
        "SELECT id, chat_id, role, content, created_at FROM messages "
        "WHERE chat_id = ? ORDER BY created_at, rowid",
        (chat_id,),
    )
    rows = await cursor.fetchall()
    return [dict(r) for r in rows]
