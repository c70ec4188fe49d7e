"""Session lookup: resolves a session token to the calling identity.

Login itself happens elsewhere; this module only owns the ``sessions``
table contract the chat endpoints rely on.

Provides:
- ``create_session(db, user_id)``: Creates a new session, returns token.
- ``validate_session(db, session_token)``: Validates and refreshes a session.
- ``delete_session(db, session_token)``: Deletes a session.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import aiosqlite

from crmchat.config import get_settings


def _session_duration() -> timedelta:
    return timedelta(days=get_settings().session_duration_days)


async def create_session(db: aiosqlite.Connection, user_id: str) -> str:
    """Create a new session for *user_id*, return the session token (UUID).

    The token doubles as the session ``id`` in the ``sessions`` table.
    """
    token = str(uuid4())
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    expires_at = now + _session_duration()

    await db.execute(
        "INSERT INTO sessions (id, user_id, created_at, expires_at) VALUES (?, ?, ?, ?)",
        (token, user_id, now.isoformat(), expires_at.isoformat()),
    )
    await db.commit()
    return token


async def validate_session(
    db: aiosqlite.Connection, session_token: str
) -> dict | None:
    """Look up *session_token*, check it is not expired, refresh expiry.

    Returns a user dict ``{id, email, name}`` on success,
    or ``None`` if the session is invalid or expired.
    """
    if not session_token:
        return None

    now = datetime.now(timezone.utc).replace(tzinfo=None)

    cursor = await db.execute(
        "SELECT s.id AS session_id, s.expires_at, "
        "       u.id, u.email, u.name "
        "FROM sessions s "
        "JOIN users u ON s.user_id = u.id "
        "WHERE s.id = ?",
        (session_token,),
    )
    row = await cursor.fetchone()

    if row is None:
        return None

    expires_at = datetime.fromisoformat(row["expires_at"])
    if expires_at <= now:
        return None

    new_expiry = now + _session_duration()
    await db.execute(
        "UPDATE sessions SET expires_at = ? WHERE id = ?",
        (new_expiry.isoformat(), session_token),
    )
    await db.commit()

    return {
        "id": row["id"],
        "email": row["email"],
        "name": row["name"],
    }


async def delete_session(db: aiosqlite.Connection, session_token: str) -> None:
    """Delete a session row. No-op if the session does not exist."""
    await db.execute("DELETE FROM sessions WHERE id = ?", (session_token,))
    await db.commit()
