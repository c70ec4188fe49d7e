"""FastAPI dependency injection functions.

Provides:
- ``get_db(request)``: Returns a database connection from the pool.
- ``get_optional_user(request, db)``: Session cookie -> user dict or ``None``.
- ``get_current_user(user)``: Same, but raises 401 when unauthenticated.
- ``get_owned_chat(chat_id, user, db)``: Loads and authorises chat access.
- ``get_schema_cache`` / ``get_tabular_service``: Process-wide services.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import aiosqlite
from fastapi import Depends, HTTPException, Request

from crmchat.database import DatabasePool
from crmchat.exceptions import ForbiddenError, NotFoundError
from crmchat.services import auth_service, chat_store
from crmchat.services.schema_cache import SchemaCache
from crmchat.services.tabular_service import TabularService

SESSION_COOKIE = "session_token"


# ---------------------------------------------------------------------------
# get_db
# ---------------------------------------------------------------------------


async def get_db(request: Request) -> AsyncIterator[aiosqlite.Connection]:
    """Return a database connection from the pool (or shared connection for tests).

    For GET/HEAD requests, acquires a read connection from the pool.
    For POST/PATCH/DELETE/PUT requests, returns the dedicated write connection.
    """
    # Use isinstance check to ensure it's actually a DatabasePool, not a mock
    if hasattr(request.app.state, "db_pool") and isinstance(request.app.state.db_pool, DatabasePool):
        pool: DatabasePool = request.app.state.db_pool

        if request.method in ("POST", "PATCH", "DELETE", "PUT"):
            yield pool.get_write_connection()
        else:
            conn = await pool.acquire_read()
            try:
                yield conn
            finally:
                await pool.release_read(conn)
    else:
        # Fallback for tests: use shared connection
        yield request.app.state.db


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


async def get_optional_user(
    request: Request,
    db: aiosqlite.Connection = Depends(get_db),
) -> dict | None:
    """Resolve the session cookie; ``None`` when absent or invalid.

    The chat endpoints use this so that body validation (400) is reported
    before authentication (401).
    """
    session_token = request.cookies.get(SESSION_COOKIE)
    if not session_token:
        return None
    return await auth_service.validate_session(db, session_token)


async def get_current_user(user: dict | None = Depends(get_optional_user)) -> dict:
    """Raise ``HTTPException(401)`` if the caller is not authenticated."""
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


# ---------------------------------------------------------------------------
# get_owned_chat
# ---------------------------------------------------------------------------


async def get_owned_chat(
    chat_id: str,
    user: dict = Depends(get_current_user),
    db: aiosqlite.Connection = Depends(get_db),
) -> dict:
    """Load a chat by ID and verify the current user owns it.

    Raises ``NotFoundError`` if the chat does not exist and
    ``ForbiddenError`` if the authenticated user is not the owner.
    """
    chat = await chat_store.get_chat(db, chat_id)
    if chat is None:
        raise NotFoundError("Chat not found")
    if chat["user_id"] != user["id"]:
        raise ForbiddenError("Not authorized")
    return chat


# ---------------------------------------------------------------------------
# Process-wide services (built in main.lifespan)
# ---------------------------------------------------------------------------


def get_schema_cache(request: Request) -> SchemaCache:
    return request.app.state.schema_cache


def get_tabular_service(request: Request) -> TabularService:
    return request.app.state.tabular
