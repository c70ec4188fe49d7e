"""Shared pytest fixtures for backend tests.

Provides:
- ``fresh_db``: in-memory SQLite initialised with the production schema
- ``test_user`` / ``test_session``: a pre-seeded user and a valid session
- ``other_user`` / ``other_session``: a second identity
- ``airtable_client``: factory for an ``AirtableClient`` over ``httpx.MockTransport``
- ``mock_send``: async callable capturing stream events
- ``mock_schema_cache`` / ``mock_tabular``: stand-ins for the Airtable-backed services
- ``wired_app``: the FastAPI app with those stand-ins on ``app.state``
"""

from __future__ import annotations

import os
from unittest.mock import AsyncMock, MagicMock

# Set required env vars for crmchat.config.Settings before any crmchat imports.
os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key")
os.environ.setdefault("AIRTABLE_API_KEY", "test-airtable-key")
os.environ.setdefault("AIRTABLE_BASE_ID", "appTestBase")

# Clear the lru_cache so Settings picks up the test env vars.
from crmchat.config import get_settings  # noqa: E402
get_settings.cache_clear()

import aiosqlite  # noqa: E402
import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from crmchat.database import init_db  # noqa: E402
from crmchat.services.airtable_client import AirtableClient  # noqa: E402
from crmchat.services.schema_cache import SchemaResult  # noqa: E402
from tests.factories import make_session, make_user  # noqa: E402

# ---------------------------------------------------------------------------
# Helper: insert rows via parameterised SQL
# ---------------------------------------------------------------------------


async def insert_user(db: aiosqlite.Connection, user: dict) -> None:
    await db.execute(
        "INSERT INTO users (id, email, name, created_at) VALUES (?, ?, ?, ?)",
        (user["id"], user["email"], user["name"], user["created_at"]),
    )
    await db.commit()


async def insert_session(db: aiosqlite.Connection, session: dict) -> None:
    await db.execute(
        "INSERT INTO sessions (id, user_id, created_at, expires_at) VALUES (?, ?, ?, ?)",
        (
            session["id"],
            session["user_id"],
            session["created_at"],
            session["expires_at"],
        ),
    )
    await db.commit()


async def insert_chat(db: aiosqlite.Connection, chat: dict) -> None:
    await db.execute(
        "INSERT INTO chats (id, user_id, title, created_at) VALUES (?, ?, ?, ?)",
        (chat["id"], chat["user_id"], chat["title"], chat["created_at"]),
    )
    await db.commit()


async def insert_message(db: aiosqlite.Connection, message: dict) -> None:
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


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def fresh_db():
    """In-memory SQLite database with the full schema applied."""
    conn = await aiosqlite.connect(":memory:")
    conn.row_factory = aiosqlite.Row
    await init_db(conn)
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def test_user(fresh_db):
    """A pre-seeded user record inserted into ``fresh_db``."""
    user = make_user()
    await insert_user(fresh_db, user)
    return user


@pytest_asyncio.fixture
async def test_session(fresh_db, test_user):
    """A valid session for ``test_user``, inserted into ``fresh_db``."""
    session = make_session(user_id=test_user["id"])
    await insert_session(fresh_db, session)
    return session


@pytest_asyncio.fixture
async def other_user(fresh_db):
    user = make_user(id="other-user", email="other@test.com", name="Other User")
    await insert_user(fresh_db, user)
    return user


@pytest_asyncio.fixture
async def other_session(fresh_db, other_user):
    session = make_session(user_id=other_user["id"])
    await insert_session(fresh_db, session)
    return session


@pytest_asyncio.fixture
async def airtable_client():
    """Factory: ``airtable_client(handler)`` -> client routed to *handler*.

    *handler* receives each ``httpx.Request`` and returns an ``httpx.Response``.
    Every client built here is closed at teardown.
    """
    clients: list[AirtableClient] = []

    def _make(handler) -> AirtableClient:
        client = AirtableClient(
            "test-airtable-key",
            "appTestBase",
            api_url="https://airtable.test/v0",
            transport=httpx.MockTransport(handler),
        )
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.aclose()


@pytest.fixture
def mock_send():
    """Async callable that captures stream events.

    Orchestration code calls ``await emit(event_dict)``; every dict is
    recorded on ``mock_send.messages``.
    """
    sent: list[dict] = []

    async def send(msg: dict) -> None:
        sent.append(msg)

    send.messages = sent  # type: ignore[attr-defined]
    return send


@pytest.fixture
def mock_schema_cache():
    cache = MagicMock()
    cache.is_fresh = True
    cache.get_schema = AsyncMock(
        return_value=SchemaResult(tables=[{"tableName": "Clients", "fields": [{"name": "Nom", "type": "singleLineText"}]}])
    )
    return cache


@pytest.fixture
def mock_tabular():
    tabular = MagicMock()
    tabular.search = AsyncMock(return_value='[{"id": "rec1", "fields": {"Nom": "Acme"}}]')
    tabular.get_detail = AsyncMock(return_value='{"id": "rec1", "Nom": "Acme"}')
    tabular.aggregate = AsyncMock(
        return_value={"chartType": "pie", "data": [{"name": "Actif", "value": 3}]}
    )
    return tabular


@pytest.fixture
def wired_app(fresh_db, mock_schema_cache, mock_tabular):
    """The FastAPI app with test doubles on ``app.state``.

    ``ASGITransport`` does not run the lifespan, so state is set by hand.
    """
    from crmchat.main import app

    app.state.db = fresh_db
    app.state.schema_cache = mock_schema_cache
    app.state.tabular = mock_tabular
    yield app
    for name in ("schema_cache", "tabular"):
        if hasattr(app.state, name):
            delattr(app.state, name)
