"""Fixtures for REST API endpoint tests.

Extends the shared backend fixtures with HTTP-client-specific helpers.
"""

from __future__ import annotations

import json

import pytest_asyncio
from httpx import ASGITransport, AsyncClient


# ---------------------------------------------------------------------------
# Response assertion helpers
# ---------------------------------------------------------------------------

def assert_error_response(response, status_code, error_substring=None):
    assert response.status_code == status_code
    body = response.json()
    assert "error" in body
    if error_substring:
        assert error_substring in body["error"]


def assert_success_response(response, status_code=200):
    assert response.status_code == status_code
    return response.json()


def parse_ndjson(response) -> list[dict]:
    return [json.loads(line) for line in response.text.splitlines() if line.strip()]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def anon_client(wired_app):
    """Client without a session cookie."""
    async with AsyncClient(transport=ASGITransport(app=wired_app), base_url="http://test") as client:
        yield client


@pytest_asyncio.fixture
async def authed_client(wired_app, test_session):
    """httpx.AsyncClient pointing at the FastAPI app with a session cookie set."""
    async with AsyncClient(
        transport=ASGITransport(app=wired_app),
        base_url="http://test",
        cookies={"session_token": test_session["id"]},
    ) as client:
        yield client


@pytest_asyncio.fixture
async def other_user_client(wired_app, other_session):
    """A second authenticated client belonging to a different user."""
    async with AsyncClient(
        transport=ASGITransport(app=wired_app),
        base_url="http://test",
        cookies={"session_token": other_session["id"]},
    ) as client:
        yield client
