"""ChatSession tests: pending-message replay and stream folding.

The session is driven against the real app over ``ASGITransport`` with the
Gemini client mocked, so create, navigate, mount and stream run end to end.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio

from crmchat.client.session import (
    ChatSession,
    ChatSessionError,
    PendingMessageStore,
    apply_event,
)
from crmchat.services import chat_store
from tests.llm.conftest import make_text_stream, make_tool_call_stream


@pytest.fixture
def gemini(monkeypatch):
    client = MagicMock()
    client.aio.models.generate_content_stream = AsyncMock(side_effect=[
        make_tool_call_stream([("searchRecords", {"table": "Clients", "filterByFormula": "1"})]),
        make_text_stream(["| Nom |\n", "| Acme |"]),
    ])
    monkeypatch.setattr("crmchat.services.llm_service.client", client)
    return client


@pytest_asyncio.fixture
async def http(wired_app, test_session):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=wired_app),
        base_url="http://test",
        cookies={"session_token": test_session["id"]},
    ) as client:
        yield client


# ---------------------------------------------------------------------------
# PendingMessageStore
# ---------------------------------------------------------------------------


def test_consume_is_read_and_clear():
    store = PendingMessageStore()
    store.stash("c1", "Liste mes clients")

    assert store.consume("c1") == "Liste mes clients"
    assert store.consume("c1") is None
    assert store.consume("other") is None


# ---------------------------------------------------------------------------
# apply_event
# ---------------------------------------------------------------------------


class TestApplyEvent:
    def test_text_deltas_extend_the_last_text_part(self):
        message = {"id": "m", "role": "assistant", "parts": []}
        apply_event(message, {"type": "text_delta", "token": "Bon"})
        apply_event(message, {"type": "text_delta", "token": "jour"})

        assert message["parts"] == [{"type": "text", "text": "Bonjour"}]

    def test_tool_part_shows_label_until_result(self):
        message = {"id": "m", "role": "assistant", "parts": []}
        apply_event(message, {"type": "tool_call_start", "toolCallId": "c1", "tool": "getRecordDetails", "args": {}})

        assert message["parts"][0]["state"] == "running"
        assert message["parts"][0]["label"] == "Lecture du dossier en cours..."

        apply_event(message, {"type": "tool_result", "toolCallId": "c1", "tool": "getRecordDetails", "result": "{}"})

        assert message["parts"][0]["state"] == "done"
        assert message["parts"][0]["label"] is None

    def test_text_after_a_tool_starts_a_new_text_part(self):
        message = {"id": "m", "role": "assistant", "parts": []}
        apply_event(message, {"type": "text_delta", "token": "Je cherche."})
        apply_event(message, {"type": "tool_call_start", "toolCallId": "c1", "tool": "searchRecords", "args": {}})
        apply_event(message, {"type": "text_delta", "token": "Voici."})

        assert [p["type"] for p in message["parts"]] == ["text", "tool", "text"]

    def test_chart_part(self):
        message = {"id": "m", "role": "assistant", "parts": []}
        apply_event(message, {
            "type": "chart",
            "toolCallId": "c1",
            "chartType": "bar",
            "data": [{"name": "A", "value": 1}],
        })

        assert message["parts"] == [{
            "type": "chart",
            "toolCallId": "c1",
            "chartType": "bar",
            "data": [{"name": "A", "value": 1}],
        }]

    def test_completion_adopts_the_stored_id_and_errors_are_kept(self):
        message = {"id": "local", "role": "assistant", "parts": []}
        apply_event(message, {"type": "persist_error", "error": "not saved"})
        apply_event(message, {"type": "chat_complete", "messageId": "stored", "text": "", "toolCalls": 0})

        assert message["id"] == "stored"
        assert message["errors"] == ["not saved"]


# ---------------------------------------------------------------------------
# ChatSession against the app
# ---------------------------------------------------------------------------


class TestChatSession:
    @pytest.mark.asyncio
    async def test_first_message_creates_navigates_and_replays_once(self, http, fresh_db, test_user, gemini):
        pending = PendingMessageStore()
        pages: list[ChatSession] = []
        created = MagicMock()

        async def navigate(chat_id: str) -> None:
            page = ChatSession(http, chat_id, pending=pending, on_chat_created=created)
            pages.append(page)
            await page.mount()

        home = ChatSession(http, pending=pending, navigate=navigate, on_chat_created=created)
        result = await home.send("Liste mes clients")

        assert result is None
        assert len(pages) == 1
        page = pages[0]
        assert await chat_store.get_chat(fresh_db, page.chat_id) is not None

        assistant = page.messages[-1]
        assert [m["role"] for m in page.messages] == ["user", "assistant"]
        assert [p["type"] for p in assistant["parts"]] == ["tool", "text"]
        assert assistant["parts"][0]["state"] == "done"
        assert assistant["parts"][1]["text"] == "| Nom |\n| Acme |"

        # Remounting the same page does not resend.
        assert await page.mount() is None
        assert pending.consume(page.chat_id) is None
        assert gemini.aio.models.generate_content_stream.await_count == 2
        assert created.call_count == 2

        stored = await chat_store.list_messages(fresh_db, page.chat_id)
        assert [m["role"] for m in stored] == ["user", "assistant"]
        assert assistant["id"] == stored[1]["id"]

    @pytest.mark.asyncio
    async def test_blank_text_is_ignored(self, http):
        session = ChatSession(http, "c1", pending=PendingMessageStore())

        assert await session.send("   ") is None
        assert session.messages == []

    @pytest.mark.asyncio
    async def test_rejected_turn_raises(self, wired_app, gemini):
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=wired_app), base_url="http://test"
        ) as anon:
            session = ChatSession(anon, "c1", pending=PendingMessageStore())

            with pytest.raises(ChatSessionError) as exc_info:
                await session.send("Salut")

        assert exc_info.value.status == 401
        assert not session.is_loading

    @pytest.mark.asyncio
    async def test_failed_create_keeps_nothing_pending(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert json.loads(request.content)["chatId"]
            return httpx.Response(500, json={"error": "Failed to create chat"})

        pending = PendingMessageStore()
        navigate = MagicMock()
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url="http://test"
        ) as client:
            session = ChatSession(client, pending=pending, navigate=navigate)
            with pytest.raises(ChatSessionError, match="Failed to create chat"):
                await session.send("Salut")

        navigate.assert_not_called()
        assert pending._messages == {}
