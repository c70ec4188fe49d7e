"""Client-side chat session driving the HTTP API.

A ``ChatSession`` is bound to one chat page. Sending from a page without a
chat id creates the chat, stashes the text in a ``PendingMessageStore`` and
navigates; the session mounted for the new id then replays it exactly once.
Turn events arriving as NDJSON are folded into the last assistant message
as ``text``, ``tool`` and ``chart`` parts.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Callable
from uuid import uuid4

import httpx

from crmchat.services.tools import tool_label

logger = logging.getLogger(__name__)

CREATE_PATH = "/api/chat/create"
TURN_PATH = "/api/chat"


class ChatSessionError(Exception):
    """Raised when the API rejects a create or turn request."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"{status} {message}")
        self.status = status
        self.message = message


class PendingMessageStore:
    """Per-tab stash of the first message of a chat being created."""

    def __init__(self) -> None:
        self._messages: dict[str, str] = {}

    def stash(self, chat_id: str, text: str) -> None:
        self._messages[chat_id] = text

    def consume(self, chat_id: str) -> str | None:
        """Return and forget the stashed text; later calls return ``None``."""
        return self._messages.pop(chat_id, None)


async def _call(callback: Callable | None, *args) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return response.reason_phrase


def user_message(text: str) -> dict:
    return {"id": str(uuid4()), "role": "user", "parts": [{"type": "text", "text": text}]}


def apply_event(message: dict, event: dict) -> None:
    """Fold one stream event into the assistant *message* in place."""
    parts: list[dict] = message["parts"]
    kind = event.get("type")

    if kind == "text_delta":
        if parts and parts[-1]["type"] == "text":
            parts[-1]["text"] += event["token"]
        else:
            parts.append({"type": "text", "text": event["token"]})

    elif kind == "tool_call_start":
        parts.append({
            "type": "tool",
            "toolCallId": event["toolCallId"],
            "tool": event["tool"],
            "state": "running",
            "label": tool_label(event["tool"]),
        })

    elif kind == "tool_result":
        for part in parts:
            if part["type"] == "tool" and part["toolCallId"] == event["toolCallId"]:
                part["state"] = "done"
                part["label"] = None
                part["result"] = event["result"]
                break

    elif kind == "chart":
        chart = {
            "type": "chart",
            "toolCallId": event["toolCallId"],
            "chartType": event.get("chartType"),
            "data": event.get("data", []),
        }
        if event.get("error"):
            chart["error"] = event["error"]
        parts.append(chart)

    elif kind == "chat_complete":
        if event.get("messageId"):
            message["id"] = event["messageId"]

    elif kind in ("chat_error", "persist_error"):
        message.setdefault("errors", []).append(event["error"])


class ChatSession:
    """State of one chat page.

    Args:
        http: Client whose ``base_url`` points at the API and which carries
            the session cookie.
        chat_id: Id of the chat shown, ``None`` on the empty home page.
        pending: Store shared by every session of the same tab.
        initial_messages: History loaded from ``GET /api/chats/{id}``.
        navigate: Called with the new chat id after creation.
        on_chat_created: Called after creation and after each finished turn
            so the sidebar can refresh.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        chat_id: str | None = None,
        *,
        pending: PendingMessageStore,
        initial_messages: list[dict] | None = None,
        navigate: Callable[[str], object] | None = None,
        on_chat_created: Callable[[], object] | None = None,
    ) -> None:
        self.http = http
        self.chat_id = chat_id
        self.pending = pending
        self.messages: list[dict] = list(initial_messages or [])
        self.navigate = navigate
        self.on_chat_created = on_chat_created
        self.is_loading = False
        self._mounted = False

    async def mount(self) -> dict | None:
        """Replay the stashed first message of this chat, at most once."""
        if self._mounted or self.chat_id is None:
            return None
        self._mounted = True
        text = self.pending.consume(self.chat_id)
        if text is None:
            return None
        return await self.send(text)

    async def send(self, text: str) -> dict | None:
        """Send *text*; returns the assistant message once the turn ended.

        Returns ``None`` when nothing was sent: blank text, a turn already
        in flight, or no chat yet (the chat is created and the text is
        left for the next page's ``mount``).
        """
        text = text.strip()
        if not text or self.is_loading:
            return None
        if self.chat_id is None:
            await self._start_new_chat(text)
            return None
        return await self._run_turn(text)

    async def _start_new_chat(self, text: str) -> None:
        new_id = str(uuid4())
        self.is_loading = True
        try:
            response = await self.http.post(CREATE_PATH, json={"chatId": new_id})
            if response.is_error:
                raise ChatSessionError(response.status_code, _error_message(response))
        finally:
            self.is_loading = False

        self.pending.stash(new_id, text)
        logger.debug("Created chat %s, navigating", new_id)
        await _call(self.on_chat_created)
        await _call(self.navigate, new_id)

    async def _run_turn(self, text: str) -> dict:
        self.messages.append(user_message(text))
        assistant = {"id": str(uuid4()), "role": "assistant", "parts": []}
        payload = {"chatId": self.chat_id, "messages": list(self.messages)}

        self.is_loading = True
        try:
            async with self.http.stream("POST", TURN_PATH, json=payload) as response:
                if response.is_error:
                    await response.aread()
                    raise ChatSessionError(response.status_code, _error_message(response))
                self.messages.append(assistant)
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    apply_event(assistant, json.loads(line))
        finally:
            self.is_loading = False

        await _call(self.on_chat_created)
        return assistant
