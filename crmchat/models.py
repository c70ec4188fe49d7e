"""Pydantic request/response models for the chat API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


# ---------------------------------------------------------------------------
# UI message shape
# ---------------------------------------------------------------------------


class UIMessagePart(BaseModel):
    """One part of a browser message; only ``text`` parts carry text."""

    model_config = ConfigDict(extra="allow")

    type: str
    text: str | None = None


class UIMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    role: str
    parts: list[UIMessagePart] = []
    content: str | None = None


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class CreateChatRequest(BaseModel):
    """Body for ``POST /api/chat/create``."""

    chatId: str | None = None


class RenameChatRequest(BaseModel):
    """Body for ``PATCH /api/chat/rename``."""

    chatId: str | None = None
    title: str | None = None


class ChatTurnRequest(BaseModel):
    """Body for ``POST /api/chat``."""

    chatId: str | None = None
    messages: list[UIMessage] = []


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class OkResponse(BaseModel):
    ok: bool = True


class ChatSummary(BaseModel):
    """Single item in the sidebar list."""

    id: str
    title: str
    created_at: datetime


class ChatListResponse(BaseModel):
    chats: list[ChatSummary]


class ChatDetailResponse(BaseModel):
    """A chat with its history, assistant envelopes reduced to text."""

    id: str
    title: str
    created_at: datetime
    messages: list[UIMessage]
