"""Chat router -- chat lifecycle plus the streaming turn endpoint.

Endpoints:
- POST   /api/chat/create       -> create_chat
- PATCH  /api/chat/rename       -> rename_chat
- POST   /api/chat              -> chat_turn (NDJSON event stream)
- GET    /api/chats             -> list_chats
- GET    /api/chats/{chat_id}   -> get_chat_detail
- DELETE /api/chats/{chat_id}   -> delete_chat

The three ``/api/chat*`` mutations report a missing ``chatId`` (400) before
a missing identity (401), so they resolve the caller with
``get_optional_user`` and check it themselves.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from datetime import datetime

import aiosqlite
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from crmchat.dependencies import (
    get_current_user,
    get_db,
    get_optional_user,
    get_owned_chat,
    get_schema_cache,
    get_tabular_service,
)
from crmchat.exceptions import NotFoundError
from crmchat.models import (
    ChatDetailResponse,
    ChatListResponse,
    ChatSummary,
    ChatTurnRequest,
    CreateChatRequest,
    OkResponse,
    RenameChatRequest,
    UIMessage,
)
from crmchat.services import chat_service, chat_store
from crmchat.services.schema_cache import SchemaCache
from crmchat.services.tabular_service import TabularService
from crmchat.services.ui_messages import stored_to_ui_message

logger = logging.getLogger(__name__)

router = APIRouter()

NDJSON_MEDIA_TYPE = "application/x-ndjson"


def _require_chat_id(chat_id: str | None) -> str:
    if not chat_id or not chat_id.strip():
        raise HTTPException(status_code=400, detail="chatId required")
    return chat_id.strip()


def _require_user(user: dict | None) -> dict:
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


# ---------------------------------------------------------------------------
# POST /api/chat/create
# ---------------------------------------------------------------------------


@router.post("/chat/create", response_model=OkResponse)
async def create_chat(
    body: CreateChatRequest,
    user: dict | None = Depends(get_optional_user),
    db: aiosqlite.Connection = Depends(get_db),
) -> OkResponse:
    """Create the chat if absent; an existing chat is left untouched."""
    chat_id = _require_chat_id(body.chatId)
    user = _require_user(user)

    try:
        created = await chat_store.create_chat(db, chat_id, user["id"])
    except Exception:
        logger.exception("Failed to create chat %s", chat_id)
        raise HTTPException(status_code=500, detail="Failed to create chat")

    if created:
        logger.info("Created chat %s for user %s", chat_id, user["id"])
    return OkResponse()


# ---------------------------------------------------------------------------
# PATCH /api/chat/rename
# ---------------------------------------------------------------------------


@router.patch("/chat/rename", response_model=OkResponse)
async def rename_chat(
    body: RenameChatRequest,
    user: dict | None = Depends(get_optional_user),
    db: aiosqlite.Connection = Depends(get_db),
) -> OkResponse:
    """Rename a chat owned by the caller.

    A chat that is missing or owned by someone else matches no row and the
    call still succeeds.
    """
    chat_id = _require_chat_id(body.chatId)
    if body.title is None or not body.title.strip():
        raise HTTPException(status_code=400, detail="title required")
    user = _require_user(user)

    try:
        updated = await chat_store.rename_chat(db, chat_id, user["id"], body.title)
    except Exception:
        logger.exception("Failed to rename chat %s", chat_id)
        raise HTTPException(status_code=500, detail="Failed to rename chat")

    if not updated:
        logger.info("Rename of chat %s by user %s matched no row", chat_id, user["id"])
    return OkResponse()


# ---------------------------------------------------------------------------
# POST /api/chat
# ---------------------------------------------------------------------------


async def _drain(queue: asyncio.Queue) -> AsyncIterator[str]:
    """Serialise queued turn events as NDJSON until the ``None`` sentinel."""
    while True:
        event = await queue.get()
        if event is None:
            break
        yield json.dumps(event, ensure_ascii=False) + "\n"


@router.post("/chat")
async def chat_turn(
    body: ChatTurnRequest,
    user: dict | None = Depends(get_optional_user),
    db: aiosqlite.Connection = Depends(get_db),
    schema_cache: SchemaCache = Depends(get_schema_cache),
    tabular: TabularService = Depends(get_tabular_service),
) -> StreamingResponse:
    """Run one assistant turn and stream its events back as NDJSON."""
    chat_id = _require_chat_id(body.chatId)
    user = _require_user(user)

    messages = [m.model_dump(exclude_none=True) for m in body.messages]
    await chat_service.prepare_turn(db, chat_id, user["id"], messages)

    queue = chat_service.start_turn(
        db,
        chat_id,
        messages,
        schema_cache=schema_cache,
        tabular=tabular,
    )
    return StreamingResponse(_drain(queue), media_type=NDJSON_MEDIA_TYPE)


# ---------------------------------------------------------------------------
# GET /api/chats
# ---------------------------------------------------------------------------


@router.get("/chats", response_model=ChatListResponse)
async def list_chats(
    user: dict = Depends(get_current_user),
    db: aiosqlite.Connection = Depends(get_db),
) -> ChatListResponse:
    """List the caller's chats for the sidebar, newest first."""
    rows = await chat_store.list_chats(db, user["id"])
    return ChatListResponse(
        chats=[
            ChatSummary(
                id=row["id"],
                title=row["title"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]
    )


# ---------------------------------------------------------------------------
# GET /api/chats/{chat_id}
# ---------------------------------------------------------------------------


@router.get("/chats/{chat_id}", response_model=ChatDetailResponse)
async def get_chat_detail(
    chat: dict = Depends(get_owned_chat),
    db: aiosqlite.Connection = Depends(get_db),
) -> ChatDetailResponse:
    rows = await chat_store.list_messages(db, chat["id"])
    return ChatDetailResponse(
        id=chat["id"],
        title=chat["title"],
        created_at=datetime.fromisoformat(chat["created_at"]),
        messages=[UIMessage(**stored_to_ui_message(row)) for row in rows],
    )


# ---------------------------------------------------------------------------
# DELETE /api/chats/{chat_id}
# ---------------------------------------------------------------------------


@router.delete("/chats/{chat_id}", response_model=OkResponse)
async def delete_chat(
    chat: dict = Depends(get_owned_chat),
    db: aiosqlite.Connection = Depends(get_db),
) -> OkResponse:
    """Delete a chat and its messages."""
    deleted = await chat_store.delete_chat(db, chat["id"], chat["user_id"])
    if not deleted:
        raise NotFoundError("Chat not found")
    logger.info("Deleted chat %s", chat["id"])
    return OkResponse()
