"""Chat service: per-turn orchestration.

A turn is split in two phases:

- ``prepare_turn`` runs inside the request: upsert the chat, persist the
  newest user message, auto-title. Storage failures here are logged and
  do not block the model call; only a foreign-owned chat stops the turn.
- ``run_turn`` runs in a background task: schema, prompt, model stream,
  then the assistant message. Events are pushed through ``emit`` as they
  are produced; the HTTP response drains them from a queue
  (``start_turn``). A caller that disconnects stops draining but does not
  cancel the task, so tool calls and persistence still complete.
"""

from __future__ import annotations

import asyncio
import logging

import aiosqlite

from crmchat.exceptions import ForbiddenError
from crmchat.services import chat_store, llm_service, prompt_service, stream_events
from crmchat.services.llm_service import Emit
from crmchat.services.schema_cache import SchemaCache
from crmchat.services.tabular_service import TabularService
from crmchat.services.ui_messages import extract_last_user_text

logger = logging.getLogger(__name__)

# Strong references to running turns; asyncio only keeps weak ones.
_running_turns: set[asyncio.Task] = set()


# ---------------------------------------------------------------------------
# Phase 1: request-time persistence
# ---------------------------------------------------------------------------


async def prepare_turn(
    db: aiosqlite.Connection,
    chat_id: str,
    user_id: str,
    messages: list[dict],
) -> str:
    """Upsert the chat and persist the newest user message.

    Returns the extracted user text (``""`` when there is none).

    Raises:
        ForbiddenError: If the chat exists and belongs to someone else.
    """
    chat = None
    try:
        if await chat_store.create_chat(db, chat_id, user_id):
            logger.info("Created chat %s for user %s", chat_id, user_id)
        chat = await chat_store.get_chat(db, chat_id)
    except Exception:
        logger.warning("Could not upsert chat %s", chat_id, exc_info=True)

    if chat is not None and chat["user_id"] != user_id:
        raise ForbiddenError("Not authorized")

    user_text = extract_last_user_text(messages)
    if not user_text:
        return user_text

    try:
        await chat_store.insert_message(db, chat_id, "user", user_text)
        if await chat_store.apply_auto_title(db, chat_id, user_text):
            logger.info("Auto-titled chat %s", chat_id)
    except Exception:
        logger.warning("Could not persist user message for chat %s", chat_id, exc_info=True)

    return user_text


# ---------------------------------------------------------------------------
# Phase 2: model stream and assistant persistence
# ---------------------------------------------------------------------------


async def run_turn(
    db: aiosqlite.Connection,
    chat_id: str,
    messages: list[dict],
    emit: Emit,
    *,
    schema_cache: SchemaCache,
    tabular: TabularService,
) -> dict | None:
    """Compose the prompt, stream the model, persist the transcript.

    Returns the persisted assistant message, or ``None`` when the model
    call failed or the message could not be saved.
    """
    try:
        schema = await schema_cache.get_schema()
        system_prompt = prompt_service.compose_system_prompt(schema)
        logger.info("System prompt injected: %d chars", len(system_prompt))

        transcript = await llm_service.stream_chat(messages, system_prompt, emit, tabular)

    except llm_service.GeminiRateLimitError as exc:
        logger.warning("Gemini rate limit for chat %s: %s", chat_id, exc)
        await emit(stream_events.chat_error(error=str(exc)))
        return None

    except Exception as exc:
        logger.exception("Error processing turn for chat %s", chat_id)
        await emit(stream_events.chat_error(error=str(exc), details=type(exc).__name__))
        return None

    # No retry: a failure here loses the turn's record, so the client is
    # told before the stream closes.
    message = None
    try:
        message = await chat_store.insert_message(
            db, chat_id, "assistant", transcript.to_content()
        )
    except Exception:
        logger.exception("Failed to persist assistant message for chat %s", chat_id)
        await emit(stream_events.persist_error(
            error="The answer could not be saved to the chat history.",
        ))

    await emit(stream_events.chat_complete(
        message_id=message["id"] if message else None,
        text=transcript.text,
        tool_calls=len(transcript.tool_calls),
    ))
    return message


def start_turn(
    db: aiosqlite.Connection,
    chat_id: str,
    messages: list[dict],
    *,
    schema_cache: SchemaCache,
    tabular: TabularService,
) -> asyncio.Queue:
    """Launch ``run_turn`` in the background and return its event queue.

    The queue yields event dicts and finally ``None`` once the turn ended.
    """
    queue: asyncio.Queue[dict | None] = asyncio.Queue()

    async def _run() -> None:
        try:
            await run_turn(
                db,
                chat_id,
                messages,
                queue.put,
                schema_cache=schema_cache,
                tabular=tabular,
            )
        finally:
            queue.put_nowait(None)

    task = asyncio.create_task(_run())
    _running_turns.add(task)
    task.add_done_callback(_running_turns.discard)
    return queue


async def wait_for_running_turns(timeout: float) -> None:
    """Let in-flight turns finish before shutdown; cancel what outlives *timeout*."""
    if not _running_turns:
        return
    pending_turns = set(_running_turns)
    logger.info("Waiting for %d running turn(s) before shutdown", len(pending_turns))
    _, still_running = await asyncio.wait(pending_turns, timeout=timeout)
    for task in still_running:
        task.cancel()
    if still_running:
        logger.warning("Cancelled %d turn(s) still running at shutdown", len(still_running))
        await asyncio.gather(*still_running, return_exceptions=True)
