"""LLM service: Gemini client, streaming, tool-call loop.

Encapsulates all Gemini SDK interaction: client setup, conversion of the
browser's message history, streaming iteration, tool dispatch through the
tool registry, and the per-turn step budget.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from uuid import uuid4

from google.genai import Client
from google.genai import types
from google.genai.errors import ClientError

from crmchat.config import get_settings
from crmchat.services import stream_events, tools
from crmchat.services.tabular_service import TabularService
from crmchat.services.transcript import TurnTranscript
from crmchat.services.ui_messages import message_text

logger = logging.getLogger(__name__)

Emit = Callable[[dict], Awaitable[None]]

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_GEMINI_RETRIES = 3
GEMINI_RETRY_BASE_DELAY = 2  # seconds; doubles each retry (2, 4, 8)

FORCE_ANSWER_INSTRUCTION = (
    "Maximum number of tool steps reached. Answer the user now with the "
    "information gathered so far, without calling any more tools."
)

# ---------------------------------------------------------------------------
# Gemini client (module-level singleton)
# ---------------------------------------------------------------------------

settings = get_settings()
client = Client(api_key=settings.gemini_api_key)


class GeminiRateLimitError(Exception):
    """Raised when Gemini API returns 429 and all retries are exhausted."""

    def __init__(self) -> None:
        super().__init__(
            "The AI service is temporarily busy. Please try again in a moment."
        )


# ---------------------------------------------------------------------------
# Message conversion
# ---------------------------------------------------------------------------


def ui_messages_to_contents(messages: list[dict]) -> list[types.Content]:
    """Convert UI messages to Gemini Content objects.

    Only user and assistant text is forwarded; system messages are covered
    by ``system_instruction`` and empty messages are dropped.
    """
    contents = []
    for msg in messages:
        role = msg.get("role")
        if role not in ("user", "assistant"):
            continue
        text = message_text(msg)
        if not text:
            continue
        contents.append(
            types.Content(
                role="model" if role == "assistant" else "user",
                parts=[types.Part(text=text)],
            )
        )
    return contents


def _chunk_parts(chunk) -> list:
    parts = []
    for candidate in getattr(chunk, "candidates", None) or []:
        content = getattr(candidate, "content", None)
        if content:
            parts.extend(content.parts or [])
    return parts


def _tool_response(output: str | dict) -> dict:
    return output if isinstance(output, dict) else {"result": output}


# ---------------------------------------------------------------------------
# stream_chat
# ---------------------------------------------------------------------------


async def _open_stream(model_id: str, contents: list[types.Content], config):
    """Start a streaming generation, retrying 429 RESOURCE_EXHAUSTED."""
    for attempt in range(MAX_GEMINI_RETRIES + 1):
        try:
            return await client.aio.models.generate_content_stream(
                model=model_id,
                contents=contents,
                config=config,
            )
        except ClientError as exc:
            if exc.code != 429:
                raise
            if attempt >= MAX_GEMINI_RETRIES:
                logger.error(
                    "Gemini 429 RESOURCE_EXHAUSTED: all %d retries exhausted",
                    MAX_GEMINI_RETRIES,
                )
                raise GeminiRateLimitError() from exc
            delay = GEMINI_RETRY_BASE_DELAY * (2 ** attempt)
            logger.warning(
                "Gemini 429 RESOURCE_EXHAUSTED (attempt %d/%d), retrying in %ds",
                attempt + 1,
                MAX_GEMINI_RETRIES,
                delay,
            )
            await asyncio.sleep(delay)


async def stream_chat(
    messages: list[dict],
    system_prompt: str,
    emit: Emit,
    tabular: TabularService,
    *,
    model_id: str | None = None,
    max_steps: int | None = None,
) -> TurnTranscript:
    """Stream one assistant turn, executing tool calls between steps.

    Args:
        messages: Browser message history (UI message dicts).
        system_prompt: Output of ``prompt_service.compose_system_prompt``.
        emit: Async callable receiving each stream event dict.
        tabular: Backend for the tool executors.
        model_id: Optional model override (defaults to settings).
        max_steps: Model invocations allowed for this turn. The last one
            runs without tools so the turn always ends with an answer.

    Returns:
        The folded ``TurnTranscript`` of every step.
    """
    transcript = TurnTranscript()
    contents = ui_messages_to_contents(messages)
    effective_model = model_id or settings.model_id
    step_budget = max_steps or settings.max_steps

    config = types.GenerateContentConfig(
        system_instruction=system_prompt,
        tools=tools.TOOLS,
    )

    for step_index in range(step_budget):
        if step_index > 0 and step_index == step_budget - 1:
            contents.append(
                types.Content(role="user", parts=[types.Part(text=FORCE_ANSWER_INSTRUCTION)])
            )
            config = types.GenerateContentConfig(system_instruction=system_prompt)

        transcript.start_step()
        function_calls = []
        usage = None

        stream = await _open_stream(effective_model, contents, config)
        async for chunk in stream:
            for part in _chunk_parts(chunk):
                if getattr(part, "thought", False):
                    continue
                text = getattr(part, "text", None)
                if text:
                    transcript.add_text(text)
                    await emit(stream_events.text_delta(token=text))
                function_call = getattr(part, "function_call", None)
                if function_call is not None:
                    function_calls.append(function_call)
            usage = getattr(chunk, "usage_metadata", None) or usage

        if usage is not None:
            transcript.input_tokens += usage.prompt_token_count or 0
            transcript.output_tokens += usage.candidates_token_count or 0

        if not function_calls or step_index == step_budget - 1:
            break

        # --- Tool execution ---
        call_parts = []
        response_parts = []
        for function_call in function_calls:
            name = function_call.name
            args = dict(function_call.args) if function_call.args else {}
            tool_call_id = getattr(function_call, "id", None) or f"call_{uuid4().hex[:12]}"

            transcript.add_tool_call(tool_call_id, name, args)
            await emit(stream_events.tool_call_start(tool_call_id=tool_call_id, tool=name, args=args))

            output = await tools.execute_tool(name, args, tabular)

            transcript.add_tool_result(tool_call_id, name, output)
            await emit(stream_events.tool_result(tool_call_id=tool_call_id, tool=name, result=output))
            if name == tools.GENERATE_VISUAL_CHART and isinstance(output, dict):
                await emit(stream_events.chart(tool_call_id=tool_call_id, payload=output))

            call_parts.append(
                types.Part(function_call=types.FunctionCall(name=name, args=args))
            )
            response_parts.append(
                types.Part(function_response=types.FunctionResponse(
                    name=name,
                    response=_tool_response(output),
                ))
            )

        contents.append(types.Content(role="model", parts=call_parts))
        contents.append(types.Content(role="user", parts=response_parts))

    logger.info(
        "Turn finished: %d steps, %d tool calls, %d input / %d output tokens",
        len(transcript.steps),
        len(transcript.tool_calls),
        transcript.input_tokens,
        transcript.output_tokens,
    )
    return transcript
