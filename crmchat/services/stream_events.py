"""Chat stream event factory functions.

Each function returns a plain dict with a ``type`` field plus data fields.
The chat endpoint writes them to the response body as NDJSON, one event
per line, in the order the orchestrator produces them.
"""

from __future__ import annotations


def text_delta(*, token: str) -> dict:
    """Incremental piece of the assistant's text."""
    return {"type": "text_delta", "token": token}


def tool_call_start(*, tool_call_id: str, tool: str, args: dict) -> dict:
    """The model asked for a tool; execution is starting."""
    return {"type": "tool_call_start", "toolCallId": tool_call_id, "tool": tool, "args": args}


def tool_result(*, tool_call_id: str, tool: str, result: str | dict) -> dict:
    """A tool finished. ``result`` is exactly what the model receives."""
    return {"type": "tool_result", "toolCallId": tool_call_id, "tool": tool, "result": result}


def chart(*, tool_call_id: str, payload: dict) -> dict:
    """Chart payload produced by ``generateVisualChart``.

    ``payload`` is ``{chartType, data[, error]}``. Empty ``data`` means there
    is nothing to plot.
    """
    event = {
        "type": "chart",
        "toolCallId": tool_call_id,
        "chartType": payload.get("chartType"),
        "data": payload.get("data", []),
    }
    if payload.get("error"):
        event["error"] = payload["error"]
    return event


def persist_error(*, error: str) -> dict:
    """The assistant message could not be saved; the answer above is unsaved."""
    return {"type": "persist_error", "error": error}


def chat_error(*, error: str, details: str | None = None) -> dict:
    """Chat processing failed before completion. Omits null ``details``."""
    result: dict = {"type": "chat_error", "error": error}
    if details:
        result["details"] = details
    return result


def chat_complete(*, message_id: str | None, text: str, tool_calls: int) -> dict:
    """Turn finished. ``message_id`` is ``None`` when persistence failed."""
    return {
        "type": "chat_complete",
        "messageId": message_id,
        "text": text,
        "toolCalls": tool_calls,
    }
