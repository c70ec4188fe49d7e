"""Helpers for the browser's message shape.

A UI message is ``{"id"?, "role", "parts": [{"type": "text", "text": ...}, ...]}``;
non-text parts (tool status, charts) are ignored when extracting text.
"""

from __future__ import annotations

import json


def message_text(message: dict) -> str:
    """Concatenate the text parts of *message* (falls back to ``content``)."""
    parts = message.get("parts") or []
    texts = [
        p.get("text") or ""
        for p in parts
        if isinstance(p, dict) and p.get("type") == "text"
    ]
    if texts:
        return "".join(texts)
    content = message.get("content")
    return content if isinstance(content, str) else ""


def extract_last_user_text(messages: list[dict]) -> str:
    """Return the stripped text of the last user-role message, or ``""``."""
    for message in reversed(messages):
        if message.get("role") != "user":
            continue
        return message_text(message).strip()
    return ""


def stored_content_text(role: str, content: str) -> str:
    """Displayable text of a stored message.

    Assistant messages saved as a tool envelope are reduced to their
    ``text``; anything that is not such an envelope is returned as is.
    """
    if role != "assistant":
        return content
    try:
        parsed = json.loads(content)
    except (json.JSONDecodeError, TypeError):
        return content
    if isinstance(parsed, dict) and isinstance(parsed.get("text"), str):
        return parsed["text"]
    return content


def stored_to_ui_message(row: dict) -> dict:
    """Convert a ``messages`` row into a UI message with one text part."""
    return {
        "id": row["id"],
        "role": row["role"],
        "parts": [{"type": "text", "text": stored_content_text(row["role"], row["content"])}],
    }
