"""Shared fixtures for LLM service tests.

Provides:
- ``mock_gemini_client``: Mocked Google GenAI client (async path)
- ``MockChunk``: Helper to simulate Gemini stream chunks
- ``make_text_stream`` / ``make_tool_call_stream``: streaming response factories
"""

from __future__ import annotations

from dataclasses import dataclass, field
from unittest.mock import AsyncMock, MagicMock

import pytest


# ---------------------------------------------------------------------------
# MockChunk: simulates Gemini stream chunks
# ---------------------------------------------------------------------------

@dataclass
class MockPart:
    """Simulates a Gemini response Part with either text or function_call."""
    text: str | None = None
    function_call: object | None = None
    thought: bool = False


@dataclass
class MockFunctionCall:
    """Simulates a Gemini FunctionCall."""
    name: str = ""
    args: dict = field(default_factory=dict)
    id: str | None = None


@dataclass
class MockUsageMetadata:
    """Simulates Gemini usage_metadata."""
    prompt_token_count: int = 0
    candidates_token_count: int = 0


@dataclass
class MockCandidate:
    content: object = None


@dataclass
class MockContent:
    parts: list = field(default_factory=list)
    role: str = "model"


@dataclass
class MockChunk:
    """Simulates a single Gemini stream chunk.

    A chunk carries text, function calls, or both.
    """
    text: str | None = None
    function_calls: list[MockFunctionCall] = field(default_factory=list)
    thought: bool = False

    @property
    def candidates(self):
        parts = []
        if self.text is not None:
            parts.append(MockPart(text=self.text, thought=self.thought))
        for fc in self.function_calls:
            parts.append(MockPart(function_call=fc))
        return [MockCandidate(content=MockContent(parts=parts))]

    # usage_metadata defaults to None for intermediate chunks
    usage_metadata: MockUsageMetadata | None = None


class MockStreamResponse:
    """Async-iterable Gemini streaming response.

    The last chunk carries ``usage_metadata``, like the real SDK.
    """

    def __init__(self, chunks: list[MockChunk], usage: MockUsageMetadata | None = None):
        self._chunks = chunks
        self._usage = usage or MockUsageMetadata()
        if self._chunks:
            self._chunks[-1].usage_metadata = self._usage

    def __aiter__(self):
        return _AsyncChunkIter(self._chunks)


class _AsyncChunkIter:
    def __init__(self, chunks: list[MockChunk]):
        self._chunks = chunks
        self._index = 0

    async def __anext__(self):
        if self._index >= len(self._chunks):
            raise StopAsyncIteration
        chunk = self._chunks[self._index]
        self._index += 1
        return chunk


def make_text_stream(
    texts: list[str],
    prompt_tokens: int = 50,
    candidates_tokens: int = 10,
) -> MockStreamResponse:
    """Factory: creates a MockStreamResponse with text-only chunks."""
    return MockStreamResponse(
        chunks=[MockChunk(text=t) for t in texts],
        usage=MockUsageMetadata(
            prompt_token_count=prompt_tokens,
            candidates_token_count=candidates_tokens,
        ),
    )


def make_tool_call_stream(
    calls: list[tuple[str, dict]],
    pre_text: list[str] | None = None,
    prompt_tokens: int = 30,
    candidates_tokens: int = 5,
) -> MockStreamResponse:
    """Factory: optional text chunks followed by one chunk of function calls."""
    chunks = [MockChunk(text=t) for t in pre_text or []]
    chunks.append(MockChunk(
        function_calls=[MockFunctionCall(name=name, args=args) for name, args in calls],
    ))
    return MockStreamResponse(
        chunks=chunks,
        usage=MockUsageMetadata(
            prompt_token_count=prompt_tokens,
            candidates_token_count=candidates_tokens,
        ),
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_gemini_client(monkeypatch):
    """Mocked Google GenAI client (async path: client.aio.models).

    By default returns a simple two-chunk text stream.
    Tests can override ``mock_client.aio.models.generate_content_stream``.
    """
    mock_client = MagicMock()
    mock_client.aio.models.generate_content_stream = AsyncMock(
        return_value=make_text_stream(["Bonjour ", "!"])
    )
    monkeypatch.setattr("crmchat.services.llm_service.client", mock_client)
    return mock_client

