"""Accumulates one assistant turn across model steps.

The LLM loop appends text and tool activity step by step; at the end of the
turn ``to_content`` produces the single string stored as the assistant
message: plain text when no tool ran, otherwise a JSON envelope
``{"text", "toolCalls", "toolResults"}``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field


@dataclass
class StepRecord:
    """Text and tool activity produced by one model invocation."""

    text: str = ""
    tool_calls: list[dict] = field(default_factory=list)
    tool_results: list[dict] = field(default_factory=list)


@dataclass
class TurnTranscript:
    steps: list[StepRecord] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0

    def start_step(self) -> StepRecord:
        step = StepRecord()
        self.steps.append(step)
        return step

    @property
    def current(self) -> StepRecord:
        if not self.steps:
            return self.start_step()
        return self.steps[-1]

    def add_text(self, token: str) -> None:
        self.current.text += token

    def add_tool_call(self, tool_call_id: str, tool_name: str, args: dict) -> None:
        self.current.tool_calls.append(
            {"toolCallId": tool_call_id, "toolName": tool_name, "input": args}
        )

    def add_tool_result(self, tool_call_id: str, tool_name: str, output: str | dict) -> None:
        self.current.tool_results.append(
            {"toolCallId": tool_call_id, "toolName": tool_name, "output": output}
        )

    @property
    def text(self) -> str:
        """Non-empty step texts joined by newlines."""
        return "\n".join(s.text for s in self.steps if s.text)

    @property
    def tool_calls(self) -> list[dict]:
        return [call for s in self.steps for call in s.tool_calls]

    @property
    def tool_results(self) -> list[dict]:
        return [result for s in self.steps for result in s.tool_results]

    @property
    def used_tools(self) -> bool:
        return any(s.tool_calls or s.tool_results for s in self.steps)

    def to_content(self) -> str:
        if not self.used_tools:
            return self.text
        return json.dumps(
            {
                "text": self.text,
                "toolCalls": self.tool_calls,
                "toolResults": self.tool_results,
            },
            ensure_ascii=False,
            default=str,
        )
