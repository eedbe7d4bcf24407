"""Shared fixtures: a scripted LLM client and an isolated data directory."""

import json
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Optional,
    Sequence,
)

import pytest

from dashpilot.agent.llm_interface import (
    BaseLLMClient,
    Completion,
)
from dashpilot.config import settings
from dashpilot.core.schema import (
    Message,
    ToolCallRequest,
)
from dashpilot.tools import ToolSpec


class ScriptedLLMClient(BaseLLMClient):
    """Replays queued completions and records every request it receives."""

    provider = "scripted"
    model = "scripted-model"

    def __init__(
        self, completions: Iterable[Completion] = (), summaries: Iterable[str] = ()
    ) -> None:
        self.completions: List[Completion] = list(completions)
        self.summaries: List[str] = list(summaries)
        self.calls: List[Dict[str, Any]] = []

    async def _complete(
        self,
        messages: Sequence[Message],
        tools: Optional[Sequence[ToolSpec]],
        *,
        temperature: float,
        max_tokens: Optional[int],
    ) -> Completion:
        self.calls.append(
            {
                "messages": [m.model_copy(deep=True) for m in messages],
                "tools": list(tools) if tools is not None else None,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        if tools is None and self.summaries:
            return Completion(stop_reason="stop", text=self.summaries.pop(0))
        if not self.completions:
            raise RuntimeError("no scripted completion left")
        return self.completions.pop(0)

    @property
    def tool_calls_made(self) -> List[Dict[str, Any]]:
        """Recorded calls that offered tools (i.e. not summaries)."""
        return [call for call in self.calls if call["tools"] is not None]


def call(call_id: str, name: str, args: Optional[Dict[str, Any]] = None) -> ToolCallRequest:
    arguments = json.dumps(args or {}, separators=(",", ":"))
    return ToolCallRequest.create(call_id, name, arguments)


def tool_turn(text: str, *calls: ToolCallRequest) -> Completion:
    return Completion(stop_reason="tool_calls", text=text, tool_calls=list(calls))


def final_turn(text: str) -> Completion:
    return Completion(stop_reason="stop", text=text)


def scratchpad_of(messages: Sequence[Message]) -> str:
    return next(m.content or "" for m in messages if m.is_scratchpad)


@pytest.fixture(autouse=True)
def data_dir(tmp_path, monkeypatch):
    """Keep run logs out of the working tree."""
    monkeypatch.setattr(settings, "DATA_DIR", str(tmp_path))
    return tmp_path
