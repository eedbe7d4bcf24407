"""
Schema definitions for llm <-> agent <-> tool messages.

These data models serve as the contract between the LLM adapter, the orchestration loop, the
tool executor and the HTTP surface.  We keep them separate from runtime logic so they can be
imported anywhere without side-effects.

Chat messages keep the OpenAI wire shape (snake_case, ``tool_calls[].function``) because that
is what travels between the remote caller and the API.  Everything else the caller sees is
camelCase on the wire and snake_case in Python.
"""

from typing import (
    Any,
    Dict,
    List,
    Literal,
    Optional,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)
from pydantic.alias_generators import to_camel

from dashpilot.common import compact_json

Role = Literal["system", "user", "assistant", "tool"]
ThoughtType = Literal["planning", "reasoning", "final"]

SCRATCHPAD_NAME = "scratchpad"


class CamelModel(BaseModel):
    """Base model serialised with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Chat messages
# ---------------------------------------------------------------------------
class FunctionCall(BaseModel):
    """Function name and raw JSON arguments requested by the model."""

    name: str
    arguments: str = "{}"


class ToolCallRequest(BaseModel):
    """A call that the model wants the agent to execute."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., description="Provider-assigned id, unique within one assistant message")
    type: Literal["function"] = "function"
    function: FunctionCall

    @property
    def name(self) -> str:
        return self.function.name

    @property
    def arguments(self) -> str:
        return self.function.arguments

    @classmethod
    def create(cls, call_id: str, name: str, arguments: str = "{}") -> "ToolCallRequest":
        return cls(id=call_id, function=FunctionCall(name=name, arguments=arguments))


class Message(BaseModel):
    """One turn in the LLM conversation."""

    model_config = ConfigDict(extra="ignore")

    role: Role
    content: Optional[str] = ""
    name: Optional[str] = None
    tool_calls: Optional[List[ToolCallRequest]] = None
    tool_call_id: Optional[str] = None

    @property
    def is_scratchpad(self) -> bool:
        return self.role == "system" and self.name == SCRATCHPAD_NAME

    def to_wire(self) -> Dict[str, Any]:
        """Dump in the chat-completions request format."""
        data = self.model_dump(exclude_none=True)
        if self.tool_calls and not self.content:
            data["content"] = None
        return data


# ---------------------------------------------------------------------------
# Tool results
# ---------------------------------------------------------------------------
class ToolResult(BaseModel):
    """Normalized outcome of one tool call; produced even when the call fails."""

    tool_call_id: str
    name: str
    arguments: Any = None
    payload: Any = None
    is_error: bool = False

    @classmethod
    def failure(
        cls, request: ToolCallRequest, message: str, arguments: Any = None
    ) -> "ToolResult":
        return cls(
            tool_call_id=request.id,
            name=request.name,
            arguments=arguments,
            payload={"error": message},
            is_error=True,
        )

    @property
    def content(self) -> str:
        return compact_json(self.payload)

    def to_message(self) -> Message:
        return Message(role="tool", tool_call_id=self.tool_call_id, content=self.content)


# ---------------------------------------------------------------------------
# Caller-facing models
# ---------------------------------------------------------------------------
class HistoryEntry(CamelModel):
    """A previous chat turn as the dashboard keeps it."""

    role: Literal["user", "agent"]
    content: str


class RunOptions(CamelModel):
    """Optional extras for a run."""

    initial_state: Optional[Dict[str, Any]] = None


class Thought(CamelModel):
    """One entry of the user-visible reasoning trace."""

    type: ThoughtType
    content: str


class AgentResult(CamelModel):
    """Final answer plus the ordered reasoning trace."""

    response: str
    thoughts: List[Thought] = Field(default_factory=list)
    is_display: Literal[True] = True

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class AgentTurn(BaseModel):
    """A completed run (for logging / memory)."""

    user_message: str
    session_id: Optional[str] = None
    result: AgentResult
