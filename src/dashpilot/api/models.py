"""
Pydantic models for dashpilot API requests and responses.
This module defines the request and response schemas used by the dashpilot API.

Field names are camelCase on the wire; chat messages keep the OpenAI message shape.
"""

from typing import (
    Any,
    Dict,
    List,
    Literal,
    Optional,
)

from pydantic import (
    Field,
    ValidationError,
    field_validator,
)

from dashpilot.core.schema import (
    AgentResult,
    CamelModel,
    HistoryEntry,
    Message,
    RunOptions,
    Thought,
    ToolCallRequest,
)
from dashpilot.tools import ToolSpec


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class _WithTools(CamelModel):
    tools: List[ToolSpec] = Field(
        default_factory=list, description="Tools in chat-completions format"
    )

    @field_validator("tools", mode="before")
    @classmethod
    def _parse_tools(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        specs = []
        for index, tool in enumerate(value):
            if isinstance(tool, ToolSpec):
                specs.append(tool)
                continue
            if not isinstance(tool, dict):
                raise ValueError(f"tool #{index} must be an object")
            try:
                specs.append(ToolSpec.from_openai(tool))
            except (KeyError, TypeError, AttributeError, ValidationError) as exc:
                raise ValueError(f"tool #{index} is not a valid function definition") from exc
        return specs

    def tool_specs(self) -> List[ToolSpec]:
        return list(self.tools)


class RunRequest(_WithTools):
    """Start a run whose tools are executed by the caller."""

    user_prompt: str = Field(..., description="The user's request")
    history: List[HistoryEntry] = Field(default_factory=list)
    options: Optional[RunOptions] = None
    system_prompt: Optional[str] = Field(None, description="Overrides the default prompt")


class RunResponse(CamelModel):
    """Either tool calls for the caller to execute, or the final result."""

    type: Literal["tool_calls", "final"]
    tool_calls: Optional[List[ToolCallRequest]] = None
    thoughts: Optional[List[Thought]] = None
    messages: Optional[List[Message]] = None
    scratchpad: Optional[str] = None
    response: Optional[AgentResult] = None


class ToolResultRequest(_WithTools):
    """Continue a run after the caller executed the requested tools."""

    messages: List[Message] = Field(default_factory=list)
    tool_results: List[Message] = Field(
        default_factory=list, description="One tool message per executed call"
    )
    scratchpad: str = ""


class ToolResultResponse(CamelModel):
    """Next assistant message, possibly carrying further tool calls."""

    message: Message
    scratchpad: str
    stop_reason: Optional[str] = None


class HealthResponse(CamelModel):
    """Liveness payload with the configured provider."""

    status: str
    provider: str
    model: str


class SessionResponse(CamelModel):
    """Response with session information."""

    session_id: str


class ChatRequest(CamelModel):
    """Incoming user message for a server-side run."""

    message: str = Field(..., description="User message for dashpilot")
    session_id: Optional[str] = Field(None, description="Session ID for conversation context")


class ChatResponse(CamelModel):
    """Result of a server-side run plus the session's dashboard afterwards."""

    response: AgentResult
    session_id: str
    dashboard: Dict[str, Any]
