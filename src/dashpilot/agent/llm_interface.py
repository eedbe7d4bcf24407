"""
LLM interface for dashpilot.

This module is the only place that *directly* calls an LLM.  Everything else (agent loop, tools,
scratchpad) stays model-agnostic and talks to a :class:`BaseLLMClient`.

We support three back-ends out of the box:

1. **OpenAI** chat completions (``PROVIDER=openai``), optionally against a custom base URL.
2. **Azure OpenAI** (``PROVIDER=azure``), the enterprise endpoint variant: endpoint, api-version
   and deployment name instead of a model name.
3. **Anthropic** messages API (``PROVIDER=anthropic``), mapped onto the same stop reasons.

Additional providers can be added by subclassing :class:`BaseLLMClient` and registering via
:func:`register_client`.  No retries happen here: a failing call raises
:class:`~dashpilot.core.errors.LLMCallError` and the run fails.
"""

import json
import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Callable,
    ClassVar,
    Dict,
    List,
    Optional,
    Sequence,
    Tuple,
    Type,
)

from pydantic import (
    BaseModel,
    Field,
)

from dashpilot.config import settings
from dashpilot.core.errors import LLMCallError
from dashpilot.core.schema import (
    Message,
    ToolCallRequest,
)
from dashpilot.tools import ToolSpec

logger = logging.getLogger(__name__)

STOP_TOOL_CALLS = "tool_calls"
STOP_FINAL = "stop"


class Completion(BaseModel):
    """Provider-neutral result of one chat-completion call."""

    stop_reason: Optional[str] = None
    text: str = ""
    tool_calls: List[ToolCallRequest] = Field(default_factory=list)
    model: Optional[str] = None

    @property
    def message(self) -> Message:
        """The assistant message to append to the conversation."""
        return Message(role="assistant", content=self.text, tool_calls=self.tool_calls or None)


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_CLIENT_REGISTRY: dict[str, Type["BaseLLMClient"]] = {}


def register_client(name: str) -> Callable:
    """Decorator to register a client class under *name*."""

    def wrapper(cls: Type["BaseLLMClient"]) -> Type["BaseLLMClient"]:
        _CLIENT_REGISTRY[name] = cls
        return cls

    return wrapper


def load_client(name: str | None = None) -> "BaseLLMClient":
    """
    Factory that returns an instantiated client.

    Fallback order:
    1. *name* arg
    2. ``settings.PROVIDER`` env/.env option
    3. default: ``"openai"``
    """

    target = name or getattr(settings, "PROVIDER", "openai")
    cls = _CLIENT_REGISTRY.get(target.lower())
    if cls is None:
        raise ValueError(f"LLM provider '{target}' is not registered.")
    return cls()


def describe_provider(name: str | None = None) -> Tuple[str, str]:
    """Return ``(provider, model)`` from settings without building a client."""
    provider = (name or settings.PROVIDER).lower()
    if provider == "azure":
        return provider, settings.AZURE_OPENAI_DEPLOYMENT or settings.OPENAI_MODEL
    if provider == "anthropic":
        return provider, settings.ANTHROPIC_MODEL
    return provider, settings.OPENAI_MODEL


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BaseLLMClient(ABC):
    """Abstract chat-completion client: messages (+ tools) -> :class:`Completion`."""

    provider: ClassVar[str] = "base"
    model: str = ""

    async def complete(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolSpec] | None = None,
        *,
        temperature: float = 0.0,
        max_tokens: int | None = None,
    ) -> Completion:
        """
        Run one completion.

        When *tools* is given the model may call any of them (``tool_choice="auto"``); pass
        ``None`` for a plain text completion.

        Raises
        ------
        LLMCallError
            On any provider or transport failure.
        """
        logger.debug(
            "%s completion: %d messages, %d tools", self.provider, len(messages), len(tools or [])
        )
        try:
            completion = await self._complete(
                messages, tools, temperature=temperature, max_tokens=max_tokens
            )
        except LLMCallError:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("%s completion failed: %s", self.provider, exc)
            raise LLMCallError(f"{self.provider} completion failed: {exc}") from exc

        logger.debug(
            "%s completion finished: stop_reason=%s, %d tool calls",
            self.provider,
            completion.stop_reason,
            len(completion.tool_calls),
        )
        return completion

    @abstractmethod
    async def _complete(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolSpec] | None,
        *,
        temperature: float,
        max_tokens: int | None,
    ) -> Completion:
        """Provider-specific call."""


# ---------------------------------------------------------------------------
# OpenAI family
# ---------------------------------------------------------------------------
def completion_from_openai(response: Any) -> Completion:
    """Convert an OpenAI ``ChatCompletion`` into a :class:`Completion`."""
    if not response.choices:
        raise LLMCallError("OpenAI returned no choices")
    choice = response.choices[0]
    message = choice.message
    tool_calls = [
        ToolCallRequest.create(call.id, call.function.name, call.function.arguments or "{}")
        for call in (message.tool_calls or [])
    ]
    return Completion(
        stop_reason=choice.finish_reason,
        text=message.content or "",
        tool_calls=tool_calls,
        model=getattr(response, "model", None),
    )


@register_client("openai")
class OpenAIClient(BaseLLMClient):
    """OpenAI chat completions (direct provider)."""

    provider = "openai"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        client: Any = None,
    ) -> None:
        self.model = model or settings.OPENAI_MODEL
        if client is None:
            import openai  # pylint: disable=import-outside-toplevel

            client = openai.AsyncOpenAI(
                api_key=api_key or settings.OPENAI_API_KEY,
                base_url=base_url or settings.OPENAI_BASE_URL,
            )
        self._client = client

    def build_params(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolSpec] | None,
        temperature: float,
        max_tokens: int | None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_wire() for m in messages],
            "temperature": temperature,
        }
        if tools:
            params["tools"] = [t.to_openai() for t in tools]
            params["tool_choice"] = "auto"
        if max_tokens is not None:
            params["max_tokens"] = max_tokens
        return params

    async def _complete(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolSpec] | None,
        *,
        temperature: float,
        max_tokens: int | None,
    ) -> Completion:
        params = self.build_params(messages, tools, temperature, max_tokens)
        response = await self._client.chat.completions.create(**params)
        return completion_from_openai(response)


@register_client("azure")
class AzureOpenAIClient(OpenAIClient):
    """Azure OpenAI: same wire format, different endpoint and credentials."""

    provider = "azure"

    def __init__(  # pylint: disable=super-init-not-called
        self,
        api_key: str | None = None,
        endpoint: str | None = None,
        api_version: str | None = None,
        deployment: str | None = None,
        client: Any = None,
    ) -> None:
        self.model = deployment or settings.AZURE_OPENAI_DEPLOYMENT or settings.OPENAI_MODEL
        if client is None:
            import openai  # pylint: disable=import-outside-toplevel

            client = openai.AsyncAzureOpenAI(
                api_key=api_key or settings.AZURE_OPENAI_API_KEY,
                azure_endpoint=endpoint or settings.AZURE_OPENAI_ENDPOINT,
                api_version=api_version or settings.AZURE_OPENAI_API_VERSION,
            )
        self._client = client


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------
_ANTHROPIC_STOP_REASONS = {
    "tool_use": STOP_TOOL_CALLS,
    "end_turn": STOP_FINAL,
    "stop_sequence": STOP_FINAL,
}


def _parse_arguments(raw: str) -> Any:
    try:
        return json.loads(raw or "{}")
    except json.JSONDecodeError:
        return {}


def to_anthropic_messages(messages: Sequence[Message]) -> Tuple[str, List[Dict[str, Any]]]:
    """
    Split chat-completions messages into Anthropic's ``(system, messages)`` pair.

    System messages (the scratchpad included) are folded into the system prompt, tool results
    become ``tool_result`` blocks on a user turn, and consecutive turns of the same role are
    merged.
    """
    system_parts: List[str] = []
    turns: List[Dict[str, Any]] = []

    def push(role: str, blocks: List[Dict[str, Any]]) -> None:
        if turns and turns[-1]["role"] == role:
            turns[-1]["content"].extend(blocks)
        else:
            turns.append({"role": role, "content": list(blocks)})

    for msg in messages:
        if msg.role == "system":
            if msg.content:
                header = f"[{msg.name}]\n" if msg.name else ""
                system_parts.append(f"{header}{msg.content}")
        elif msg.role == "tool":
            push(
                "user",
                [
                    {
                        "type": "tool_result",
                        "tool_use_id": msg.tool_call_id,
                        "content": msg.content or "",
                    }
                ],
            )
        elif msg.role == "assistant":
            blocks: List[Dict[str, Any]] = []
            if msg.content:
                blocks.append({"type": "text", "text": msg.content})
            for call in msg.tool_calls or []:
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": call.id,
                        "name": call.name,
                        "input": _parse_arguments(call.arguments),
                    }
                )
            if blocks:
                push("assistant", blocks)
        elif msg.content:
            push("user", [{"type": "text", "text": msg.content}])

    return "\n\n".join(system_parts), turns


def completion_from_anthropic(response: Any) -> Completion:
    """Convert an Anthropic ``Message`` into a :class:`Completion`."""
    texts: List[str] = []
    tool_calls: List[ToolCallRequest] = []
    for block in response.content:
        if block.type == "text":
            texts.append(block.text)
        elif block.type == "tool_use":
            tool_calls.append(
                ToolCallRequest.create(block.id, block.name, json.dumps(block.input))
            )
    stop_reason = _ANTHROPIC_STOP_REASONS.get(response.stop_reason, response.stop_reason)
    return Completion(
        stop_reason=stop_reason,
        text="\n".join(texts),
        tool_calls=tool_calls,
        model=getattr(response, "model", None),
    )


@register_client("anthropic")
class AnthropicClient(BaseLLMClient):
    """Anthropic Claude messages API."""

    provider = "anthropic"
    DEFAULT_MAX_TOKENS: ClassVar[int] = 4096

    def __init__(
        self, api_key: str | None = None, model: str | None = None, client: Any = None
    ) -> None:
        self.model = model or settings.ANTHROPIC_MODEL
        if client is None:
            import anthropic  # pylint: disable=import-outside-toplevel

            client = anthropic.AsyncAnthropic(api_key=api_key or settings.ANTHROPIC_API_KEY)
        self._client = client

    async def _complete(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolSpec] | None,
        *,
        temperature: float,
        max_tokens: int | None,
    ) -> Completion:
        system, turns = to_anthropic_messages(messages)
        params: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens or self.DEFAULT_MAX_TOKENS,
            "messages": turns,
            "temperature": temperature,
        }
        if system:
            params["system"] = system
        if tools:
            params["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.parameters}
                for t in tools
            ]
            params["tool_choice"] = {"type": "auto"}

        response = await self._client.messages.create(**params)
        return completion_from_anthropic(response)
