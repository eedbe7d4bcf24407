"""Tests for provider adapters, using stand-in SDK objects."""

import json
from types import SimpleNamespace

import pytest

from dashpilot.agent.llm_interface import (
    AnthropicClient,
    AzureOpenAIClient,
    OpenAIClient,
    completion_from_anthropic,
    completion_from_openai,
    describe_provider,
    load_client,
    to_anthropic_messages,
)
from dashpilot.config import settings
from dashpilot.core.errors import LLMCallError
from dashpilot.core.schema import (
    Message,
    ToolCallRequest,
)
from dashpilot.tools import ToolSpec

TOOL = ToolSpec(name="addModule", description="Add a module", parameters={"type": "object"})


class FakeCreate:
    """Records keyword arguments and returns (or raises) a canned response."""

    def __init__(self, response=None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.params = None

    async def __call__(self, **params):
        self.params = params
        if self.error is not None:
            raise self.error
        return self.response


def openai_response(content=None, tool_calls=None, finish_reason="stop"):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message, finish_reason=finish_reason)], model="gpt-4o"
    )


def fake_openai_sdk(create: FakeCreate):
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


def test_completion_from_openai_tool_calls() -> None:
    raw_call = SimpleNamespace(
        id="call_1",
        function=SimpleNamespace(name="addModule", arguments='{"moduleType":"portfolioChart"}'),
    )
    completion = completion_from_openai(
        openai_response(content=None, tool_calls=[raw_call], finish_reason="tool_calls")
    )

    assert completion.stop_reason == "tool_calls"
    assert completion.text == ""
    assert completion.tool_calls == [
        ToolCallRequest.create("call_1", "addModule", '{"moduleType":"portfolioChart"}')
    ]
    assert completion.message.tool_calls == completion.tool_calls


def test_completion_from_openai_without_choices() -> None:
    with pytest.raises(LLMCallError):
        completion_from_openai(SimpleNamespace(choices=[]))


@pytest.mark.asyncio
async def test_openai_client_sends_tools_and_wire_messages() -> None:
    create = FakeCreate(openai_response(content="hi"))
    client = OpenAIClient(model="gpt-test", client=fake_openai_sdk(create))
    assistant = Message(
        role="assistant", content="", tool_calls=[ToolCallRequest.create("c1", "addModule")]
    )

    completion = await client.complete(
        [Message(role="user", content="hello"), assistant], [TOOL], temperature=0.0
    )

    assert completion.text == "hi"
    assert create.params["model"] == "gpt-test"
    assert create.params["temperature"] == 0.0
    assert create.params["tool_choice"] == "auto"
    assert create.params["tools"] == [TOOL.to_openai()]
    assert "max_tokens" not in create.params
    assert create.params["messages"][0] == {"role": "user", "content": "hello"}
    assert create.params["messages"][1]["content"] is None
    assert create.params["messages"][1]["tool_calls"][0]["function"]["name"] == "addModule"


@pytest.mark.asyncio
async def test_openai_client_without_tools() -> None:
    create = FakeCreate(openai_response(content="summary"))
    client = OpenAIClient(client=fake_openai_sdk(create))

    await client.complete([Message(role="user", content="x")], None, max_tokens=256)

    assert "tools" not in create.params
    assert "tool_choice" not in create.params
    assert create.params["max_tokens"] == 256


@pytest.mark.asyncio
async def test_provider_errors_are_wrapped() -> None:
    create = FakeCreate(error=ConnectionError("network unreachable"))
    client = OpenAIClient(client=fake_openai_sdk(create))

    with pytest.raises(LLMCallError, match="network unreachable"):
        await client.complete([Message(role="user", content="x")])


@pytest.mark.asyncio
async def test_azure_client_uses_deployment_as_model() -> None:
    create = FakeCreate(openai_response(content="ok"))
    client = AzureOpenAIClient(deployment="dash-deploy", client=fake_openai_sdk(create))

    await client.complete([Message(role="user", content="x")])

    assert client.provider == "azure"
    assert create.params["model"] == "dash-deploy"


def test_to_anthropic_messages() -> None:
    messages = [
        Message(role="system", content="You are helpful."),
        Message(role="user", content="add a chart"),
        Message(role="system", name="scratchpad", content="User: add a chart"),
        Message(
            role="assistant",
            content="Plan: add it",
            tool_calls=[ToolCallRequest.create("t1", "addModule", '{"config":{}}')],
        ),
        Message(role="tool", tool_call_id="t1", content='{"status":"success"}'),
    ]

    system, turns = to_anthropic_messages(messages)

    assert system == "You are helpful.\n\n[scratchpad]\nUser: add a chart"
    assert [t["role"] for t in turns] == ["user", "assistant", "user"]
    assert turns[1]["content"][1] == {
        "type": "tool_use",
        "id": "t1",
        "name": "addModule",
        "input": {"config": {}},
    }
    assert turns[2]["content"] == [
        {"type": "tool_result", "tool_use_id": "t1", "content": '{"status":"success"}'}
    ]


def test_completion_from_anthropic_maps_stop_reasons() -> None:
    response = SimpleNamespace(
        content=[
            SimpleNamespace(type="text", text="Plan: add it"),
            SimpleNamespace(type="tool_use", id="t1", name="addModule", input={"config": {}}),
        ],
        stop_reason="tool_use",
        model="claude",
    )

    completion = completion_from_anthropic(response)

    assert completion.stop_reason == "tool_calls"
    assert completion.text == "Plan: add it"
    assert json.loads(completion.tool_calls[0].arguments) == {"config": {}}

    done = completion_from_anthropic(
        SimpleNamespace(content=[SimpleNamespace(type="text", text="ok")], stop_reason="end_turn")
    )
    assert done.stop_reason == "stop"

    cut = completion_from_anthropic(SimpleNamespace(content=[], stop_reason="max_tokens"))
    assert cut.stop_reason == "max_tokens"


@pytest.mark.asyncio
async def test_anthropic_client_params() -> None:
    response = SimpleNamespace(
        content=[SimpleNamespace(type="text", text="hi")], stop_reason="end_turn"
    )
    create = FakeCreate(response)
    sdk = SimpleNamespace(messages=SimpleNamespace(create=create))
    client = AnthropicClient(model="claude-test", client=sdk)

    completion = await client.complete(
        [Message(role="system", content="sys"), Message(role="user", content="hello")], [TOOL]
    )

    assert completion.stop_reason == "stop"
    assert create.params["system"] == "sys"
    assert create.params["max_tokens"] == AnthropicClient.DEFAULT_MAX_TOKENS
    assert create.params["tools"] == [
        {"name": "addModule", "description": "Add a module", "input_schema": {"type": "object"}}
    ]
    assert create.params["tool_choice"] == {"type": "auto"}


def test_load_client_rejects_unknown_provider() -> None:
    with pytest.raises(ValueError, match="not registered"):
        load_client("mystery")


def test_describe_provider(monkeypatch) -> None:
    monkeypatch.setattr(settings, "AZURE_OPENAI_DEPLOYMENT", "dash-deploy")

    assert describe_provider("openai") == ("openai", settings.OPENAI_MODEL)
    assert describe_provider("azure") == ("azure", "dash-deploy")
    assert describe_provider("ANTHROPIC") == ("anthropic", settings.ANTHROPIC_MODEL)
